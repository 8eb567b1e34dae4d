# settlement_system/services/payment_service.py
"""
Payment bookkeeping - proof attachment and marking records paid.
No money moves here; a human or an external process pays and then records it.
"""
from typing import Dict, Optional
from sqlalchemy.orm import Session
import logging

from models import DriverWeeklyRecord
from settlement_system.config.rates import PaymentStatus
from settlement_system.utils.time_machine import timeMachine

logger = logging.getLogger(__name__)


class PaymentService:
    """Service for recording payments of weekly records."""

    def __init__(self, session: Session):
        self.session = session

    def _getRecord(self, recordId: int) -> Optional[DriverWeeklyRecord]:
        return self.session.query(DriverWeeklyRecord).filter_by(recordID=recordId).first()

    async def attachProof(self, recordId: int, proofUrl: str, storagePath: Optional[str] = None,
                          fileName: Optional[str] = None) -> Dict:
        """Attach a payment proof. Settlement and reprocessing never touch these fields."""
        record = self._getRecord(recordId)
        if not record:
            logger.error(f"Weekly record {recordId} not found")
            return {"success": False, "error": "Record not found"}

        if not proofUrl:
            return {"success": False, "error": "Proof URL is required"}

        record.proofUrl = proofUrl
        record.proofStoragePath = storagePath
        record.proofFileName = fileName
        record.proofUploadedAt = timeMachine.now
        self.session.commit()

        logger.info(f"Proof attached to record {recordId} (driver {record.driverID}, week {record.weekId})")
        return {"success": True, "recordId": recordId, "proofUrl": proofUrl}

    async def markPaid(self, recordId: int, actorId: Optional[str] = None) -> Dict:
        """
        Mark a record paid. Pending bonus entries move to the paid list so a later
        bonus recomputation cannot change what was already paid.
        """
        record = self._getRecord(recordId)
        if not record:
            logger.error(f"Weekly record {recordId} not found")
            return {"success": False, "error": "Record not found"}

        if record.paymentStatus == PaymentStatus.PAID.value:
            logger.warning(f"Record {recordId} already paid at {record.paidAt}")
            return {"success": False, "error": "Already paid", "paidAt": record.paidAt}

        if record.paymentStatus == PaymentStatus.CANCELLED.value:
            return {"success": False, "error": "Record cancelled"}

        record.bonusPaid = list(record.bonusPaid or []) + list(record.bonusPending or [])
        record.bonusPending = []
        record.paymentStatus = PaymentStatus.PAID.value
        record.paidAt = timeMachine.now
        record.paidBy = actorId
        self.session.commit()

        logger.info(f"Record {recordId} (driver {record.driverID}, week {record.weekId}) "
                    f"marked paid by {actorId}: {record.totalAmount}")
        return {
            "success": True,
            "recordId": recordId,
            "totalAmount": record.totalAmount,
            "paidAt": record.paidAt
        }
