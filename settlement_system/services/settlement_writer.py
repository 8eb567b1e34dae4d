# settlement_system/services/settlement_writer.py
"""
Settlement writer - persists a week's records as one grouped write, and
recomputes already-settled weeks from their stored snapshots.
"""
from dataclasses import dataclass, replace
from decimal import Decimal
from enum import Enum
from typing import Dict, Iterable, List, Optional
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
import logging

from models import DriverWeeklyRecord
from settlement_system.config.rates import AdminFeeMode, PaymentStatus
from settlement_system.config.snapshot import AdminFeeRule, ConfigSnapshot, toDecimal
from settlement_system.errors import ComputationError, ReprocessError, SettlementError
from settlement_system.events.event_bus import eventBus, SettlementEvents
from settlement_system.services.exemption_service import ExemptionRegistry
from settlement_system.services.settlement_calculator import (
    SettlementInputs, SettlementResult, calculateSettlement
)
from settlement_system.utils.weeks import weekBounds

logger = logging.getLogger(__name__)


class PartialFailureMode(Enum):
    ABORT = "abort"  # any driver failure fails the whole phase
    COLLECT_ERRORS = "collectErrors"  # failed drivers are reported, the rest proceed


@dataclass
class DriverComputation:
    """Outcome of computing one driver: a result or the error that prevented it."""
    driverId: int
    result: Optional[SettlementResult] = None
    error: Optional[str] = None

    @property
    def failed(self) -> bool:
        return self.result is None


class SettlementWriter:
    """Writes settlement results for a week and reprocesses settled weeks."""

    def __init__(self, session: Session, snapshot: ConfigSnapshot):
        self.session = session
        self.snapshot = snapshot

    def _applyResult(self, record: DriverWeeklyRecord, result: SettlementResult):
        """Overwrite derived fields; proof and payment fields are left as they are."""
        for column, value in result.toRecordFields().items():
            setattr(record, column, value)
        record.snapshot = result.toSnapshot()
        record.notes = "; ".join(result.notes) or None
        record.totalAmount = result.netPayout + Decimal(str(record.bonusTotal or 0))

    def writeWeek(self, weekId: str, computations: Iterable[DriverComputation],
                  mode: PartialFailureMode = PartialFailureMode.ABORT) -> Dict:
        """
        Upsert one DriverWeeklyRecord per computed driver and commit once.

        Under ABORT any failed computation (or a failing write) rolls the whole
        phase back and raises. Paid records are never overwritten; they are
        reported as skipped.

        Unpaid records of drivers absent from `computations` belong to an
        earlier aggregation pass (rows since re-mapped to another driver) and
        are removed in the same commit, so earnings are never counted twice.
        """
        computations = list(computations)
        failures = [computation for computation in computations if computation.failed]
        errors = [{"driverId": c.driverId, "error": c.error} for c in failures]

        if failures and mode == PartialFailureMode.ABORT:
            self.session.rollback()
            first = failures[0]
            raise ComputationError(
                f"{len(failures)} driver(s) failed for {weekId}, first: driver {first.driverId}: {first.error}",
                driverId=first.driverId
            )

        weekStart, weekEnd = weekBounds(weekId)
        existing = {
            record.driverID: record
            for record in self.session.query(DriverWeeklyRecord).filter_by(weekId=weekId).all()
        }

        computedIds = {computation.driverId for computation in computations}
        written = []
        skipped = []
        removed = []
        try:
            for driverId, record in existing.items():
                if driverId in computedIds or record.paymentStatus == PaymentStatus.PAID.value:
                    continue
                if record.proofUrl:
                    logger.warning(f"Removing stale record {record.recordID} of driver {driverId} week {weekId} "
                                   f"with proof {record.proofUrl}")
                self.session.delete(record)
                removed.append(driverId)

            for computation in computations:
                if computation.failed:
                    continue
                result = computation.result
                record = existing.get(computation.driverId)

                if record and record.paymentStatus == PaymentStatus.PAID.value:
                    logger.warning(f"Record for driver {computation.driverId} week {weekId} already paid, skipped")
                    skipped.append(computation.driverId)
                    continue

                if record is None:
                    record = DriverWeeklyRecord(
                        driverID=computation.driverId,
                        weekId=weekId,
                        paymentStatus=PaymentStatus.PENDING.value,
                        bonusTotal=Decimal("0")
                    )
                    self.session.add(record)

                record.weekStart = weekStart.isoformat()
                record.weekEnd = weekEnd.isoformat()
                record.driverName = result.inputs.driverName
                record.driverType = result.inputs.driverType.value
                self._applyResult(record, result)
                written.append(computation.driverId)

            self.session.commit()
        except SQLAlchemyError as e:
            self.session.rollback()
            logger.error(f"Settlement write for {weekId} rolled back: {e}", exc_info=True)
            raise SettlementError(f"Settlement write for {weekId} failed: {e}")

        logger.info(
            f"Wrote {len(written)} records for {weekId} ({len(skipped)} skipped, "
            f"{len(removed)} stale removed, {len(errors)} errors)"
        )

        return {
            "success": True,
            "weekId": weekId,
            "written": written,
            "skipped": skipped,
            "removed": removed,
            "errors": errors
        }

    def _reprocessRule(self, inputs: SettlementInputs,
                       adminFeePercentage: Optional[Decimal]) -> Optional[AdminFeeRule]:
        if adminFeePercentage is None:
            return None
        configured = self.snapshot.adminFee.ruleFor(inputs.driverType)
        return AdminFeeRule(mode=AdminFeeMode.PERCENT, value=adminFeePercentage, base=configured.base)

    def _recordSnapshot(self, record: DriverWeeklyRecord) -> ConfigSnapshot:
        # Tax belongs to the settled week; only fee and expenses follow the current config
        storedRate = toDecimal((record.snapshot.get("config") or {}).get("taxRate"))
        if storedRate is None:
            raise ReprocessError(f"Record {record.recordID} has no stored tax rate")
        return replace(self.snapshot, taxRate=storedRate)

    async def reprocessWeek(self, weekId: str, adminFeePercentage=None,
                            mode: PartialFailureMode = PartialFailureMode.COLLECT_ERRORS) -> Dict:
        """
        Recompute admin fee, expenses and repasse of every stored record of the week
        from its snapshot. Platform data is not re-aggregated.

        Returns {success, weekId, driversProcessed, skipped, errors}; never raises.
        """
        try:
            weekStart, _ = weekBounds(weekId)
        except ValueError as e:
            return {"success": False, "weekId": weekId, "driversProcessed": 0, "skipped": [],
                    "errors": [{"driverId": None, "error": str(e)}]}

        if adminFeePercentage is not None:
            adminFeePercentage = toDecimal(adminFeePercentage)
            if adminFeePercentage is None or not (0 <= adminFeePercentage <= 100):
                return {"success": False, "weekId": weekId, "driversProcessed": 0, "skipped": [],
                        "errors": [{"driverId": None, "error": "adminFeePercentage must be between 0 and 100"}]}

        records = self.session.query(DriverWeeklyRecord).filter_by(weekId=weekId).order_by(
            DriverWeeklyRecord.driverID
        ).all()
        registry = ExemptionRegistry(self.session)

        recomputed: List = []
        skipped: List[int] = []
        errors: List[Dict] = []

        for record in records:
            if record.paymentStatus == PaymentStatus.PAID.value:
                skipped.append(record.driverID)
                continue
            try:
                snapshot = record.snapshot or {}
                if "inputs" not in snapshot:
                    raise ReprocessError(f"Record {record.recordID} has no stored snapshot")
                inputs = SettlementInputs.fromDict(snapshot["inputs"])
                isExempt = registry.isExempt(record.driverID, weekStart)
                result = calculateSettlement(inputs, self._recordSnapshot(record), isExempt,
                                             self._reprocessRule(inputs, adminFeePercentage))
                recomputed.append((record, result))
            except (SettlementError, ArithmeticError, ValueError, TypeError) as e:
                message = getattr(e, "message", str(e))
                logger.error(f"Reprocess failed for driver {record.driverID} week {weekId}: {message}")
                errors.append({"driverId": record.driverID, "error": message})

        if errors and mode == PartialFailureMode.ABORT:
            logger.error(f"Reprocess of {weekId} aborted: {len(errors)} errors")
            return {"success": False, "weekId": weekId, "driversProcessed": 0,
                    "skipped": skipped, "errors": errors}

        try:
            for record, result in recomputed:
                self._applyResult(record, result)
            self.session.commit()
        except SQLAlchemyError as e:
            self.session.rollback()
            logger.error(f"Reprocess write for {weekId} rolled back: {e}", exc_info=True)
            return {"success": False, "weekId": weekId, "driversProcessed": 0, "skipped": skipped,
                    "errors": errors + [{"driverId": None, "error": str(e)}]}

        logger.info(
            f"Reprocessed {weekId}: {len(recomputed)} records, {len(skipped)} paid skipped, "
            f"{len(errors)} errors"
        )

        await eventBus.emit(SettlementEvents.WEEK_REPROCESSED, {
            "weekId": weekId,
            "driversProcessed": len(recomputed),
            "adminFeePercentage": str(adminFeePercentage) if adminFeePercentage is not None else None,
            "errors": errors
        })

        return {
            "success": True,
            "weekId": weekId,
            "driversProcessed": len(recomputed),
            "skipped": skipped,
            "errors": errors
        }
