# settlement_system/services/exemption_service.py
"""
Admin fee exemption registry.

An exemption is active for a check date iff
    startDate <= checkDate < startDate + weeks * 7 days
compared on calendar dates.
"""
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Optional
from sqlalchemy.orm import Session
import logging

from models import Driver
from settlement_system.utils.time_machine import timeMachine
from settlement_system.utils.weeks import toDate

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AdminFeeExemption:
    isExempt: bool
    exemptionStartDate: Optional[date]
    exemptionWeeks: int
    reason: Optional[str] = None
    setBy: Optional[str] = None

    @property
    def endDate(self) -> Optional[date]:
        """First day the exemption no longer applies."""
        if not self.exemptionStartDate:
            return None
        return self.exemptionStartDate + timedelta(days=7 * self.exemptionWeeks)


def isExemptionActive(startDate, weeks: int, checkDate) -> bool:
    start = toDate(startDate)
    check = toDate(checkDate)
    if start is None or check is None or not weeks or weeks <= 0:
        return False
    return start <= check < start + timedelta(days=7 * weeks)


class ExemptionRegistry:
    """Reads and sets the exemption window stored on the driver record."""

    def __init__(self, session: Session):
        self.session = session

    def _getDriver(self, driverId: int) -> Driver:
        driver = self.session.query(Driver).filter_by(driverID=driverId).first()
        if not driver:
            raise LookupError(f"Driver {driverId} not found")
        return driver

    def getExemption(self, driverId: int) -> AdminFeeExemption:
        driver = self._getDriver(driverId)
        return AdminFeeExemption(
            isExempt=bool(driver.adminFeeExempt),
            exemptionStartDate=toDate(driver.exemptionStartDate),
            exemptionWeeks=driver.exemptionWeeks or 0,
            reason=driver.exemptionReason,
            setBy=driver.exemptionSetBy
        )

    def isExempt(self, driverId: int, checkDate) -> bool:
        driver = self.session.query(Driver).filter_by(driverID=driverId).first()
        if not driver or not driver.adminFeeExempt:
            return False
        return isExemptionActive(driver.exemptionStartDate, driver.exemptionWeeks or 0, checkDate)

    def setExemption(self, driverId: int, weeks: int, reason: Optional[str] = None,
                     actorId: Optional[str] = None) -> AdminFeeExemption:
        """Start an exemption of `weeks` weeks today. weeks == 0 clears it."""
        if weeks is None or weeks < 0:
            raise ValueError(f"Exemption weeks must be >= 0, got {weeks}")

        if weeks == 0:
            return self.clearExemption(driverId, actorId)

        driver = self._getDriver(driverId)
        now = timeMachine.now

        driver.adminFeeExempt = True
        driver.exemptionStartDate = now
        driver.exemptionWeeks = weeks
        driver.exemptionReason = reason
        driver.exemptionSetBy = actorId
        driver.exemptionSetAt = now
        self.session.commit()

        logger.info(f"Driver {driverId} exempt from admin fee for {weeks} weeks by {actorId}: {reason}")
        return self.getExemption(driverId)

    def clearExemption(self, driverId: int, actorId: Optional[str] = None) -> AdminFeeExemption:
        driver = self._getDriver(driverId)

        driver.adminFeeExempt = False
        driver.exemptionStartDate = None
        driver.exemptionWeeks = 0
        driver.exemptionReason = None
        driver.exemptionSetBy = actorId
        driver.exemptionSetAt = timeMachine.now
        self.session.commit()

        logger.info(f"Admin fee exemption cleared for driver {driverId} by {actorId}")
        return self.getExemption(driverId)

    def daysRemaining(self, driverId: int, asOf=None) -> int:
        """Whole days left in the window, 0 when not exempt."""
        exemption = self.getExemption(driverId)
        if not exemption.isExempt or not exemption.endDate:
            return 0
        today = toDate(asOf) if asOf is not None else timeMachine.today
        return max(0, (exemption.endDate - today).days)
