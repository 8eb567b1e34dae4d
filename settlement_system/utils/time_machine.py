# settlement_system/utils/time_machine.py
"""
Settlement clock. Every "now" the engine records (exemption start, paidAt,
proof upload, run timestamps) comes from here, so tests and backfills can pin it.
"""
from datetime import date, datetime, timezone, timedelta
from typing import Optional
import logging

from settlement_system.utils.weeks import weekIdFor

logger = logging.getLogger(__name__)


class TimeMachine:
    """Singleton clock, real UTC time unless a virtual time is pinned."""

    _instance = None
    _virtualTime: Optional[datetime] = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    @property
    def isVirtual(self) -> bool:
        return self._virtualTime is not None

    @property
    def now(self) -> datetime:
        if self._virtualTime is not None:
            return self._virtualTime
        return datetime.now(timezone.utc)

    @property
    def today(self) -> date:
        return self.now.date()

    @property
    def currentWeekId(self) -> str:
        return weekIdFor(self.today)

    @property
    def previousWeekId(self) -> str:
        """Last complete week, the one normally settled today."""
        return weekIdFor(self.today - timedelta(days=7))

    def setTime(self, newTime: datetime, actorId: Optional[str] = None):
        """Pin the clock. Naive datetimes are taken as UTC."""
        if newTime.tzinfo is None:
            newTime = newTime.replace(tzinfo=timezone.utc)
        self._virtualTime = newTime
        logger.info(f"Settlement clock pinned to {newTime.isoformat()} by {actorId}")

    def advanceTime(self, days: int = 0, hours: int = 0, weeks: int = 0):
        if self._virtualTime is None:
            raise ValueError("Clock is not pinned; call setTime first")

        self._virtualTime += timedelta(weeks=weeks, days=days, hours=hours)
        logger.info(f"Settlement clock moved to {self._virtualTime.isoformat()} (week {self.currentWeekId})")

    def resetToRealTime(self):
        if self._virtualTime is not None:
            logger.info("Settlement clock back on real time")
        self._virtualTime = None


# Global instance
timeMachine = TimeMachine()
