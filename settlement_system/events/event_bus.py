# settlement_system/events/event_bus.py
"""
In-process event bus. The engine only announces what happened (record ready,
bonuses computed, unmapped rows); e-mail, chat or webhook delivery lives in
subscribers outside the engine.
"""
from collections import defaultdict
from typing import Any, Callable, DefaultDict, Dict, List
import asyncio
import logging

logger = logging.getLogger(__name__)


class EventBus:
    """Singleton publisher; a failing subscriber never fails a settlement run."""

    _instance = None
    _handlers: DefaultDict[str, List[Callable]]

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._handlers = defaultdict(list)
        return cls._instance

    def subscribe(self, eventName: str, handler: Callable):
        if handler not in self._handlers[eventName]:
            self._handlers[eventName].append(handler)
        logger.debug(f"{getattr(handler, '__name__', handler)} subscribed to {eventName}")

    def unsubscribe(self, eventName: str, handler: Callable):
        if handler in self._handlers.get(eventName, ()):
            self._handlers[eventName].remove(handler)

    def handlersFor(self, eventName: str) -> List[Callable]:
        return list(self._handlers.get(eventName, ()))

    async def emit(self, eventName: str, data: Dict[str, Any]) -> int:
        """Deliver to every subscriber (sync or async). Returns the number of failed handlers."""
        handlers = self.handlersFor(eventName)
        if not handlers:
            return 0

        logger.debug(f"Emitting {eventName} to {len(handlers)} handlers")

        failed = 0
        for handler in handlers:
            try:
                if asyncio.iscoroutinefunction(handler):
                    await handler(data)
                else:
                    handler(data)
            except Exception as e:
                failed += 1
                logger.error(f"Handler {getattr(handler, '__name__', handler)} failed on {eventName}: {e}",
                             exc_info=True)
        return failed

    def clear(self):
        self._handlers.clear()


# Global event bus instance
eventBus = EventBus()


class SettlementEvents:
    """Event names emitted by the settlement engine."""

    RECORD_READY = "record.ready"  # {weekId, driverId}
    BONUS_COMPUTED = "bonus.computed"  # {weekId, indicatorId, total, details}
    WEEK_SETTLED = "week.settled"  # {weekId, runId}
    WEEK_REPROCESSED = "week.reprocessed"  # {weekId, driversProcessed, adminFeePercentage, errors}
    UNMAPPED_ROWS = "import.unmapped"  # {weekId, aggregationPass, entries}
    REFERRAL_ANOMALY = "referral.anomaly"  # ReferralAnomaly.toDict() + weekId
