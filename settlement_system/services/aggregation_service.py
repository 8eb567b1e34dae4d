# settlement_system/services/aggregation_service.py
"""
Platform aggregation - collapses imported rows into one total per (driver, week, platform).

Rows arrive already normalized by imports.normalize_rows():
    {"referenceKey", "plate", "label", "value", "trips"}
Rows whose key resolves to no driver are kept as unmapped entries and never
counted in any driver's total.
"""
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, Iterable, List, Mapping, Optional, Tuple, Union
from sqlalchemy import func
from sqlalchemy.orm import Session
import logging

from models import WeeklyPlatformAggregate, UnmappedImportEntry
from settlement_system.config.rates import Platform, CENTS
from settlement_system.config.snapshot import toDecimal
from settlement_system.events.event_bus import eventBus, SettlementEvents
from settlement_system.services.driver_resolver import (
    DriverResolver, normalizeKey, normalizePlate, toPlatform
)
from settlement_system.utils.time_machine import timeMachine
from settlement_system.utils.weeks import parseWeekId

logger = logging.getLogger(__name__)


@dataclass
class AggregateTotal:
    driverId: int
    platform: Platform
    totalValue: Decimal = Decimal("0")
    totalTrips: int = 0
    referenceId: Optional[str] = None
    rowCount: int = 0


@dataclass
class UnmappedEntry:
    platform: Platform
    referenceId: str  # normalized key
    label: Optional[str] = None
    totalValue: Decimal = Decimal("0")
    rowCount: int = 0
    reason: str = "no driver matches key"


@dataclass
class AggregationResult:
    weekId: str
    aggregates: Dict[Tuple[int, Platform], AggregateTotal] = field(default_factory=dict)
    unmapped: List[UnmappedEntry] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    rowsRead: int = 0
    rowsMapped: int = 0

    def totalsFor(self, driverId: int) -> Dict[Platform, Decimal]:
        return {
            platform: total.totalValue
            for (aggregateDriverId, platform), total in self.aggregates.items()
            if aggregateDriverId == driverId
        }


class PlatformAggregator:
    """Pure aggregation over already-parsed rows; never touches the database."""

    def __init__(self, resolver: DriverResolver):
        self.resolver = resolver

    def aggregate(self, weekId: str,
                  rowsByPlatform: Mapping[Union[Platform, str], Iterable[dict]]) -> AggregationResult:
        parseWeekId(weekId)
        result = AggregationResult(weekId=weekId)
        unmapped: Dict[Tuple[Platform, str], UnmappedEntry] = {}

        for rawPlatform, rows in rowsByPlatform.items():
            platform = toPlatform(rawPlatform)

            for index, row in enumerate(rows):
                result.rowsRead += 1

                value = toDecimal(row.get("value"))
                if value is None:
                    message = f"{platform.value} row {index + 1}: invalid value {row.get('value')!r}, row skipped"
                    result.warnings.append(message)
                    logger.warning(message)
                    continue

                trips = toDecimal(row.get("trips") or 0)
                if trips is None or trips < 0 or trips != trips.to_integral_value():
                    message = f"{platform.value} row {index + 1}: invalid trips {row.get('trips')!r}, row skipped"
                    result.warnings.append(message)
                    logger.warning(message)
                    continue

                referenceKey = row.get("referenceKey")
                plate = row.get("plate")

                driverId, reason = self.resolver.resolveWithReason(platform, referenceKey, plate)

                if driverId is None:
                    key = normalizeKey(referenceKey) or normalizePlate(plate)
                    entry = unmapped.get((platform, key))
                    if entry is None:
                        entry = UnmappedEntry(
                            platform=platform,
                            referenceId=key,
                            label=row.get("label") or (str(referenceKey) if referenceKey else plate),
                            reason=reason
                        )
                        unmapped[(platform, key)] = entry
                    entry.totalValue += value
                    entry.rowCount += 1
                    continue

                total = result.aggregates.get((driverId, platform))
                if total is None:
                    total = AggregateTotal(
                        driverId=driverId,
                        platform=platform,
                        referenceId=normalizeKey(referenceKey) or normalizePlate(plate)
                    )
                    result.aggregates[(driverId, platform)] = total
                total.totalValue += value
                total.totalTrips += int(trips)
                total.rowCount += 1
                result.rowsMapped += 1

        for total in result.aggregates.values():
            total.totalValue = total.totalValue.quantize(CENTS)
        result.unmapped = list(unmapped.values())
        result.warnings.extend(self.resolver.warnings)

        if result.unmapped:
            logger.warning(
                f"Week {weekId}: {len(result.unmapped)} unmapped references "
                f"({sum(entry.rowCount for entry in result.unmapped)} rows)"
            )

        logger.info(
            f"Aggregated week {weekId}: {result.rowsMapped}/{result.rowsRead} rows mapped, "
            f"{len(result.aggregates)} driver-platform totals"
        )
        return result


class AggregationService:
    """Stores aggregation passes and serves the latest pass to the settlement run."""

    def __init__(self, session: Session):
        self.session = session

    def latestPass(self, weekId: str) -> int:
        """Highest stored pass for the week, 0 if none."""
        latest = self.session.query(func.max(WeeklyPlatformAggregate.aggregationPass)).filter(
            WeeklyPlatformAggregate.weekId == weekId
        ).scalar()
        return latest or 0

    async def storePass(self, result: AggregationResult) -> Dict:
        """
        Persist an aggregation result as a new pass.
        Earlier passes are kept untouched, so a consumed pass is never mutated.
        """
        weekId = result.weekId
        latestUnmapped = self.session.query(func.max(UnmappedImportEntry.aggregationPass)).filter(
            UnmappedImportEntry.weekId == weekId
        ).scalar() or 0
        passNumber = max(self.latestPass(weekId), latestUnmapped) + 1

        try:
            for total in result.aggregates.values():
                self.session.add(WeeklyPlatformAggregate(
                    driverID=total.driverId,
                    weekId=weekId,
                    platform=total.platform.value,
                    totalValue=total.totalValue,
                    totalTrips=total.totalTrips,
                    referenceId=total.referenceId,
                    aggregationPass=passNumber
                ))

            for entry in result.unmapped:
                self.session.add(UnmappedImportEntry(
                    weekId=weekId,
                    platform=entry.platform.value,
                    aggregationPass=passNumber,
                    referenceId=entry.referenceId,
                    referenceLabel=entry.label,
                    totalValue=entry.totalValue.quantize(CENTS),
                    rowCount=entry.rowCount
                ))

            self.session.commit()
        except Exception as e:
            self.session.rollback()
            logger.error(f"Failed to store aggregation pass for {weekId}: {e}", exc_info=True)
            return {"success": False, "weekId": weekId, "error": str(e)}

        logger.info(f"Stored aggregation pass {passNumber} for {weekId}")

        if result.unmapped:
            await eventBus.emit(SettlementEvents.UNMAPPED_ROWS, {
                "weekId": weekId,
                "aggregationPass": passNumber,
                "entries": [
                    {"platform": entry.platform.value, "referenceId": entry.referenceId,
                     "label": entry.label, "totalValue": str(entry.totalValue), "rowCount": entry.rowCount}
                    for entry in result.unmapped
                ]
            })

        return {
            "success": True,
            "weekId": weekId,
            "aggregationPass": passNumber,
            "aggregates": len(result.aggregates),
            "unmapped": len(result.unmapped),
            "warnings": list(result.warnings)
        }

    def loadTotals(self, weekId: str, passNumber: Optional[int] = None) -> Tuple[int, Dict[int, Dict[Platform, Decimal]]]:
        """Return (pass, {driverId: {platform: total}}) for the latest (or given) pass."""
        passNumber = passNumber or self.latestPass(weekId)
        totals: Dict[int, Dict[Platform, Decimal]] = {}
        if not passNumber:
            return 0, totals

        rows = self.session.query(WeeklyPlatformAggregate).filter_by(
            weekId=weekId, aggregationPass=passNumber
        ).all()
        for row in rows:
            totals.setdefault(row.driverID, {})[Platform(row.platform)] = Decimal(str(row.totalValue or 0))
        return passNumber, totals

    def markConsumed(self, weekId: str, passNumber: int):
        """Stamp the pass as read by a settlement. Caller commits."""
        self.session.query(WeeklyPlatformAggregate).filter(
            WeeklyPlatformAggregate.weekId == weekId,
            WeeklyPlatformAggregate.aggregationPass == passNumber,
            WeeklyPlatformAggregate.consumedAt.is_(None)
        ).update({WeeklyPlatformAggregate.consumedAt: timeMachine.now}, synchronize_session=False)

    def unmappedReport(self, weekId: str, passNumber: Optional[int] = None) -> List[UnmappedImportEntry]:
        query = self.session.query(UnmappedImportEntry).filter_by(weekId=weekId)
        if passNumber is None:
            passNumber = self.session.query(func.max(UnmappedImportEntry.aggregationPass)).filter(
                UnmappedImportEntry.weekId == weekId
            ).scalar()
        if passNumber is None:
            return []
        return query.filter_by(aggregationPass=passNumber).order_by(UnmappedImportEntry.platform,
                                                                   UnmappedImportEntry.referenceId).all()
