# settlement_system/services/commission_service.py
"""
Commission calculation service - multi-level affiliate bonuses for one week.

The walk needs every driver's base payout for the week, so it only runs after
the settlement phase has been committed.
"""
from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, List, Mapping, Optional
from sqlalchemy.orm import Session
import logging

from models import Driver, DriverWeeklyRecord, AffiliateBonus
from settlement_system.config.rates import CommissionBase, PaymentStatus, CENTS
from settlement_system.config.snapshot import CommissionConfig, ConfigSnapshot
from settlement_system.events.event_bus import eventBus, SettlementEvents

logger = logging.getLogger(__name__)

ZERO = Decimal("0")


@dataclass(frozen=True)
class BonusDetail:
    level: int
    referredDriverId: int
    bonusAmount: Decimal
    base: Decimal  # downline base the rate was applied to
    rate: Decimal

    def toDict(self) -> Dict:
        return {
            "level": self.level,
            "referredDriverId": self.referredDriverId,
            "bonusAmount": str(self.bonusAmount),
            "base": str(self.base),
            "rate": str(self.rate)
        }


@dataclass
class IndicatorBonus:
    indicatorId: int
    total: Decimal = ZERO
    details: List[BonusDetail] = field(default_factory=list)


@dataclass(frozen=True)
class ReferralAnomaly:
    kind: str  # cycle, missing_upline
    driverId: int  # downline whose walk was cut short
    atDriverId: int
    level: int
    path: tuple = ()

    def toDict(self) -> Dict:
        return {
            "kind": self.kind,
            "driverId": self.driverId,
            "atDriverId": self.atDriverId,
            "level": self.level,
            "path": list(self.path)
        }


@dataclass
class CommissionResult:
    bonuses: Dict[int, IndicatorBonus] = field(default_factory=dict)
    anomalies: List[ReferralAnomaly] = field(default_factory=list)

    @property
    def totalDistributed(self) -> Decimal:
        return sum((bonus.total for bonus in self.bonuses.values()), ZERO)


def computeAffiliateBonuses(bases: Mapping[int, Decimal],
                            uplineIndex: Mapping[int, Optional[int]],
                            config: CommissionConfig) -> CommissionResult:
    """
    Walk each driver's upline chain and credit level bonuses.

    bases: driverId -> this week's commission base (repasse or netOfTax)
    uplineIndex: driverId -> referredBy, for every known driver
    """
    result = CommissionResult()
    threshold = config.minWeeklyRevenueForEligibility

    for driverId in sorted(bases):
        base = bases[driverId]
        if base is None or base <= 0:
            continue

        visited = [driverId]
        uplineId = uplineIndex.get(driverId)
        level = 1

        while uplineId is not None and level <= config.maxLevels:
            if uplineId in visited:
                anomaly = ReferralAnomaly("cycle", driverId, uplineId, level, tuple(visited + [uplineId]))
                result.anomalies.append(anomaly)
                logger.warning(f"Referral cycle detected walking up from driver {driverId}: {anomaly.path}")
                break

            if uplineId not in uplineIndex:
                anomaly = ReferralAnomaly("missing_upline", driverId, uplineId, level, tuple(visited))
                result.anomalies.append(anomaly)
                logger.warning(f"Driver {visited[-1]} refers to unknown upline {uplineId}")
                break

            visited.append(uplineId)
            rate = config.rateFor(level)

            # Zero-rate levels still advance the walk
            if rate > 0:
                indicatorBase = bases.get(uplineId, ZERO)
                if indicatorBase >= threshold:
                    amount = (base * rate).quantize(CENTS, rounding=ROUND_HALF_UP)
                    if amount > 0:
                        bonus = result.bonuses.setdefault(uplineId, IndicatorBonus(indicatorId=uplineId))
                        bonus.details.append(BonusDetail(
                            level=level,
                            referredDriverId=driverId,
                            bonusAmount=amount,
                            base=base,
                            rate=rate
                        ))
                        bonus.total += amount

            uplineId = uplineIndex.get(uplineId)
            level += 1

    return result


def basesFromRecords(records, base: CommissionBase) -> Dict[int, Decimal]:
    column = "netPayout" if base == CommissionBase.REPASSE else "netOfTax"
    return {
        record.driverID: Decimal(str(getattr(record, column) or 0))
        for record in records
    }


class CommissionService:
    """Service for the weekly bonus phase."""

    def __init__(self, session: Session):
        self.session = session

    def _uplineIndex(self) -> Dict[int, Optional[int]]:
        # Inactive drivers stay in the chain so their uplines are still reached
        rows = self.session.query(Driver.driverID, Driver.referredBy).all()
        return {driverId: referredBy for driverId, referredBy in rows}

    async def computeWeek(self, weekId: str, snapshot: ConfigSnapshot) -> Dict:
        """
        Compute and store all bonuses for a settled week.
        Re-running overwrites the week's bonuses instead of accumulating.
        """
        records = self.session.query(DriverWeeklyRecord).filter_by(weekId=weekId).all()
        if not records:
            logger.error(f"No settled records for {weekId}, bonus phase skipped")
            return {"success": False, "weekId": weekId, "error": "Week not settled"}

        commissionConfig = snapshot.commission
        bases = basesFromRecords(records, commissionConfig.base)
        result = computeAffiliateBonuses(bases, self._uplineIndex(), commissionConfig)
        recordsByDriver = {record.driverID: record for record in records}

        try:
            self.session.query(AffiliateBonus).filter_by(weekId=weekId).delete(synchronize_session=False)

            for bonus in result.bonuses.values():
                self.session.add(AffiliateBonus(
                    indicatorID=bonus.indicatorId,
                    weekId=weekId,
                    total=bonus.total,
                    details=[detail.toDict() for detail in bonus.details]
                ))

            for record in records:
                if record.paymentStatus == PaymentStatus.PAID.value:
                    # Paid records keep the bonuses they were paid with
                    continue
                bonus = result.bonuses.get(record.driverID)
                record.bonusPending = [detail.toDict() for detail in bonus.details] if bonus else []
                record.bonusTotal = bonus.total if bonus else ZERO
                record.totalAmount = Decimal(str(record.netPayout or 0)) + record.bonusTotal

            for indicatorId in result.bonuses:
                if indicatorId not in recordsByDriver:
                    logger.warning(f"Indicator {indicatorId} earned bonuses for {weekId} but has no weekly record")

            self.session.commit()
        except Exception as e:
            self.session.rollback()
            logger.error(f"Error storing bonuses for {weekId}: {e}", exc_info=True)
            return {"success": False, "weekId": weekId, "error": str(e)}

        logger.info(
            f"Bonus phase for {weekId}: {len(result.bonuses)} indicators, "
            f"total {result.totalDistributed}, {len(result.anomalies)} anomalies"
        )

        for bonus in result.bonuses.values():
            await eventBus.emit(SettlementEvents.BONUS_COMPUTED, {
                "weekId": weekId,
                "indicatorId": bonus.indicatorId,
                "total": str(bonus.total),
                "details": [detail.toDict() for detail in bonus.details]
            })
        for anomaly in result.anomalies:
            await eventBus.emit(SettlementEvents.REFERRAL_ANOMALY, {"weekId": weekId, **anomaly.toDict()})

        return {
            "success": True,
            "weekId": weekId,
            "indicators": len(result.bonuses),
            "totalDistributed": result.totalDistributed,
            "bonuses": {indicatorId: bonus.total for indicatorId, bonus in result.bonuses.items()},
            "anomalies": [anomaly.toDict() for anomaly in result.anomalies]
        }
