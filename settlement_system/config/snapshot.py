# settlement_system/config/snapshot.py
"""
Immutable configuration values read once per settlement run.

Every component of a run receives the same ConfigSnapshot, so a rule changed
by an admin mid-run only takes effect on the next run.
"""
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional, Tuple
import logging

from settlement_system.errors import ConfigurationError
from settlement_system.config.rates import (
    AdminFeeMode, AdminFeeBase, CommissionBase, DriverType, FinancingEligibilityPolicy,
    DEFAULT_ADMIN_FEE_CONFIG, DEFAULT_COMMISSION_CONFIG, DEFAULT_FINANCIAL_CONFIG,
    MAX_COMMISSION_LEVELS, TAX_RATE
)

logger = logging.getLogger(__name__)


def toDecimal(value: Any, default: Optional[Decimal] = None) -> Optional[Decimal]:
    """Convert a stored number (int, float, str, Decimal) to Decimal."""
    if value is None or isinstance(value, bool):
        return default
    try:
        result = Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        return default
    if not result.is_finite():
        return default
    return result


@dataclass(frozen=True)
class AdminFeeRule:
    mode: AdminFeeMode
    value: Decimal  # percent (0-100) or fixed amount
    base: AdminFeeBase

    def toDict(self) -> Dict[str, Any]:
        return {"mode": self.mode.value, "value": str(self.value), "base": self.base.value}


@dataclass(frozen=True)
class AdminFeeConfig:
    affiliate: AdminFeeRule
    renter: AdminFeeRule

    def ruleFor(self, driverType: DriverType) -> AdminFeeRule:
        return self.renter if driverType == DriverType.RENTER else self.affiliate

    def toDict(self) -> Dict[str, Any]:
        return {"affiliate": self.affiliate.toDict(), "renter": self.renter.toDict()}


@dataclass(frozen=True)
class CommissionConfig:
    minWeeklyRevenueForEligibility: Decimal
    base: CommissionBase
    maxLevels: int
    levels: Mapping[int, Decimal] = field(default_factory=dict)

    def rateFor(self, level: int) -> Decimal:
        return self.levels.get(level, Decimal("0"))

    def toDict(self) -> Dict[str, Any]:
        return {
            "minWeeklyRevenueForEligibility": str(self.minWeeklyRevenueForEligibility),
            "base": self.base.value,
            "maxLevels": self.maxLevels,
            "levels": {str(level): str(rate) for level, rate in sorted(self.levels.items())}
        }


@dataclass(frozen=True)
class FinancialConfig:
    adminFeePercent: Decimal
    adminFeeFixedDefault: Decimal
    financingEligibilityPolicy: FinancingEligibilityPolicy
    chargeTollsToAffiliates: bool

    def toDict(self) -> Dict[str, Any]:
        return {
            "adminFeePercent": str(self.adminFeePercent),
            "adminFeeFixedDefault": str(self.adminFeeFixedDefault),
            "financingEligibilityPolicy": self.financingEligibilityPolicy.value,
            "chargeTollsToAffiliates": self.chargeTollsToAffiliates
        }


@dataclass(frozen=True)
class ConfigSnapshot:
    adminFee: AdminFeeConfig
    commission: CommissionConfig
    financial: FinancialConfig
    taxRate: Decimal = TAX_RATE
    fallbacks: Tuple[str, ...] = ()  # documents that were replaced by defaults

    def toDict(self) -> Dict[str, Any]:
        return {
            "adminFee": self.adminFee.toDict(),
            "commission": self.commission.toDict(),
            "financial": self.financial.toDict(),
            "taxRate": str(self.taxRate)
        }


# region Defaults

def defaultAdminFeeRule(driverType: DriverType) -> AdminFeeRule:
    rule = DEFAULT_ADMIN_FEE_CONFIG[driverType]
    return AdminFeeRule(mode=rule["mode"], value=rule["value"], base=rule["base"])


def defaultAdminFeeConfig() -> AdminFeeConfig:
    return AdminFeeConfig(
        affiliate=defaultAdminFeeRule(DriverType.AFFILIATE),
        renter=defaultAdminFeeRule(DriverType.RENTER)
    )


def defaultCommissionConfig() -> CommissionConfig:
    return CommissionConfig(
        minWeeklyRevenueForEligibility=DEFAULT_COMMISSION_CONFIG["minWeeklyRevenueForEligibility"],
        base=DEFAULT_COMMISSION_CONFIG["base"],
        maxLevels=DEFAULT_COMMISSION_CONFIG["maxLevels"],
        levels=MappingProxyType(dict(DEFAULT_COMMISSION_CONFIG["levels"]))
    )


def defaultFinancialConfig() -> FinancialConfig:
    return FinancialConfig(
        adminFeePercent=DEFAULT_FINANCIAL_CONFIG["adminFeePercent"],
        adminFeeFixedDefault=DEFAULT_FINANCIAL_CONFIG["adminFeeFixedDefault"],
        financingEligibilityPolicy=DEFAULT_FINANCIAL_CONFIG["financingEligibilityPolicy"],
        chargeTollsToAffiliates=DEFAULT_FINANCIAL_CONFIG["chargeTollsToAffiliates"]
    )

# endregion


# region Parsing

def _parseEnum(enumClass, value, fallback):
    try:
        return enumClass(value)
    except ValueError:
        return fallback


def parseAdminFeeRule(data: Any, fallback: AdminFeeRule) -> AdminFeeRule:
    """Sanitize one per-type rule; unknown or invalid fields keep the fallback."""
    if not isinstance(data, dict):
        return fallback

    mode = _parseEnum(AdminFeeMode, data.get("mode"), fallback.mode)
    value = toDecimal(data.get("value"), fallback.value)
    if value < 0:
        value = Decimal("0")
    if mode == AdminFeeMode.PERCENT and value > 100:
        value = Decimal("100")
    base = _parseEnum(AdminFeeBase, data.get("base"), fallback.base)

    return AdminFeeRule(mode=mode, value=value, base=base)


def _legacyBase(appliedToBase: Any) -> AdminFeeBase:
    # Old documents only knew "repasse" and "ganhosMenosIVA"
    if appliedToBase == "repasse":
        return AdminFeeBase.GROSS_MINUS_TAX_MINUS_EXPENSES
    return AdminFeeBase.GROSS_MINUS_TAX


def isLegacyAdminFeeDocument(data: Dict[str, Any]) -> bool:
    return any(key in data for key in ("percentValue", "fixedValue", "appliedToBase")) or (
        "mode" in data and "affiliate" not in data and "renter" not in data
    )


def parseAdminFeeConfig(data: Any, current: Optional[AdminFeeConfig] = None) -> AdminFeeConfig:
    """
    Parse an admin fee document.

    Accepts the per-type format {affiliate: {...}, renter: {...}} and the legacy
    single-rule format {mode, percentValue, fixedValue, appliedToBase}, which is
    applied to both driver types.
    """
    current = current or defaultAdminFeeConfig()
    if not isinstance(data, dict):
        raise ConfigurationError("Admin fee document must be an object")

    if isLegacyAdminFeeDocument(data):
        mode = AdminFeeMode.FIXED if data.get("mode") == "fixed" else AdminFeeMode.PERCENT
        if mode == AdminFeeMode.PERCENT:
            value = toDecimal(data.get("percentValue"), current.affiliate.value)
            value = min(max(value, Decimal("0")), Decimal("100"))
        else:
            value = max(toDecimal(data.get("fixedValue"), current.affiliate.value), Decimal("0"))
        rule = AdminFeeRule(mode=mode, value=value, base=_legacyBase(data.get("appliedToBase")))
        return AdminFeeConfig(affiliate=rule, renter=rule)

    if "affiliate" not in data and "renter" not in data:
        raise ConfigurationError("Admin fee document has no affiliate or renter rule")

    return AdminFeeConfig(
        affiliate=parseAdminFeeRule(data.get("affiliate"), current.affiliate),
        renter=parseAdminFeeRule(data.get("renter"), current.renter)
    )


def parseCommissionConfig(data: Any, current: Optional[CommissionConfig] = None) -> CommissionConfig:
    """Parse a commission document; maxLevels is clamped to 1..MAX_COMMISSION_LEVELS."""
    current = current or defaultCommissionConfig()
    if not isinstance(data, dict):
        raise ConfigurationError("Commission document must be an object")

    threshold = toDecimal(data.get("minWeeklyRevenueForEligibility"), current.minWeeklyRevenueForEligibility)
    base = _parseEnum(CommissionBase, data.get("base"), current.base)

    try:
        maxLevels = int(data.get("maxLevels", current.maxLevels))
    except (TypeError, ValueError):
        maxLevels = current.maxLevels
    maxLevels = max(1, min(MAX_COMMISSION_LEVELS, maxLevels))

    levels = dict(current.levels)
    rawLevels = data.get("levels")
    if rawLevels is not None:
        if not isinstance(rawLevels, dict):
            raise ConfigurationError("Commission levels must be a mapping of level to rate")
        levels = {}
        for rawLevel, rawRate in rawLevels.items():
            try:
                level = int(rawLevel)
            except (TypeError, ValueError):
                logger.warning(f"Ignoring commission level {rawLevel!r}: not an integer")
                continue
            rate = toDecimal(rawRate)
            if rate is None or rate < 0:
                logger.warning(f"Ignoring commission level {level}: invalid rate {rawRate!r}")
                continue
            levels[level] = rate

    levels = {level: rate for level, rate in levels.items() if 1 <= level <= maxLevels}

    return CommissionConfig(
        minWeeklyRevenueForEligibility=max(threshold, Decimal("0")),
        base=base,
        maxLevels=maxLevels,
        levels=MappingProxyType(levels)
    )


def parseFinancialConfig(data: Any, current: Optional[FinancialConfig] = None) -> FinancialConfig:
    current = current or defaultFinancialConfig()
    if not isinstance(data, dict):
        raise ConfigurationError("Financial document must be an object")

    financing = data.get("financing") if isinstance(data.get("financing"), dict) else {}
    policy = data.get("financingEligibilityPolicy", financing.get("eligibilityPolicy"))
    chargeTolls = data.get("chargeTollsToAffiliates")

    return FinancialConfig(
        adminFeePercent=max(toDecimal(data.get("adminFeePercent"), current.adminFeePercent), Decimal("0")),
        adminFeeFixedDefault=max(toDecimal(data.get("adminFeeFixedDefault"), current.adminFeeFixedDefault),
                                 Decimal("0")),
        financingEligibilityPolicy=_parseEnum(FinancingEligibilityPolicy, policy,
                                              current.financingEligibilityPolicy),
        chargeTollsToAffiliates=chargeTolls if isinstance(chargeTolls, bool) else current.chargeTollsToAffiliates
    )

# endregion
