# settlement_system/services/settlement_calculator.py
"""
Settlement calculator - derives tax, admin fee, expenses and repasse for one driver-week.

calculateSettlement() is pure: it reads nothing but its arguments, so the same
inputs always give the same result and the same snapshot JSON. Every money
component is rounded to cents before the repasse is computed, which keeps
    netPayout == netOfTax - adminFeeValue - expenseTotal
exact.
"""
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, Iterable, Mapping, Optional, Tuple
import json
import logging

from settlement_system.config.rates import (
    Platform, DriverType, AdminFeeMode, AdminFeeBase, FinancingEligibilityPolicy, CENTS
)
from settlement_system.config.snapshot import AdminFeeRule, ConfigSnapshot, FinancialConfig, toDecimal
from settlement_system.errors import ComputationError
from settlement_system.utils.weeks import toDate, weekBounds

logger = logging.getLogger(__name__)

ZERO = Decimal("0")
HUNDRED = Decimal("100")
SNAPSHOT_VERSION = 1


def money(value) -> Decimal:
    return Decimal(value).quantize(CENTS, rounding=ROUND_HALF_UP)


def percentOf(amount: Decimal, percent: Decimal) -> Decimal:
    return money(amount * percent / HUNDRED)


# region Inputs

@dataclass(frozen=True)
class FinancingTerms:
    """One financing item's charge for the week, already resolved from the Financing row."""
    financingId: Optional[int]
    type: str  # loan, discount
    installment: Decimal
    interestPercent: Decimal = ZERO
    onusPercent: Decimal = ZERO

    def toDict(self) -> Dict[str, Any]:
        return {
            "financingId": self.financingId,
            "type": self.type,
            "installment": str(self.installment),
            "interestPercent": str(self.interestPercent),
            "onusPercent": str(self.onusPercent)
        }

    @classmethod
    def fromDict(cls, data: Mapping[str, Any]) -> "FinancingTerms":
        return cls(
            financingId=data.get("financingId"),
            type=data.get("type", "discount"),
            installment=_requireDecimal(data, "installment"),
            interestPercent=toDecimal(data.get("interestPercent"), ZERO),
            onusPercent=toDecimal(data.get("onusPercent"), ZERO)
        )


@dataclass(frozen=True)
class SettlementInputs:
    """Everything the calculator needs for one driver-week; stored verbatim in the snapshot."""
    driverId: int
    weekId: str
    driverType: DriverType
    driverName: Optional[str] = None
    uber: Decimal = ZERO
    bolt: Decimal = ZERO
    fuel: Decimal = ZERO
    tolls: Decimal = ZERO
    rent: Decimal = ZERO
    financing: Tuple[FinancingTerms, ...] = ()
    # Driver override of the configured rule (mode + value only)
    adminFeeModeOverride: Optional[AdminFeeMode] = None
    adminFeeValueOverride: Optional[Decimal] = None

    def toDict(self) -> Dict[str, Any]:
        return {
            "driverId": self.driverId,
            "weekId": self.weekId,
            "driverType": self.driverType.value,
            "driverName": self.driverName,
            "uber": str(self.uber),
            "bolt": str(self.bolt),
            "fuel": str(self.fuel),
            "tolls": str(self.tolls),
            "rent": str(self.rent),
            "financing": [terms.toDict() for terms in self.financing],
            "adminFeeModeOverride": self.adminFeeModeOverride.value if self.adminFeeModeOverride else None,
            "adminFeeValueOverride": (str(self.adminFeeValueOverride)
                                      if self.adminFeeValueOverride is not None else None)
        }

    @classmethod
    def fromDict(cls, data: Mapping[str, Any]) -> "SettlementInputs":
        if not isinstance(data, Mapping):
            raise ComputationError("Snapshot inputs missing")
        driverId = data.get("driverId")
        try:
            driverType = DriverType(data.get("driverType"))
            modeOverride = data.get("adminFeeModeOverride")
            return cls(
                driverId=driverId,
                weekId=data["weekId"],
                driverType=driverType,
                driverName=data.get("driverName"),
                uber=_requireDecimal(data, "uber"),
                bolt=_requireDecimal(data, "bolt"),
                fuel=_requireDecimal(data, "fuel"),
                tolls=_requireDecimal(data, "tolls"),
                rent=_requireDecimal(data, "rent"),
                financing=tuple(FinancingTerms.fromDict(item) for item in data.get("financing") or ()),
                adminFeeModeOverride=AdminFeeMode(modeOverride) if modeOverride else None,
                adminFeeValueOverride=toDecimal(data.get("adminFeeValueOverride"))
            )
        except (KeyError, ValueError) as e:
            raise ComputationError(f"Snapshot inputs malformed: {e}", driverId=driverId)


def _requireDecimal(data: Mapping[str, Any], key: str) -> Decimal:
    value = toDecimal(data.get(key))
    if value is None:
        raise ComputationError(f"Missing or invalid '{key}'", driverId=data.get("driverId"))
    return value

# endregion


# region Financing

def weeklyInstallment(financing) -> Decimal:
    """
    Installment charged this week for one Financing row:
    explicit weeklyAmount, else loan amount spread over the remaining weeks,
    else (discounts) the amount itself.
    """
    weeklyAmount = toDecimal(financing.weeklyAmount, ZERO)
    if weeklyAmount > 0:
        return money(weeklyAmount)

    amount = toDecimal(financing.amount, ZERO)
    if financing.type == "loan":
        weeks = financing.remainingWeeks or financing.weeks
        if not weeks or weeks <= 0:
            return ZERO
        return money(amount / Decimal(weeks))

    return money(amount)


def isFinancingEligible(financing, weekStart: date, weekEnd: date,
                        policy: FinancingEligibilityPolicy) -> bool:
    if financing.status == "completed":
        return False
    start = toDate(financing.startDate)
    if start is None:
        return True
    limit = weekStart if policy == FinancingEligibilityPolicy.START_DATE_TO_WEEK_START else weekEnd
    return start <= limit


def deriveFinancingTerms(financings: Iterable, weekId: str,
                         policy: FinancingEligibilityPolicy) -> Tuple[FinancingTerms, ...]:
    weekStart, weekEnd = weekBounds(weekId)
    terms = []
    for financing in sorted(financings, key=lambda item: item.financingID or 0):
        if not isFinancingEligible(financing, weekStart, weekEnd, policy):
            continue
        terms.append(FinancingTerms(
            financingId=financing.financingID,
            type=financing.type or "discount",
            installment=weeklyInstallment(financing),
            interestPercent=toDecimal(financing.interestPercent, ZERO),
            onusPercent=toDecimal(financing.onusPercent, ZERO)
        ))
    return tuple(terms)

# endregion


def buildSettlementInputs(driver, weekId: str, totals: Mapping[Platform, Decimal],
                          financings: Iterable, financial: FinancialConfig) -> SettlementInputs:
    """Assemble calculator inputs from a Driver row, its week totals and its financing rows."""
    driverType = DriverType.RENTER if driver.isRenter else DriverType.AFFILIATE

    modeOverride = None
    valueOverride = None
    if driver.adminFeeMode:
        try:
            modeOverride = AdminFeeMode(driver.adminFeeMode)
        except ValueError:
            logger.warning(f"Driver {driver.driverID} has unknown admin fee mode "
                           f"'{driver.adminFeeMode}', using configured rule")
        else:
            valueOverride = toDecimal(driver.adminFeeValue)
            if valueOverride is None:
                # A mode without a value takes the financial default for that mode
                valueOverride = (financial.adminFeePercent if modeOverride == AdminFeeMode.PERCENT
                                 else financial.adminFeeFixedDefault)

    rent = toDecimal(driver.rentalFee, ZERO) if driverType == DriverType.RENTER else ZERO

    return SettlementInputs(
        driverId=driver.driverID,
        weekId=weekId,
        driverType=driverType,
        driverName=driver.name,
        uber=money(totals.get(Platform.UBER, ZERO)),
        bolt=money(totals.get(Platform.BOLT, ZERO)),
        fuel=money(totals.get(Platform.MYPRIO, ZERO)),
        tolls=money(totals.get(Platform.VIAVERDE, ZERO)),
        rent=money(rent),
        financing=deriveFinancingTerms(financings, weekId, financial.financingEligibilityPolicy),
        adminFeeModeOverride=modeOverride,
        adminFeeValueOverride=valueOverride
    )


# region Admin fee

@dataclass(frozen=True)
class AdminFeeBaseContext:
    grossEarnings: Decimal
    netOfTax: Decimal
    expenseTotal: Decimal


_BASE_RESOLVERS = {
    AdminFeeBase.GROSS: lambda ctx: ctx.grossEarnings,
    AdminFeeBase.GROSS_MINUS_TAX: lambda ctx: ctx.netOfTax,
    AdminFeeBase.GROSS_MINUS_EXPENSES: lambda ctx: ctx.grossEarnings - ctx.expenseTotal,
    AdminFeeBase.GROSS_MINUS_TAX_MINUS_EXPENSES: lambda ctx: ctx.netOfTax - ctx.expenseTotal,
}


def resolveAdminFeeBase(base: AdminFeeBase, ctx: AdminFeeBaseContext) -> Decimal:
    """Single lookup for the admin fee base quantity, never negative."""
    try:
        resolver = _BASE_RESOLVERS[base]
    except KeyError:
        raise ComputationError(f"Unknown admin fee base: {base}")
    return max(resolver(ctx), ZERO)


def effectiveAdminFeeRule(inputs: SettlementInputs, snapshot: ConfigSnapshot) -> AdminFeeRule:
    rule = snapshot.adminFee.ruleFor(inputs.driverType)
    if inputs.adminFeeModeOverride and inputs.adminFeeValueOverride is not None:
        return AdminFeeRule(mode=inputs.adminFeeModeOverride, value=inputs.adminFeeValueOverride, base=rule.base)
    return rule


def computeAdminFee(rule: AdminFeeRule, baseValue: Decimal) -> Decimal:
    if rule.mode == AdminFeeMode.PERCENT:
        return percentOf(baseValue, rule.value)
    return money(rule.value)

# endregion


@dataclass(frozen=True)
class SettlementResult:
    inputs: SettlementInputs
    grossEarnings: Decimal
    taxRate: Decimal
    taxValue: Decimal
    netOfTax: Decimal
    adminFeeValue: Decimal
    adminFeeBase: AdminFeeBase
    adminFeeBaseValue: Decimal
    adminFeeMode: AdminFeeMode
    adminFeeRate: Decimal
    adminFeeExempt: bool
    fuel: Decimal
    tolls: Decimal
    rent: Decimal
    financingInstallment: Decimal
    financingInterest: Decimal
    financingOnus: Decimal
    financingTotal: Decimal
    expenseTotal: Decimal
    netPayout: Decimal
    tollsChargeable: bool = True
    notes: Tuple[str, ...] = field(default_factory=tuple)

    @property
    def driverId(self) -> int:
        return self.inputs.driverId

    def toSnapshot(self) -> Dict[str, Any]:
        """Inputs plus the configuration used; enough to audit or reprocess the record."""
        return {
            "version": SNAPSHOT_VERSION,
            "inputs": self.inputs.toDict(),
            "config": {
                "taxRate": str(self.taxRate),
                "adminFee": {
                    "mode": self.adminFeeMode.value,
                    "value": str(self.adminFeeRate),
                    "base": self.adminFeeBase.value
                },
                "tollsChargeable": self.tollsChargeable
            },
            "adminFeeExempt": self.adminFeeExempt,
            "result": {
                "grossEarnings": str(self.grossEarnings),
                "taxValue": str(self.taxValue),
                "netOfTax": str(self.netOfTax),
                "adminFeeBaseValue": str(self.adminFeeBaseValue),
                "adminFeeValue": str(self.adminFeeValue),
                "financingTotal": str(self.financingTotal),
                "expenseTotal": str(self.expenseTotal),
                "netPayout": str(self.netPayout)
            }
        }

    def toSnapshotJson(self) -> str:
        return json.dumps(self.toSnapshot(), sort_keys=True, separators=(",", ":"))

    def toRecordFields(self) -> Dict[str, Any]:
        """Derived columns of DriverWeeklyRecord."""
        return {
            "uberTotal": self.inputs.uber,
            "boltTotal": self.inputs.bolt,
            "grossEarnings": self.grossEarnings,
            "taxValue": self.taxValue,
            "netOfTax": self.netOfTax,
            "adminFeeValue": self.adminFeeValue,
            "adminFeeBase": self.adminFeeBase.value,
            "adminFeeBaseValue": self.adminFeeBaseValue,
            "adminFeeMode": self.adminFeeMode.value,
            "adminFeeRate": self.adminFeeRate,
            "adminFeeExempt": self.adminFeeExempt,
            "fuel": self.fuel,
            "tolls": self.tolls,
            "rent": self.rent,
            "financingInstallment": self.financingInstallment,
            "financingInterest": self.financingInterest,
            "financingOnus": self.financingOnus,
            "financingTotal": self.financingTotal,
            "expenseTotal": self.expenseTotal,
            "netPayout": self.netPayout,
        }


def calculateSettlement(inputs: SettlementInputs, snapshot: ConfigSnapshot, isExempt: bool,
                        adminFeeRule: Optional[AdminFeeRule] = None) -> SettlementResult:
    """
    Compute one driver-week.

    1. grossEarnings = uber + bolt
    2. taxValue = grossEarnings * taxRate
    3. netOfTax = grossEarnings - taxValue
    4. admin fee on the resolved base (0 when exempt)
    5. expenseTotal = fuel + tolls + rent + financing (installment + interest + onus,
       interest and onus as percentages of netOfTax)
    6. netPayout = netOfTax - adminFeeValue - expenseTotal

    `adminFeeRule` replaces both the configured rule and the driver override
    (used when reprocessing with an explicit percentage).
    """
    if inputs.uber < 0 or inputs.bolt < 0:
        raise ComputationError(f"Negative platform earnings for driver {inputs.driverId}",
                               driverId=inputs.driverId)

    grossEarnings = money(inputs.uber + inputs.bolt)
    taxRate = snapshot.taxRate
    taxValue = money(grossEarnings * taxRate)
    netOfTax = grossEarnings - taxValue

    tollsChargeable = (inputs.driverType == DriverType.RENTER
                       or snapshot.financial.chargeTollsToAffiliates)
    fuel = money(inputs.fuel)
    tolls = money(inputs.tolls) if tollsChargeable else ZERO
    rent = money(inputs.rent)

    financingInstallment = ZERO
    financingInterest = ZERO
    financingOnus = ZERO
    for terms in inputs.financing:
        financingInstallment += money(terms.installment)
        financingInterest += percentOf(netOfTax, terms.interestPercent)
        financingOnus += percentOf(netOfTax, terms.onusPercent)
    financingTotal = financingInstallment + financingInterest + financingOnus

    expenseTotal = fuel + tolls + rent + financingTotal

    rule = adminFeeRule or effectiveAdminFeeRule(inputs, snapshot)
    ctx = AdminFeeBaseContext(grossEarnings=grossEarnings, netOfTax=netOfTax, expenseTotal=expenseTotal)
    adminFeeBaseValue = money(resolveAdminFeeBase(rule.base, ctx))

    notes = []
    if isExempt:
        adminFeeValue = ZERO
        notes.append("admin fee exempt")
    else:
        adminFeeValue = computeAdminFee(rule, adminFeeBaseValue)

    netPayout = netOfTax - adminFeeValue - expenseTotal

    return SettlementResult(
        inputs=inputs,
        grossEarnings=grossEarnings,
        taxRate=taxRate,
        taxValue=taxValue,
        netOfTax=netOfTax,
        adminFeeValue=adminFeeValue,
        adminFeeBase=rule.base,
        adminFeeBaseValue=adminFeeBaseValue,
        adminFeeMode=rule.mode,
        adminFeeRate=rule.value,
        adminFeeExempt=bool(isExempt),
        fuel=fuel,
        tolls=tolls,
        rent=rent,
        financingInstallment=financingInstallment,
        financingInterest=financingInterest,
        financingOnus=financingOnus,
        financingTotal=financingTotal,
        expenseTotal=expenseTotal,
        netPayout=netPayout,
        tollsChargeable=tollsChargeable,
        notes=tuple(notes)
    )
