# settlement_system/config/rates.py
"""
Settlement enums, rates and documented configuration defaults.
"""
from enum import Enum
from decimal import Decimal

import config


class Platform(Enum):
    UBER = "uber"
    BOLT = "bolt"
    MYPRIO = "myprio"  # fuel
    VIAVERDE = "viaverde"  # tolls


# Platforms that accept a vehicle plate match when the key does not resolve
PLATE_FALLBACK_PLATFORMS = (Platform.MYPRIO, Platform.VIAVERDE)


class DriverType(Enum):
    AFFILIATE = "affiliate"
    RENTER = "renter"


class AdminFeeMode(Enum):
    PERCENT = "percent"
    FIXED = "fixed"


class AdminFeeBase(Enum):
    GROSS = "ganhosBrutos"
    GROSS_MINUS_TAX = "ganhosMenosIVA"
    GROSS_MINUS_EXPENSES = "ganhosBrutosMenosDespesas"
    GROSS_MINUS_TAX_MINUS_EXPENSES = "ganhosMenosIVAMenosDespesas"


class CommissionBase(Enum):
    REPASSE = "repasse"  # post-expense payout
    NET_OF_TAX = "ganhosMenosIVA"  # pre-expense earnings


class FinancingEligibilityPolicy(Enum):
    START_DATE_TO_WEEK_END = "startDateToWeekEnd"
    START_DATE_TO_WEEK_START = "startDateToWeekStart"


class PaymentStatus(Enum):
    PENDING = "pending"
    PAID = "paid"
    CANCELLED = "cancelled"


# Constants
TAX_RATE = config.TAX_RATE  # 6% IVA
CENTS = Decimal("0.01")
MAX_COMMISSION_LEVELS = 10

# Defaults used when a configuration document is missing or malformed
DEFAULT_ADMIN_FEE_CONFIG = {
    DriverType.AFFILIATE: {
        "mode": AdminFeeMode.FIXED,
        "value": Decimal("25"),
        "base": AdminFeeBase.GROSS_MINUS_TAX
    },
    DriverType.RENTER: {
        "mode": AdminFeeMode.PERCENT,
        "value": Decimal("4"),
        "base": AdminFeeBase.GROSS_MINUS_TAX
    }
}

DEFAULT_COMMISSION_CONFIG = {
    "minWeeklyRevenueForEligibility": Decimal("550"),
    "base": CommissionBase.REPASSE,
    "maxLevels": 3,
    "levels": {
        1: Decimal("0.02"),  # 2%
        2: Decimal("0.01"),  # 1%
        3: Decimal("0.005")  # 0.5%
    }
}

DEFAULT_FINANCIAL_CONFIG = {
    "adminFeePercent": Decimal("7"),
    "adminFeeFixedDefault": Decimal("25"),
    "financingEligibilityPolicy": FinancingEligibilityPolicy.START_DATE_TO_WEEK_END,
    "chargeTollsToAffiliates": False
}
