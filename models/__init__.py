# models/__init__.py
"""
Database models for the settlement engine.
Import all models here for easy access.
"""

# Base and mixins
from models.base import Base, AuditMixin

# Driver directory
from models.driver import Driver
from models.financing import Financing

# Import and aggregation
from models.platform_aggregate import WeeklyPlatformAggregate
from models.unmapped_entry import UnmappedImportEntry

# Settlement output
from models.weekly_record import DriverWeeklyRecord
from models.affiliate_bonus import AffiliateBonus
from models.settlement_run import SettlementRun

# Configuration
from models.config_document import ConfigDocument

__all__ = [
    # Base
    'Base',
    'AuditMixin',

    # Directory
    'Driver',
    'Financing',

    # Import
    'WeeklyPlatformAggregate',
    'UnmappedImportEntry',

    # Settlement
    'DriverWeeklyRecord',
    'AffiliateBonus',
    'SettlementRun',

    # Config
    'ConfigDocument',
]
