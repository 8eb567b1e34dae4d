# settlement_system/__init__.py
"""
Settlement System - weekly driver settlement and multi-level commission engine.
"""

# Services
from settlement_system.services.settlement_service import SettlementService
from settlement_system.services.settlement_writer import SettlementWriter, PartialFailureMode
from settlement_system.services.aggregation_service import PlatformAggregator, AggregationService
from settlement_system.services.driver_resolver import DriverResolver
from settlement_system.services.commission_service import CommissionService, computeAffiliateBonuses
from settlement_system.services.settlement_calculator import calculateSettlement
from settlement_system.services.exemption_service import ExemptionRegistry
from settlement_system.services.config_service import ConfigService
from settlement_system.services.payment_service import PaymentService

# Configuration
from settlement_system.config.rates import Platform, DriverType, AdminFeeMode, AdminFeeBase, CommissionBase
from settlement_system.config.snapshot import ConfigSnapshot

# Utilities
from settlement_system.utils.time_machine import timeMachine

# Events
from settlement_system.events.event_bus import eventBus, SettlementEvents

__all__ = [
    # Services
    'SettlementService',
    'SettlementWriter',
    'PartialFailureMode',
    'PlatformAggregator',
    'AggregationService',
    'DriverResolver',
    'CommissionService',
    'computeAffiliateBonuses',
    'calculateSettlement',
    'ExemptionRegistry',
    'ConfigService',
    'PaymentService',

    # Config
    'Platform',
    'DriverType',
    'AdminFeeMode',
    'AdminFeeBase',
    'CommissionBase',
    'ConfigSnapshot',

    # Utils
    'timeMachine',

    # Events
    'eventBus',
    'SettlementEvents',
]
