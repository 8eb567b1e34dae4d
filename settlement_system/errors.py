# settlement_system/errors.py
"""
Settlement engine exceptions.
"""


class SettlementError(Exception):
    def __init__(self, message):
        super().__init__(message)
        self.message = message


class ConfigurationError(SettlementError):
    """A configuration document cannot be used as given."""


class ComputationError(SettlementError):
    """A single driver's settlement could not be computed."""

    def __init__(self, message, driverId=None):
        super().__init__(message)
        self.driverId = driverId


class ReprocessError(SettlementError):
    """A stored record cannot be reprocessed from its snapshot."""
