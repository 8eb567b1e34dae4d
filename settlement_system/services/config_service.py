# settlement_system/services/config_service.py
"""
Configuration store - key-value documents for admin fee, commission and financing rules.

Documents are read once per run into an immutable ConfigSnapshot. Missing or
malformed documents fall back to the documented defaults and the fallback is logged.
"""
from typing import Any, Callable, Dict, Optional, Tuple
from sqlalchemy.orm import Session
import logging

import config
from models import ConfigDocument
from settlement_system.config.rates import TAX_RATE
from settlement_system.config.snapshot import (
    AdminFeeConfig, CommissionConfig, FinancialConfig, ConfigSnapshot,
    defaultAdminFeeConfig, defaultCommissionConfig, defaultFinancialConfig,
    parseAdminFeeConfig, parseCommissionConfig, parseFinancialConfig
)
from settlement_system.errors import ConfigurationError

logger = logging.getLogger(__name__)


class ConfigService:
    """Reads and updates the configuration documents."""

    def __init__(self, session: Session):
        self.session = session

    # region Reads

    def _readDocument(self, key: str, parser: Callable, default: Callable) -> Tuple[Any, bool]:
        """Return (parsed config, usedFallback)."""
        document = self.session.query(ConfigDocument).filter_by(key=key).first()

        if not document or document.data is None:
            logger.warning(f"Config document '{key}' not found, using defaults")
            return default(), True

        try:
            return parser(document.data), False
        except ConfigurationError as e:
            logger.warning(f"Config document '{key}' is malformed ({e}), using defaults")
            return default(), True

    def getAdminFeeConfig(self) -> AdminFeeConfig:
        return self._readDocument(config.ADMIN_FEE_CONFIG_KEY, parseAdminFeeConfig, defaultAdminFeeConfig)[0]

    def getCommissionConfig(self) -> CommissionConfig:
        return self._readDocument(config.COMMISSION_CONFIG_KEY, parseCommissionConfig, defaultCommissionConfig)[0]

    def getFinancialConfig(self) -> FinancialConfig:
        return self._readDocument(config.FINANCIAL_CONFIG_KEY, parseFinancialConfig, defaultFinancialConfig)[0]

    def loadSnapshot(self) -> ConfigSnapshot:
        """Read every document once; the result is shared by all components of a run."""
        adminFee, adminFeeFallback = self._readDocument(
            config.ADMIN_FEE_CONFIG_KEY, parseAdminFeeConfig, defaultAdminFeeConfig
        )
        commission, commissionFallback = self._readDocument(
            config.COMMISSION_CONFIG_KEY, parseCommissionConfig, defaultCommissionConfig
        )
        financial, financialFallback = self._readDocument(
            config.FINANCIAL_CONFIG_KEY, parseFinancialConfig, defaultFinancialConfig
        )

        fallbacks = tuple(
            key for key, used in (
                (config.ADMIN_FEE_CONFIG_KEY, adminFeeFallback),
                (config.COMMISSION_CONFIG_KEY, commissionFallback),
                (config.FINANCIAL_CONFIG_KEY, financialFallback),
            ) if used
        )

        return ConfigSnapshot(
            adminFee=adminFee,
            commission=commission,
            financial=financial,
            taxRate=TAX_RATE,
            fallbacks=fallbacks
        )

    # endregion

    # region Updates

    def _writeDocument(self, key: str, data: Dict[str, Any]):
        document = self.session.query(ConfigDocument).filter_by(key=key).first()
        if document:
            document.data = data
        else:
            self.session.add(ConfigDocument(key=key, data=data))
        self.session.commit()

    def _update(self, key: str, data: Any, parser: Callable, current: Any,
                actorId: Optional[str]) -> Dict:
        try:
            parsed = parser(data, current)
        except ConfigurationError as e:
            logger.error(f"Rejected update of '{key}' by {actorId}: {e}")
            return {"success": False, "error": str(e)}

        self._writeDocument(key, parsed.toDict())
        logger.info(f"Config document '{key}' updated by {actorId}")
        return {"success": True, "key": key, "config": parsed.toDict()}

    def updateAdminFeeConfig(self, data: Dict[str, Any], actorId: Optional[str] = None) -> Dict:
        return self._update(config.ADMIN_FEE_CONFIG_KEY, data, parseAdminFeeConfig,
                            self.getAdminFeeConfig(), actorId)

    def updateCommissionConfig(self, data: Dict[str, Any], actorId: Optional[str] = None) -> Dict:
        return self._update(config.COMMISSION_CONFIG_KEY, data, parseCommissionConfig,
                            self.getCommissionConfig(), actorId)

    def updateFinancialConfig(self, data: Dict[str, Any], actorId: Optional[str] = None) -> Dict:
        return self._update(config.FINANCIAL_CONFIG_KEY, data, parseFinancialConfig,
                            self.getFinancialConfig(), actorId)

    # endregion
