"""Tests for configuration documents and the per-run snapshot."""
import dataclasses
import logging
from decimal import Decimal

import pytest

import config
from models import ConfigDocument
from settlement_system.config.rates import AdminFeeBase, AdminFeeMode, CommissionBase, FinancingEligibilityPolicy
from settlement_system.config.snapshot import parseAdminFeeConfig, parseCommissionConfig, parseFinancialConfig
from settlement_system.errors import ConfigurationError
from settlement_system.services.config_service import ConfigService

D = Decimal


def _store(session, key, data):
    session.add(ConfigDocument(key=key, data=data))
    session.commit()


def test_missing_documents_fall_back_to_defaults(session, caplog):
    with caplog.at_level(logging.WARNING):
        snapshot = ConfigService(session).loadSnapshot()

    assert set(snapshot.fallbacks) == {
        config.ADMIN_FEE_CONFIG_KEY, config.COMMISSION_CONFIG_KEY, config.FINANCIAL_CONFIG_KEY
    }
    assert snapshot.adminFee.affiliate.mode == AdminFeeMode.FIXED
    assert snapshot.adminFee.affiliate.value == D("25")
    assert snapshot.adminFee.renter.mode == AdminFeeMode.PERCENT
    assert snapshot.adminFee.renter.value == D("4")
    assert snapshot.commission.minWeeklyRevenueForEligibility == D("550")
    assert snapshot.commission.base == CommissionBase.REPASSE
    assert snapshot.commission.rateFor(1) == D("0.02")
    assert snapshot.taxRate == config.TAX_RATE
    assert "not found" in caplog.text


def test_malformed_document_falls_back(session, caplog):
    _store(session, config.COMMISSION_CONFIG_KEY, "garbage")

    with caplog.at_level(logging.WARNING):
        snapshot = ConfigService(session).loadSnapshot()

    assert config.COMMISSION_CONFIG_KEY in snapshot.fallbacks
    assert snapshot.commission.maxLevels == 3
    assert "malformed" in caplog.text


def test_snapshot_is_immutable(session):
    snapshot = ConfigService(session).loadSnapshot()

    with pytest.raises(dataclasses.FrozenInstanceError):
        snapshot.taxRate = D("0.23")
    with pytest.raises(TypeError):
        snapshot.commission.levels[1] = D("0.5")


def test_legacy_admin_fee_document_applies_to_both_types():
    parsed = parseAdminFeeConfig({"mode": "percent", "percentValue": 7, "appliedToBase": "repasse"})

    assert parsed.affiliate == parsed.renter
    assert parsed.affiliate.mode == AdminFeeMode.PERCENT
    assert parsed.affiliate.value == D("7")
    assert parsed.affiliate.base == AdminFeeBase.GROSS_MINUS_TAX_MINUS_EXPENSES


def test_per_type_admin_fee_document_keeps_missing_fields():
    parsed = parseAdminFeeConfig({"renter": {"mode": "percent", "value": "150", "base": "ganhosBrutos"}})

    assert parsed.renter.value == D("100")
    assert parsed.renter.base == AdminFeeBase.GROSS
    assert parsed.affiliate.mode == AdminFeeMode.FIXED


def test_admin_fee_document_without_rules_is_rejected():
    with pytest.raises(ConfigurationError):
        parseAdminFeeConfig({"something": 1})


@pytest.mark.parametrize("raw,expected", [(50, 10), (0, 1), ("2", 2), ("many", 3)])
def test_max_levels_clamped(raw, expected):
    assert parseCommissionConfig({"maxLevels": raw}).maxLevels == expected


def test_levels_above_max_are_dropped():
    parsed = parseCommissionConfig({"maxLevels": 2, "levels": {"1": "0.03", "2": "0.02", "3": "0.01", "x": "1"}})

    assert dict(parsed.levels) == {1: D("0.03"), 2: D("0.02")}
    assert parsed.rateFor(3) == D("0")


def test_financial_policy_from_nested_document():
    parsed = parseFinancialConfig({"financing": {"eligibilityPolicy": "startDateToWeekStart"},
                                   "chargeTollsToAffiliates": True})

    assert parsed.financingEligibilityPolicy == FinancingEligibilityPolicy.START_DATE_TO_WEEK_START
    assert parsed.chargeTollsToAffiliates is True


def test_update_persists_and_is_read_back(session):
    service = ConfigService(session)

    result = service.updateCommissionConfig({"minWeeklyRevenueForEligibility": "400", "maxLevels": 2},
                                            actorId="ops")
    snapshot = service.loadSnapshot()

    assert result["success"] is True
    assert config.COMMISSION_CONFIG_KEY not in snapshot.fallbacks
    assert snapshot.commission.minWeeklyRevenueForEligibility == D("400")
    assert snapshot.commission.maxLevels == 2
    # untouched levels survive the update
    assert snapshot.commission.rateFor(2) == D("0.01")


def test_invalid_update_is_rejected(session):
    result = ConfigService(session).updateAdminFeeConfig(["not", "a", "document"])

    assert result["success"] is False
    assert session.query(ConfigDocument).count() == 0
