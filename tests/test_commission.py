"""Tests for the multi-level affiliate commission walk."""
import asyncio
from decimal import Decimal

from models import AffiliateBonus, DriverWeeklyRecord
from settlement_system.config.rates import CommissionBase
from settlement_system.config.snapshot import CommissionConfig
from settlement_system.services.commission_service import CommissionService, computeAffiliateBonuses
from settlement_system.services.config_service import ConfigService

D = Decimal


def _config(levels=None, maxLevels=3, threshold="550"):
    return CommissionConfig(
        minWeeklyRevenueForEligibility=D(threshold),
        base=CommissionBase.REPASSE,
        maxLevels=maxLevels,
        levels=levels if levels is not None else {1: D("0.02"), 2: D("0.01")},
    )


# C refers B refers A
ABC_UPLINES = {1: 2, 2: 3, 3: None}


def test_three_driver_chain():
    bases = {1: D("1000"), 2: D("800"), 3: D("600")}

    result = computeAffiliateBonuses(bases, ABC_UPLINES, _config())

    assert result.bonuses[2].total == D("20.00")
    assert result.bonuses[3].total == D("26.00")
    assert 1 not in result.bonuses
    assert [(d.level, d.referredDriverId, d.bonusAmount) for d in result.bonuses[3].details] == [
        (2, 1, D("10.00")),
        (1, 2, D("16.00")),
    ]
    assert result.anomalies == []


def test_indicator_below_threshold_gets_nothing():
    bases = {1: D("1000"), 2: D("800"), 3: D("549.99")}

    result = computeAffiliateBonuses(bases, ABC_UPLINES, _config())

    assert 3 not in result.bonuses
    # B is still eligible on its own base
    assert result.bonuses[2].total == D("20.00")


def test_zero_rate_level_is_skipped_but_walk_continues():
    bases = {1: D("1000"), 2: D("800"), 3: D("600")}

    result = computeAffiliateBonuses(bases, ABC_UPLINES, _config(levels={1: D("0"), 2: D("0.01")}))

    assert 2 not in result.bonuses
    assert result.bonuses[3].total == D("10.00")


def test_walk_bounded_by_max_levels():
    bases = {1: D("1000"), 2: D("800"), 3: D("600")}

    result = computeAffiliateBonuses(bases, ABC_UPLINES, _config(maxLevels=1))

    assert result.bonuses[3].total == D("16.00")


def test_driver_without_upline_generates_nothing():
    result = computeAffiliateBonuses({1: D("1000")}, {1: None}, _config())

    assert result.bonuses == {}
    assert result.anomalies == []


def test_non_positive_base_contributes_nothing():
    result = computeAffiliateBonuses({1: D("-50"), 2: D("800")}, {1: 2, 2: None}, _config())

    assert result.bonuses == {}


def test_cycle_is_reported_and_walk_stops():
    bases = {1: D("1000"), 2: D("1000")}

    result = computeAffiliateBonuses(bases, {1: 2, 2: 1}, _config())

    assert result.bonuses[1].total == D("20.00")
    assert result.bonuses[2].total == D("20.00")
    assert [a.kind for a in result.anomalies] == ["cycle", "cycle"]
    assert result.anomalies[0].path == (1, 2, 1)


def test_self_referral_is_a_cycle():
    result = computeAffiliateBonuses({5: D("900")}, {5: 5}, _config())

    assert result.bonuses == {}
    assert result.anomalies[0].kind == "cycle"


def test_missing_upline_is_reported():
    result = computeAffiliateBonuses({1: D("900")}, {1: 99}, _config())

    assert result.bonuses == {}
    assert result.anomalies[0].kind == "missing_upline"
    assert result.anomalies[0].atDriverId == 99


def _record(session, driver, week_id, net_payout):
    record = DriverWeeklyRecord(driverID=driver.driverID, weekId=week_id, netPayout=D(net_payout),
                                netOfTax=D(net_payout), bonusTotal=D("0"), paymentStatus="pending")
    session.add(record)
    session.commit()
    return record


def test_compute_week_overwrites_instead_of_accumulating(session, make_driver):
    c = make_driver("C")
    b = make_driver("B", referredBy=c.driverID)
    a = make_driver("A", referredBy=b.driverID)
    for driver, amount in ((a, "1000"), (b, "800"), (c, "600")):
        _record(session, driver, "2025-W02", amount)
    snapshot = ConfigService(session).loadSnapshot()
    service = CommissionService(session)

    first = asyncio.run(service.computeWeek("2025-W02", snapshot))
    second = asyncio.run(service.computeWeek("2025-W02", snapshot))

    assert first["success"] and second["success"]
    assert second["bonuses"] == first["bonuses"]
    rows = session.query(AffiliateBonus).filter_by(weekId="2025-W02").all()
    assert len(rows) == 2
    record_c = session.query(DriverWeeklyRecord).filter_by(driverID=c.driverID).one()
    # default rates: 2% of 800 plus 1% of 1000
    assert record_c.bonusTotal == D("26.00")
    assert record_c.totalAmount == D("626.00")
    assert len(record_c.bonusPending) == 2


def test_compute_week_without_records_fails(session):
    snapshot = ConfigService(session).loadSnapshot()

    result = asyncio.run(CommissionService(session).computeWeek("2025-W09", snapshot))

    assert result["success"] is False
