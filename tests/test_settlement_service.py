"""End-to-end tests for settling and reprocessing a week.

Drivers used by most tests (affiliates, default config):
    C refers B, B refers A
    A: uber 1000 -> repasse 915.00
    B: uber 800  -> repasse 727.00
    C: uber 700  -> repasse 633.00
"""
import asyncio
from datetime import datetime
from decimal import Decimal

import pytest

from models import AffiliateBonus, DriverWeeklyRecord, Financing, SettlementRun, WeeklyPlatformAggregate
from settlement_system.config.snapshot import ConfigSnapshot, defaultAdminFeeConfig, defaultCommissionConfig, \
    defaultFinancialConfig
from settlement_system.errors import ComputationError
from settlement_system.events.event_bus import eventBus, SettlementEvents
from settlement_system.services.exemption_service import ExemptionRegistry
from settlement_system.services.payment_service import PaymentService
from settlement_system.services.settlement_service import SettlementService
from settlement_system.services.settlement_writer import DriverComputation, PartialFailureMode, SettlementWriter

D = Decimal
WEEK = "2025-W02"


@pytest.fixture
def chain(make_driver, add_aggregate):
    c = make_driver("C")
    b = make_driver("B", referredBy=c.driverID)
    a = make_driver("A", referredBy=b.driverID)
    add_aggregate(a, WEEK, "uber", "1000")
    add_aggregate(b, WEEK, "uber", "800")
    add_aggregate(c, WEEK, "uber", "700")
    return {"A": a.driverID, "B": b.driverID, "C": c.driverID}


def _record(session, driver_id, week_id=WEEK):
    return session.query(DriverWeeklyRecord).filter_by(driverID=driver_id, weekId=week_id).one()


def _settle(session, mode=PartialFailureMode.ABORT):
    return asyncio.run(SettlementService(session).settleWeek(WEEK, mode))


def test_settle_week_writes_records_and_bonuses(session, chain):
    ready = []
    eventBus.subscribe(SettlementEvents.RECORD_READY, ready.append)

    result = _settle(session)

    assert result["success"] is True
    assert result["driversProcessed"] == 3
    assert result["aggregationPass"] == 1
    assert result["indicators"] == 2
    assert result["totalBonus"] == D("41.99")
    assert len(ready) == 3

    a = _record(session, chain["A"])
    assert a.netPayout == D("915.00")
    assert a.netPayout == a.netOfTax - a.adminFeeValue - a.expenseTotal
    assert a.weekStart == "2025-01-06"
    assert a.weekEnd == "2025-01-12"
    assert a.snapshot["inputs"]["uber"] == "1000.00"

    b = _record(session, chain["B"])
    assert b.bonusTotal == D("18.30")
    assert b.totalAmount == D("745.30")

    c = _record(session, chain["C"])
    # 2% of B's 727 plus 1% of A's 915
    assert c.bonusTotal == D("23.69")
    assert c.totalAmount == D("656.69")
    assert session.query(AffiliateBonus).filter_by(weekId=WEEK).count() == 2

    run = session.query(SettlementRun).one()
    assert run.status == "complete"
    assert run.indicatorsCount == 2
    assert all(row.consumedAt is not None for row in session.query(WeeklyPlatformAggregate).all())


def test_abort_mode_writes_nothing_on_failure(session, chain, make_driver, add_aggregate):
    broken = make_driver("Broken")
    add_aggregate(broken, WEEK, "uber", "-5")

    result = _settle(session)

    assert result["success"] is False
    assert [error["driverId"] for error in result["errors"]] == [broken.driverID]
    assert session.query(DriverWeeklyRecord).count() == 0
    assert session.query(SettlementRun).one().status == "failed"
    assert all(row.consumedAt is None for row in session.query(WeeklyPlatformAggregate).all())


def test_collect_errors_mode_writes_the_rest(session, chain, make_driver, add_aggregate):
    broken = make_driver("Broken")
    add_aggregate(broken, WEEK, "uber", "-5")

    result = _settle(session, PartialFailureMode.COLLECT_ERRORS)

    assert result["success"] is True
    assert result["driversProcessed"] == 3
    assert [error["driverId"] for error in result["errors"]] == [broken.driverID]
    assert session.query(DriverWeeklyRecord).filter_by(driverID=broken.driverID).count() == 0
    run = session.query(SettlementRun).one()
    assert run.status == "complete"
    assert run.errors[0]["driverId"] == broken.driverID


def test_writer_raises_under_abort(session):
    writer = SettlementWriter(session, ConfigSnapshot(defaultAdminFeeConfig(), defaultCommissionConfig(),
                                                      defaultFinancialConfig()))

    with pytest.raises(ComputationError) as excinfo:
        writer.writeWeek(WEEK, [DriverComputation(driverId=7, error="boom")])
    assert excinfo.value.driverId == 7


def test_nothing_to_settle(session):
    result = _settle(session)

    assert result["success"] is False
    assert "No drivers to settle" in result["errors"][0]["error"]


def test_invalid_week_id(session):
    result = asyncio.run(SettlementService(session).settleWeek("week two"))

    assert result["success"] is False
    assert session.query(SettlementRun).count() == 0


def test_resettle_uses_latest_pass_and_keeps_paid_and_proof(session, chain):
    _settle(session)
    payments = PaymentService(session)
    a, b = _record(session, chain["A"]), _record(session, chain["B"])
    asyncio.run(payments.attachProof(a.recordID, "https://files.example.com/a.pdf", "proofs/a.pdf", "a.pdf"))
    asyncio.run(payments.markPaid(b.recordID, "ops"))
    uploaded_at = _record(session, chain["A"]).proofUploadedAt

    for name, value in (("A", "1200"), ("B", "900"), ("C", "700")):
        session.add(WeeklyPlatformAggregate(driverID=chain[name], weekId=WEEK, platform="uber",
                                            totalValue=D(value), aggregationPass=2))
    session.commit()

    result = _settle(session)

    assert result["success"] is True
    assert result["aggregationPass"] == 2
    assert result["skipped"] == [chain["B"]]

    a = _record(session, chain["A"])
    assert a.netPayout == D("1103.00")
    assert a.proofUrl == "https://files.example.com/a.pdf"
    assert a.proofFileName == "a.pdf"
    assert a.proofUploadedAt == uploaded_at

    b = _record(session, chain["B"])
    assert b.paymentStatus == "paid"
    assert b.netPayout == D("727.00")
    assert b.bonusTotal == D("18.30")
    assert session.query(DriverWeeklyRecord).count() == 3


def test_renter_without_platform_data_pays_rent(session, make_driver, add_aggregate):
    renter = make_driver("Renter", type="renter", rentalFee=D("150"))
    affiliate = make_driver("Affiliate")
    add_aggregate(affiliate, WEEK, "viaverde", "12.00")

    result = _settle(session)

    assert result["success"] is True
    record = _record(session, renter.driverID)
    assert record.rent == D("150.00")
    assert record.netPayout == D("-150.00")
    # affiliates do not pay tolls by default
    assert _record(session, affiliate.driverID).tolls == D("0")


def test_financing_charged_on_settle(session, make_driver, add_aggregate):
    driver = make_driver("Loaned")
    add_aggregate(driver, WEEK, "uber", "1000")
    session.add(Financing(driverID=driver.driverID, type="loan", amount=D("500"), weeks=10,
                          interestPercent=D("1"), startDate=datetime(2025, 1, 1)))
    session.commit()

    _settle(session)

    record = _record(session, driver.driverID)
    assert record.financingInstallment == D("50.00")
    assert record.financingInterest == D("9.40")
    assert record.financingTotal == D("59.40")
    # fixed 25 fee on 940 net of tax, minus the financing
    assert record.netPayout == D("855.60")


def test_exemption_applies_on_settle(session, chain, frozen_now):
    ExemptionRegistry(session).setExemption(chain["A"], 2)

    _settle(session)

    a = _record(session, chain["A"])
    assert a.adminFeeExempt is True
    assert a.adminFeeValue == D("0")
    assert a.netPayout == D("940.00")


def test_reprocess_with_admin_fee_percentage(session, chain):
    _settle(session)
    a = _record(session, chain["A"])
    asyncio.run(PaymentService(session).attachProof(a.recordID, "https://files.example.com/a.pdf"))

    result = asyncio.run(SettlementService(session).reprocessWeek(WEEK, adminFeePercentage=10))

    assert result["success"] is True
    assert result["driversProcessed"] == 3
    a = _record(session, chain["A"])
    assert a.adminFeeMode == "percent"
    assert a.adminFeeValue == D("94.00")
    assert a.netPayout == D("846.00")
    assert a.proofUrl == "https://files.example.com/a.pdf"
    # bonuses follow the new repasse values
    assert _record(session, chain["B"]).bonusTotal == D("16.92")
    assert _record(session, chain["C"]).bonusTotal == D("22.00")
    assert session.query(SettlementRun).order_by(SettlementRun.runID.desc()).first().trigger == "reprocess"


def test_reprocess_rechecks_exemption(session, chain, frozen_now):
    _settle(session)
    ExemptionRegistry(session).setExemption(chain["A"], 1)

    asyncio.run(SettlementService(session).reprocessWeek(WEEK))

    a = _record(session, chain["A"])
    assert a.adminFeeExempt is True
    assert a.netPayout == D("940.00")


def test_reprocess_rejects_out_of_range_percentage(session, chain):
    _settle(session)

    result = asyncio.run(SettlementService(session).reprocessWeek(WEEK, adminFeePercentage="150"))

    assert result["success"] is False
    assert _record(session, chain["A"]).netPayout == D("915.00")


def test_reprocess_collects_errors_per_driver(session, chain):
    _settle(session)
    broken = _record(session, chain["B"])
    broken.snapshot = {"inputs": {"driverId": chain["B"]}}
    session.commit()

    result = asyncio.run(SettlementService(session).reprocessWeek(WEEK, adminFeePercentage=10))

    assert result["success"] is True
    assert [error["driverId"] for error in result["errors"]] == [chain["B"]]
    assert _record(session, chain["A"]).netPayout == D("846.00")
    assert _record(session, chain["B"]).netPayout == D("727.00")


def test_reprocess_abort_mode_writes_nothing(session, chain):
    _settle(session)
    broken = _record(session, chain["B"])
    broken.snapshot = {}
    session.commit()

    result = asyncio.run(SettlementService(session).reprocessWeek(
        WEEK, adminFeePercentage=10, mode=PartialFailureMode.ABORT
    ))

    assert result["success"] is False
    assert _record(session, chain["A"]).netPayout == D("915.00")


def test_reprocess_skips_paid_records(session, chain):
    _settle(session)
    a = _record(session, chain["A"])
    asyncio.run(PaymentService(session).markPaid(a.recordID))

    result = asyncio.run(SettlementService(session).reprocessWeek(WEEK, adminFeePercentage=10))

    assert result["skipped"] == [chain["A"]]
    assert _record(session, chain["A"]).netPayout == D("915.00")


def test_week_status(session, chain):
    service = SettlementService(session)
    assert service.weekStatus(WEEK)["status"] is None

    _settle(session)

    status = service.weekStatus(WEEK)
    assert status["status"] == "complete"
    assert status["records"] == 3


def test_correction_pass_moves_earnings_to_another_driver(session, make_driver, add_aggregate):
    upline = make_driver("Upline")
    wrong = make_driver("Wrong", referredBy=upline.driverID)
    right = make_driver("Right", referredBy=upline.driverID)
    add_aggregate(upline, WEEK, "uber", "700")
    add_aggregate(wrong, WEEK, "uber", "1000")
    _settle(session)
    assert _record(session, upline.driverID).bonusTotal == D("18.30")

    add_aggregate(upline, WEEK, "uber", "700", aggregation_pass=2)
    add_aggregate(right, WEEK, "uber", "1000", aggregation_pass=2)
    result = _settle(session)

    assert result["success"] is True
    assert result["removed"] == [wrong.driverID]
    assert session.query(DriverWeeklyRecord).filter_by(driverID=wrong.driverID).count() == 0
    assert _record(session, right.driverID).netPayout == D("915.00")
    # the upline is paid once for the moved earnings
    assert _record(session, upline.driverID).bonusTotal == D("18.30")
    assert result["totalBonus"] == D("18.30")


def test_correction_pass_keeps_paid_record(session, make_driver, add_aggregate):
    wrong = make_driver("Wrong")
    right = make_driver("Right")
    add_aggregate(wrong, WEEK, "uber", "1000")
    _settle(session)
    asyncio.run(PaymentService(session).markPaid(_record(session, wrong.driverID).recordID))

    add_aggregate(right, WEEK, "uber", "1000", aggregation_pass=2)
    result = _settle(session)

    assert result["removed"] == []
    assert _record(session, wrong.driverID).paymentStatus == "paid"


def test_reprocess_keeps_the_tax_rate_of_the_settled_week(session, chain):
    _settle(session)
    raised = ConfigSnapshot(defaultAdminFeeConfig(), defaultCommissionConfig(), defaultFinancialConfig(),
                            taxRate=D("0.23"))

    result = asyncio.run(SettlementWriter(session, raised).reprocessWeek(WEEK, adminFeePercentage=10))

    assert result["success"] is True
    a = _record(session, chain["A"])
    assert a.taxValue == D("60.00")
    assert a.netOfTax == D("940.00")
    assert a.adminFeeValue == D("94.00")
    assert a.netPayout == D("846.00")
    assert D(a.snapshot["config"]["taxRate"]) == D("0.06")
