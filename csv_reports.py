import io
import csv
import logging
from typing import List, Dict, Any, Optional, Tuple
from sqlalchemy.orm import Session

import config
from models import DriverWeeklyRecord, AffiliateBonus, Driver
from settlement_system.services.aggregation_service import AggregationService

logger = logging.getLogger(__name__)

# Dictionary mapping report types to information about the report
REPORTS = {
    "week_payouts": {
        "name": "Weekly Payouts",
        "generator": lambda s, p: week_payouts_report(s, p)
    },
    "week_bonuses": {
        "name": "Weekly Affiliate Bonuses",
        "generator": lambda s, p: week_bonuses_report(s, p)
    },
    "week_unmapped": {
        "name": "Unmapped Import Rows",
        "generator": lambda s, p: week_unmapped_report(s, p)
    }
}

REPORT_TYPES = {key: info["name"] for key, info in REPORTS.items()}


def generate_csv_report(
        session: Session,
        report_type: str,
        params: Dict[str, Any] = None
) -> Optional[io.BytesIO]:
    """
    Generates a CSV report based on report type and parameters

    Args:
        session: Database session
        report_type: Type of report (one of REPORTS keys)
        params: Report parameters, "weekId" is required

    Returns:
        BytesIO object containing CSV data or None if report generation failed
    """
    if report_type not in REPORTS:
        logger.error(f"Unknown report type: {report_type}")
        return None

    if params is None:
        params = {}

    if not params.get("weekId"):
        logger.error(f"Report {report_type} requires a weekId")
        return None

    try:
        headers, data = REPORTS[report_type]["generator"](session, params)

        string_output = io.StringIO()
        writer = csv.writer(string_output, delimiter=config.REPORT_DELIMITER)
        writer.writerow(headers)
        for row in data:
            writer.writerow(row)

        # BOM for Excel compatibility
        output = io.BytesIO(string_output.getvalue().encode(config.REPORT_ENCODING))
        output.seek(0)
        return output

    except Exception as e:
        logger.error(f"Error generating {report_type} report: {e}", exc_info=True)
        return None


def _fmt(value) -> str:
    return "" if value is None else f"{value:.2f}"


def week_payouts_report(session: Session, params: Dict[str, Any]) -> Tuple[List[str], List[List[Any]]]:
    """
    One row per driver with the full repasse breakdown and the payment state.

    Returns:
        Tuple of (headers, data_rows)
    """
    headers = ["Driver ID", "Name", "Type", "IBAN", "Week", "Uber", "Bolt", "Gross", "IVA", "Net of IVA",
               "Admin Fee", "Fee Base", "Exempt", "Fuel", "Tolls", "Rent", "Financing", "Expenses",
               "Repasse", "Bonus", "Total", "Status", "Paid At"]

    records = session.query(DriverWeeklyRecord, Driver).join(
        Driver, Driver.driverID == DriverWeeklyRecord.driverID
    ).filter(
        DriverWeeklyRecord.weekId == params["weekId"]
    ).order_by(DriverWeeklyRecord.driverID).all()

    data = []
    for record, driver in records:
        data.append([
            record.driverID,
            record.driverName or driver.name,
            record.driverType,
            driver.iban or "",
            record.weekId,
            _fmt(record.uberTotal),
            _fmt(record.boltTotal),
            _fmt(record.grossEarnings),
            _fmt(record.taxValue),
            _fmt(record.netOfTax),
            _fmt(record.adminFeeValue),
            record.adminFeeBase or "",
            "yes" if record.adminFeeExempt else "no",
            _fmt(record.fuel),
            _fmt(record.tolls),
            _fmt(record.rent),
            _fmt(record.financingTotal),
            _fmt(record.expenseTotal),
            _fmt(record.netPayout),
            _fmt(record.bonusTotal),
            _fmt(record.totalAmount),
            record.paymentStatus,
            record.paidAt.strftime("%Y-%m-%d %H:%M:%S") if record.paidAt else ""
        ])

    return headers, data


def week_bonuses_report(session: Session, params: Dict[str, Any]) -> Tuple[List[str], List[List[Any]]]:
    """One row per bonus detail entry (indicator, level, downline)."""
    headers = ["Indicator ID", "Week", "Level", "Referred Driver ID", "Base", "Rate", "Bonus"]

    bonuses = session.query(AffiliateBonus).filter_by(
        weekId=params["weekId"]
    ).order_by(AffiliateBonus.indicatorID).all()

    data = []
    for bonus in bonuses:
        for detail in bonus.details or []:
            data.append([
                bonus.indicatorID,
                bonus.weekId,
                detail.get("level"),
                detail.get("referredDriverId"),
                detail.get("base"),
                detail.get("rate"),
                detail.get("bonusAmount")
            ])

    return headers, data


def week_unmapped_report(session: Session, params: Dict[str, Any]) -> Tuple[List[str], List[List[Any]]]:
    """Rows of the latest import pass whose key matched no driver."""
    headers = ["Platform", "Reference", "Label", "Rows", "Total"]

    entries = AggregationService(session).unmappedReport(params["weekId"], params.get("aggregationPass"))
    data = [
        [entry.platform, entry.referenceId, entry.referenceLabel or "", entry.rowCount, _fmt(entry.totalValue)]
        for entry in entries
    ]
    return headers, data
