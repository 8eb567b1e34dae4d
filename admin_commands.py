import logging
import json
from decimal import Decimal
from typing import Dict, Optional

import config
from csv_reports import generate_csv_report, REPORT_TYPES
from imports import import_week
from init import Session
from models import DriverWeeklyRecord
from settlement_system.services.config_service import ConfigService
from settlement_system.services.exemption_service import ExemptionRegistry
from settlement_system.services.payment_service import PaymentService
from settlement_system.services.settlement_service import SettlementService
from settlement_system.services.settlement_writer import PartialFailureMode

logger = logging.getLogger(__name__)

CONFIG_UPDATERS = {
    config.ADMIN_FEE_CONFIG_KEY: "updateAdminFeeConfig",
    config.COMMISSION_CONFIG_KEY: "updateCommissionConfig",
    config.FINANCIAL_CONFIG_KEY: "updateFinancialConfig",
}


def _json_default(value):
    if isinstance(value, Decimal):
        return str(value)
    if hasattr(value, "isoformat"):
        return value.isoformat()
    return str(value)


def format_result(result: Dict) -> str:
    return json.dumps(result, indent=2, ensure_ascii=False, default=_json_default)


class AdminCommands:
    """Admin operations over the settlement engine; every handler returns a printable report"""

    def __init__(self, session_factory=None, actor: Optional[str] = None):
        self.session_factory = session_factory or Session
        self.actor = actor or config.DEFAULT_ADMIN_ACTOR

    async def handle_import(self, week_id: str, files: Dict[str, str]) -> str:
        with self.session_factory() as session:
            result = await import_week(session, week_id, files)

        if not result["success"]:
            return f"❌ Import failed: {result['error']}"

        lines = [
            f"✅ Week {week_id} imported as pass {result['aggregationPass']}",
            f"Driver totals: {result['aggregates']}",
            f"Unmapped references: {result['unmapped']}"
        ]
        for entry in result["unmappedEntries"]:
            lines.append(f"  ⚠️ {entry['platform']} {entry['label']}: {entry['totalValue']} ({entry['rowCount']} rows)")
        for warning in result["warnings"]:
            lines.append(f"  ⚠️ {warning}")
        for platform, report in result["stats"].items():
            lines.append(f"\n[{platform}]\n{report}")
        return "\n".join(lines)

    async def handle_settle(self, week_id: str, collect_errors: bool = False) -> str:
        mode = PartialFailureMode.COLLECT_ERRORS if collect_errors else PartialFailureMode.ABORT
        with self.session_factory() as session:
            result = await SettlementService(session).settleWeek(week_id, mode)
        logger.info(f"Settle {week_id} by {self.actor}: success={result['success']}")
        return format_result(result)

    async def handle_reprocess(self, week_id: str, admin_fee_percentage=None,
                               recompute_bonuses: bool = True) -> str:
        with self.session_factory() as session:
            result = await SettlementService(session).reprocessWeek(
                week_id, admin_fee_percentage, recompute_bonuses
            )
        logger.info(f"Reprocess {week_id} by {self.actor}: success={result['success']}")
        return format_result(result)

    async def handle_exempt(self, driver_id: int, weeks: int, reason: Optional[str] = None) -> str:
        with self.session_factory() as session:
            registry = ExemptionRegistry(session)
            try:
                exemption = registry.setExemption(driver_id, weeks, reason, self.actor)
            except (ValueError, LookupError) as e:
                return f"❌ {e}"
            if not exemption.isExempt:
                return f"✅ Exemption cleared for driver {driver_id}"
            return (f"✅ Driver {driver_id} exempt until {exemption.endDate} "
                    f"({registry.daysRemaining(driver_id)} days)")

    async def handle_unexempt(self, driver_id: int) -> str:
        with self.session_factory() as session:
            try:
                ExemptionRegistry(session).clearExemption(driver_id, self.actor)
            except LookupError as e:
                return f"❌ {e}"
        return f"✅ Exemption cleared for driver {driver_id}"

    async def handle_mark_paid(self, record_id: int) -> str:
        with self.session_factory() as session:
            result = await PaymentService(session).markPaid(record_id, self.actor)
        return format_result(result)

    async def handle_attach_proof(self, record_id: int, url: str, storage_path: Optional[str] = None,
                                  file_name: Optional[str] = None) -> str:
        with self.session_factory() as session:
            result = await PaymentService(session).attachProof(record_id, url, storage_path, file_name)
        return format_result(result)

    async def handle_export(self, week_id: str, report_type: str, output_path: str) -> str:
        if report_type not in REPORT_TYPES:
            return f"❌ Unknown report: {report_type}. Available: {', '.join(REPORT_TYPES)}"

        with self.session_factory() as session:
            report = generate_csv_report(session, report_type, {"weekId": week_id})

        if report is None:
            return "❌ Report generation failed, see log"

        with open(output_path, "wb") as handle:
            handle.write(report.getvalue())
        return f"✅ {REPORT_TYPES[report_type]} for {week_id} written to {output_path}"

    async def handle_show_config(self) -> str:
        with self.session_factory() as session:
            snapshot = ConfigService(session).loadSnapshot()
        result = snapshot.toDict()
        result["defaultsUsedFor"] = list(snapshot.fallbacks)
        return format_result(result)

    async def handle_set_config(self, key: str, document: Dict) -> str:
        if key not in CONFIG_UPDATERS:
            return f"❌ Unknown config document: {key}. Available: {', '.join(CONFIG_UPDATERS)}"

        with self.session_factory() as session:
            service = ConfigService(session)
            result = getattr(service, CONFIG_UPDATERS[key])(document, self.actor)
        return format_result(result)

    async def handle_week_status(self, week_id: str) -> str:
        with self.session_factory() as session:
            status = SettlementService(session).weekStatus(week_id)
            pending = session.query(DriverWeeklyRecord).filter_by(
                weekId=week_id, paymentStatus="pending"
            ).count()
        status["pendingPayments"] = pending
        return format_result(status)
