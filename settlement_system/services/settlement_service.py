# settlement_system/services/settlement_service.py
"""
Weekly settlement orchestration.

settleWeek runs two phases, each committed as one unit:
    1. settlement: per-driver records from the latest aggregation pass
    2. bonus: multi-level commissions over all records of the week
A SettlementRun row tracks the phase so readers can tell a finished week
from one that is still mid-run. No lock is taken; one run per week at a time
is an operational rule.
"""
from typing import Dict, List, Optional
from sqlalchemy import and_, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
import logging

from models import Driver, Financing, DriverWeeklyRecord, SettlementRun
from settlement_system.config.snapshot import ConfigSnapshot
from settlement_system.errors import SettlementError
from settlement_system.events.event_bus import eventBus, SettlementEvents
from settlement_system.services.aggregation_service import AggregationService
from settlement_system.services.commission_service import CommissionService
from settlement_system.services.config_service import ConfigService
from settlement_system.services.exemption_service import ExemptionRegistry
from settlement_system.services.settlement_calculator import buildSettlementInputs, calculateSettlement
from settlement_system.services.settlement_writer import (
    SettlementWriter, PartialFailureMode, DriverComputation
)
from settlement_system.utils.time_machine import timeMachine
from settlement_system.utils.weeks import weekBounds

logger = logging.getLogger(__name__)


class SettlementService:
    """Entry point for settling and reprocessing a week."""

    def __init__(self, session: Session):
        self.session = session
        self.configService = ConfigService(session)
        self.aggregationService = AggregationService(session)
        self.commissionService = CommissionService(session)
        self.exemptionRegistry = ExemptionRegistry(session)

    def _startRun(self, weekId: str, trigger: str) -> SettlementRun:
        run = SettlementRun(weekId=weekId, trigger=trigger, status="settling", startedAt=timeMachine.now)
        self.session.add(run)
        self.session.commit()
        return run

    def _failRun(self, run: SettlementRun, errors: List[Dict], notes: Optional[str] = None):
        run.status = "failed"
        run.errors = errors
        run.notes = notes
        run.finishedAt = timeMachine.now
        self.session.commit()

    def _driversToSettle(self, driverIds) -> List[Driver]:
        """Drivers with data in the pass, plus active renters (rent is due regardless)."""
        return self.session.query(Driver).filter(
            or_(
                Driver.driverID.in_(list(driverIds)),
                and_(Driver.type == "renter", Driver.status == "active")
            )
        ).order_by(Driver.driverID).all()

    def computeDrivers(self, weekId: str, snapshot: ConfigSnapshot, totals: Dict) -> List[DriverComputation]:
        """Compute every driver of the week. Drivers are independent of each other."""
        weekStart, _ = weekBounds(weekId)
        computations = []

        for driver in self._driversToSettle(totals.keys()):
            try:
                financings = self.session.query(Financing).filter_by(driverID=driver.driverID).all()
                inputs = buildSettlementInputs(driver, weekId, totals.get(driver.driverID, {}),
                                               financings, snapshot.financial)
                isExempt = self.exemptionRegistry.isExempt(driver.driverID, weekStart)
                result = calculateSettlement(inputs, snapshot, isExempt)
                computations.append(DriverComputation(driverId=driver.driverID, result=result))
            except (SettlementError, ArithmeticError, ValueError, TypeError) as e:
                message = getattr(e, "message", str(e))
                logger.error(f"Settlement failed for driver {driver.driverID} week {weekId}: {message}")
                computations.append(DriverComputation(driverId=driver.driverID, error=message))

        return computations

    async def settleWeek(self, weekId: str, mode: PartialFailureMode = PartialFailureMode.ABORT) -> Dict:
        """
        Settle a week from its latest aggregation pass.
        Returns {success, weekId, runId, driversProcessed, errors, ...}; never raises.
        """
        try:
            weekBounds(weekId)
        except ValueError as e:
            return {"success": False, "weekId": weekId, "driversProcessed": 0,
                    "errors": [{"driverId": None, "error": str(e)}]}

        snapshot = self.configService.loadSnapshot()
        if snapshot.fallbacks:
            logger.warning(f"Settling {weekId} with default config for: {', '.join(snapshot.fallbacks)}")

        run = self._startRun(weekId, "settle")
        passNumber, totals = self.aggregationService.loadTotals(weekId)
        if not passNumber:
            logger.warning(f"No aggregation pass for {weekId}; only renters will be settled")

        # Phase 1: settlement
        computations = self.computeDrivers(weekId, snapshot, totals)
        if not computations:
            errors = [{"driverId": None, "error": f"No drivers to settle for {weekId}"}]
            self._failRun(run, errors, "nothing to settle")
            return {"success": False, "weekId": weekId, "runId": run.runID, "driversProcessed": 0,
                    "errors": errors}

        writer = SettlementWriter(self.session, snapshot)
        try:
            if passNumber:
                self.aggregationService.markConsumed(weekId, passNumber)
            run.status = "settled"
            run.driversProcessed = len([c for c in computations if not c.failed])
            writeResult = writer.writeWeek(weekId, computations, mode)
        except SettlementError as e:
            errors = [{"driverId": c.driverId, "error": c.error} for c in computations if c.failed]
            if not errors:
                errors = [{"driverId": None, "error": e.message}]
            self._failRun(run, errors, e.message)
            logger.error(f"Settlement of {weekId} failed: {e.message}")
            return {
                "success": False,
                "weekId": weekId,
                "runId": run.runID,
                "driversProcessed": 0,
                "errors": errors
            }

        for driverId in writeResult["written"]:
            await eventBus.emit(SettlementEvents.RECORD_READY, {"weekId": weekId, "driverId": driverId})

        # Phase 2: bonuses (barrier: needs every record of the week)
        bonusResult = await self.commissionService.computeWeek(weekId, snapshot)
        if not bonusResult["success"]:
            self._failRun(run, writeResult["errors"] + [{"driverId": None, "error": bonusResult["error"]}],
                          "bonus phase failed")
            return {
                "success": False,
                "weekId": weekId,
                "runId": run.runID,
                "driversProcessed": len(writeResult["written"]),
                "errors": run.errors
            }

        self._completeRun(run, bonusResult, writeResult["errors"])
        await eventBus.emit(SettlementEvents.WEEK_SETTLED, {"weekId": weekId, "runId": run.runID})

        return {
            "success": True,
            "weekId": weekId,
            "runId": run.runID,
            "aggregationPass": passNumber,
            "driversProcessed": len(writeResult["written"]),
            "skipped": writeResult["skipped"],
            "removed": writeResult["removed"],
            "errors": writeResult["errors"],
            "indicators": bonusResult["indicators"],
            "totalBonus": bonusResult["totalDistributed"],
            "anomalies": bonusResult["anomalies"],
            "configFallbacks": list(snapshot.fallbacks)
        }

    def _completeRun(self, run: SettlementRun, bonusResult: Dict, errors: List[Dict]):
        try:
            run.status = "complete"
            run.indicatorsCount = bonusResult["indicators"]
            run.errors = errors or None
            if bonusResult["anomalies"]:
                run.notes = f"{len(bonusResult['anomalies'])} referral anomalies"
            run.finishedAt = timeMachine.now
            self.session.commit()
        except SQLAlchemyError as e:
            self.session.rollback()
            logger.error(f"Could not close run {run.runID}: {e}", exc_info=True)

    async def reprocessWeek(self, weekId: str, adminFeePercentage=None, recomputeBonuses: bool = True,
                            mode: PartialFailureMode = PartialFailureMode.COLLECT_ERRORS) -> Dict:
        """
        Recompute a settled week from stored snapshots with the current config
        (or an explicit admin fee percentage), then optionally redo the bonus phase.
        """
        snapshot = self.configService.loadSnapshot()
        run = self._startRun(weekId, "reprocess")
        writer = SettlementWriter(self.session, snapshot)

        result = await writer.reprocessWeek(weekId, adminFeePercentage, mode)
        if not result["success"]:
            self._failRun(run, result["errors"], "reprocess failed")
            result["runId"] = run.runID
            return result

        run.status = "settled"
        run.driversProcessed = result["driversProcessed"]
        self.session.commit()

        if recomputeBonuses and result["driversProcessed"]:
            bonusResult = await self.commissionService.computeWeek(weekId, snapshot)
            result["bonuses"] = bonusResult
            if not bonusResult["success"]:
                self._failRun(run, result["errors"] + [{"driverId": None, "error": bonusResult["error"]}],
                              "bonus phase failed")
                result["success"] = False
                result["runId"] = run.runID
                return result
            self._completeRun(run, bonusResult, result["errors"])
        else:
            run.status = "complete"
            run.errors = result["errors"] or None
            run.finishedAt = timeMachine.now
            self.session.commit()

        result["runId"] = run.runID
        return result

    def weekStatus(self, weekId: str) -> Dict:
        """Latest run of the week and its record count."""
        run = self.session.query(SettlementRun).filter_by(weekId=weekId).order_by(
            SettlementRun.runID.desc()
        ).first()
        records = self.session.query(DriverWeeklyRecord).filter_by(weekId=weekId).count()
        return {
            "weekId": weekId,
            "status": run.status if run else None,
            "trigger": run.trigger if run else None,
            "records": records,
            "finishedAt": run.finishedAt if run else None
        }
