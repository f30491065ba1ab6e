"""
ada-trader Core: Workflow State Machine

Drives the daily cycle:

    Idle -> Planning -> Filtering -> WaitingForMarketOpen -> Executing -> Recording -> Idle

with Paused (the agent's ``is_paused`` flag, observed at cycle boundaries) and
a terminal ShuttingDown state.

- A cycle starts only when the agent is not paused and the clock is inside
  the trading window; otherwise it is skipped, never queued.
- Errors classified as critical pause the agent and raise an alert. Other
  errors end the cycle after logging.
- Every AgentState change goes through AgentStateStore.update, which persists.
- pause/resume/shutdown are guarded by the OperationLockManager.
"""

import logging
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence

from core.collaborators import (
    MarketDataService,
    NotificationService,
    PersistenceService,
    PlanningService,
    TradingService,
)
from core.exceptions import DEFAULT_CRITICAL_KEYWORDS, CostLimitExceeded, is_critical_error
from core.market_hours import TimeWindow, trading_window
from core.models import AgentState, utc_now_iso
from core.operation_lock import OperationLockManager
from infra.state_store import AgentStateStore
from strategy.enhancer import (
    EnhancedPlan,
    ExecutionResult,
    PlanValidation,
    StrategyEnhancer,
    build_thought_chain,
)

logger = logging.getLogger(__name__)

PAUSE_KEY = "agent-pause"
RESUME_KEY = "agent-resume"
SHUTDOWN_KEY = "agent-shutdown"


class WorkflowState(str, Enum):
    IDLE = "idle"
    PLANNING = "planning"
    FILTERING = "filtering"
    WAITING_FOR_MARKET_OPEN = "waiting_for_market_open"
    EXECUTING = "executing"
    RECORDING = "recording"
    PAUSED = "paused"
    SHUTTING_DOWN = "shutting_down"


@dataclass
class CycleReport:
    """Result of one ``run_cycle`` call"""
    status: str  # "completed" | "skipped" | "aborted" | "paused"
    reason: Optional[str] = None
    started_at: str = field(default_factory=utc_now_iso)
    finished_at: Optional[str] = None
    states: List[str] = field(default_factory=list)
    validation: Optional[PlanValidation] = None
    enhanced_plan: Optional[EnhancedPlan] = None
    execution: Optional[ExecutionResult] = None
    thought_chain: List[str] = field(default_factory=list)
    error: Optional[str] = None
    duration_seconds: float = 0.0

    def summary(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "status": self.status,
            "reason": self.reason,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
            "states": list(self.states),
            "error": self.error,
        }
        if self.enhanced_plan is not None:
            payload["metrics"] = self.enhanced_plan.metrics.to_dict()
        if self.execution is not None:
            payload["execution"] = dict(self.execution.summary.__dict__)
        return payload


class _CycleAborted(Exception):
    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


class TradingWorkflow:
    """
    Single-worker state machine around the StrategyEnhancer.

    Args:
        state_store: Owner of AgentState
        planner: Planning collaborator (called twice per cycle)
        trading: Trading collaborator (execution, account, market-open predicate)
        persistence: Persistence collaborator for trade records
        notifier: Notification collaborator for plan dispatch and critical alerts
        market_data: Market data collaborator
        enhancer: StrategyEnhancer
        locks: OperationLockManager guarding pause/resume/shutdown
        window: Trading window in which a cycle may start
        critical_keywords: Message fragments that classify an error as critical
        market_poll_seconds: Interval between market-open checks
        clock: Returns "now" (timezone-aware)
        metrics: Optional MetricsRecorder
    """

    def __init__(
        self,
        state_store: AgentStateStore,
        planner: PlanningService,
        trading: TradingService,
        persistence: PersistenceService,
        notifier: NotificationService,
        market_data: MarketDataService,
        enhancer: Optional[StrategyEnhancer] = None,
        locks: Optional[OperationLockManager] = None,
        window: Optional[TimeWindow] = None,
        critical_keywords: Sequence[str] = DEFAULT_CRITICAL_KEYWORDS,
        market_poll_seconds: float = 60.0,
        clock=None,
        metrics=None,
    ):
        self.store = state_store
        self.planner = planner
        self.trading = trading
        self.persistence = persistence
        self.notifier = notifier
        self.market_data = market_data
        self.enhancer = enhancer or StrategyEnhancer()
        self.locks = locks or OperationLockManager()
        self.window = window or trading_window()
        self.critical_keywords = tuple(critical_keywords)
        self.market_poll_seconds = float(market_poll_seconds)
        self._clock = clock or (lambda: datetime.now(self.window.tz))
        self._metrics = metrics

        self._phase = WorkflowState.IDLE
        self._phase_lock = threading.Lock()
        self._cycle_guard = threading.Lock()
        self._stop_event = threading.Event()
        self.last_report: Optional[CycleReport] = None

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def state(self) -> WorkflowState:
        """Current phase; Paused is reported only between cycles."""
        if self.is_shutting_down:
            return WorkflowState.SHUTTING_DOWN
        with self._phase_lock:
            phase = self._phase
        if phase == WorkflowState.IDLE and self.store.get().is_paused:
            return WorkflowState.PAUSED
        return phase

    @property
    def is_shutting_down(self) -> bool:
        return self._stop_event.is_set()

    def _enter(self, phase: WorkflowState, report: Optional[CycleReport] = None) -> None:
        with self._phase_lock:
            previous, self._phase = self._phase, phase
        if report is not None:
            report.states.append(phase.value)
        logger.debug(f"Workflow transition: {previous.value} -> {phase.value}")

    def skip_reason(self, now: Optional[datetime] = None) -> Optional[str]:
        """Why a cycle would be skipped right now, or None if it may start."""
        if self.is_shutting_down:
            return "shutting_down"
        if self.store.get().is_paused:
            return "paused"
        if not self.window.contains(now or self._clock()):
            return "outside_trading_window"
        return None

    # ------------------------------------------------------------------
    # Cycle
    # ------------------------------------------------------------------

    def run_cycle(self, now: Optional[datetime] = None) -> CycleReport:
        """
        Run one full cycle if allowed.

        Returns:
            CycleReport; never raises for cycle-level failures
        """
        now = now or self._clock()
        skip = self.skip_reason(now)
        if skip:
            logger.info(f"Skipping trading cycle: {skip}")
            return self._finish(CycleReport(status="skipped", reason=skip), started=time.monotonic())

        if not self._cycle_guard.acquire(blocking=False):
            logger.warning("Trading cycle already in progress; skipping")
            return self._finish(CycleReport(status="skipped", reason="cycle_in_progress"), started=time.monotonic())

        started = time.monotonic()
        report = CycleReport(status="completed")
        try:
            self._run_steps(report, now)
        except _CycleAborted as exc:
            report.status = "aborted"
            report.reason = exc.reason
        except CostLimitExceeded as exc:
            logger.error(f"Planning aborted by cost governor: {exc}")
            report.status = "aborted"
            report.reason = "cost_limit_exceeded"
            report.error = str(exc)
        except Exception as exc:
            report.error = str(exc)
            if is_critical_error(exc, self.critical_keywords):
                logger.critical(f"Critical error during {self._phase.value}: {exc}")
                report.status = "paused"
                report.reason = "critical_error"
                self._handle_critical(exc, report)
            else:
                logger.exception(f"Trading cycle failed during {self._phase.value}: {exc}")
                report.status = "aborted"
                report.reason = "error"
        finally:
            self._enter(WorkflowState.IDLE)
            self._cycle_guard.release()
        return self._finish(report, started)

    def _run_steps(self, report: CycleReport, now: datetime) -> None:
        # Step 1: Planning
        self._enter(WorkflowState.PLANNING, report)
        self._refresh_account()
        state = self.store.get()
        snapshot = self.market_data.collect()
        plan = self.planner.craft_plan(snapshot, state)
        plan = self.planner.refine_predictions(plan, snapshot, state)
        logger.info(f"Plan {plan.id}: {len(plan.trades)} candidate(s)")

        report.validation = self.enhancer.validate(plan, snapshot, state)
        for warning in report.validation.warnings:
            logger.warning(f"Plan validation: {warning}")
        if not report.validation.valid:
            for error in report.validation.errors:
                logger.error(f"Plan validation: {error}")
            raise _CycleAborted("validation_failed")

        # Step 2: Filtering
        self._enter(WorkflowState.FILTERING, report)
        enhanced = self.enhancer.enhance(plan, snapshot, state)
        report.enhanced_plan = enhanced
        self._dispatch_plan(enhanced)

        # Step 3-4: Wait for open, then execute
        if enhanced.trades:
            self._enter(WorkflowState.WAITING_FOR_MARKET_OPEN, report)
            self._wait_for_market_open()
            self._enter(WorkflowState.EXECUTING, report)
            report.execution = self.enhancer.execute(enhanced, self.trading, self.store.get())
        else:
            logger.info("No trades survived enhancement; nothing to execute")

        # Step 5: Recording
        self._enter(WorkflowState.RECORDING, report)
        self._record(report, now)

        # Fills made before a critical execution error are recorded first, then the agent pauses
        if report.execution is not None and report.execution.critical_error is not None:
            raise report.execution.critical_error

    def _refresh_account(self) -> None:
        account = self.trading.get_account_details() or {}
        balance = float(account.get("balance") or 0.0)
        self.store.update(account_balance=balance, open_positions=list(account.get("positions") or []))

    def _dispatch_plan(self, enhanced: EnhancedPlan) -> None:
        try:
            token = self.notifier.send_trade_plan(enhanced)
        except Exception as exc:
            logger.warning(f"Trade plan notification failed: {exc}")
            return
        if token:
            self.store.update(pause_token=token)

    def _wait_for_market_open(self) -> None:
        waited = False
        while not self.trading.is_market_open():
            if not waited:
                logger.info("Waiting for market open")
                waited = True
            if self._stop_event.wait(self.market_poll_seconds):
                raise _CycleAborted("shutdown_requested")
        if waited:
            logger.info("Market is open")

    def _record(self, report: CycleReport, now: datetime) -> None:
        enhanced = report.enhanced_plan
        execution = report.execution
        executed = execution.executed_trades if execution else []
        state = self.store.get()
        report.thought_chain = build_thought_chain(
            enhanced,
            execution,
            state,
            sizer=self.enhancer.sizer,
            threshold=self.enhancer.breakout_filter.threshold,
        )

        try:
            self.persistence.store_trades(executed, enhanced, report.thought_chain)
        except Exception as exc:
            logger.error(f"Failed to store trade records for plan {enhanced.plan.id}: {exc}")

        if executed:
            try:
                self._refresh_account()
            except Exception as exc:
                logger.warning(f"Account refresh after execution failed: {exc}")

        def append_history(agent_state: AgentState) -> None:
            for trade in executed:
                agent_state.trade_history.append({"event": "trade", "plan_id": enhanced.plan.id, **trade.to_dict()})

        self.store.update(append_history, last_run=now.isoformat())

    def _handle_critical(self, exc: BaseException, report: CycleReport) -> None:
        def note(agent_state: AgentState) -> None:
            agent_state.trade_history.append({
                "event": "critical_pause",
                "error": str(exc),
                "phase": self._phase.value,
                "timestamp": utc_now_iso(),
            })

        try:
            self.store.update(note, is_paused=True)
        except Exception as save_exc:
            logger.error(f"Failed to persist critical pause: {save_exc}")
        try:
            self.notifier.send_critical_alert(exc, {"phase": self._phase.value, "states": list(report.states)})
        except Exception as alert_exc:
            logger.error(f"Critical alert could not be sent: {alert_exc}")
        if self._metrics is not None:
            self._metrics.record_paused(True)

    def _finish(self, report: CycleReport, started: float) -> CycleReport:
        report.finished_at = utc_now_iso()
        report.duration_seconds = time.monotonic() - started
        self.last_report = report
        if self._metrics is not None:
            self._metrics.record_cycle(report)
        logger.info(
            f"Cycle {report.status}"
            + (f" ({report.reason})" if report.reason else "")
            + f" in {report.duration_seconds:.2f}s"
        )
        return report

    # ------------------------------------------------------------------
    # Background tasks
    # ------------------------------------------------------------------

    def resync_state(self) -> bool:
        """
        Re-read persisted state unless a cycle is running.

        Only checks the cycle guard; never holds it, so a scheduled cycle that
        starts during a resync is not skipped.
        """
        if self._cycle_guard.locked():
            logger.debug("Cycle in progress; deferring state resync")
            return False
        return self.store.resync()

    def send_daily_summary(self, now: Optional[datetime] = None) -> None:
        today = (now or self._clock()).date().isoformat()
        try:
            account = self.trading.get_account_details() or {}
            trades = [
                entry for entry in self.store.get().trade_history
                if entry.get("event") == "trade" and str(entry.get("executed_at", "")).startswith(today)
            ]
            self.notifier.send_daily_summary(account, trades)
        except Exception as exc:
            logger.error(f"Daily summary failed: {exc}")

    # ------------------------------------------------------------------
    # Control operations
    # ------------------------------------------------------------------

    def pause(self, reason: str = "manual") -> AgentState:
        """Pause trading; raises ConcurrencyError if a pause is already in flight."""
        return self.locks.with_lock(PAUSE_KEY, self._set_paused, True, reason)

    def resume(self, reason: str = "manual") -> AgentState:
        """Resume trading; raises ConcurrencyError if a resume is already in flight."""
        return self.locks.with_lock(RESUME_KEY, self._set_paused, False, reason)

    def _set_paused(self, paused: bool, reason: str) -> AgentState:
        def note(agent_state: AgentState) -> None:
            agent_state.trade_history.append({
                "event": "paused" if paused else "resumed",
                "reason": reason,
                "timestamp": utc_now_iso(),
            })

        updates: Dict[str, Any] = {"is_paused": paused}
        if not paused:
            updates["pause_token"] = None
        state = self.store.update(note, **updates)
        logger.warning(f"Agent {'paused' if paused else 'resumed'} ({reason})")
        if self._metrics is not None:
            self._metrics.record_paused(paused)
        return state

    def shutdown(self, reason: str = "signal") -> AgentState:
        """Graceful shutdown: pause, cancel open orders, persist, record the event."""
        return self.locks.with_lock(SHUTDOWN_KEY, self._shutdown, reason)

    def _shutdown(self, reason: str) -> AgentState:
        logger.info(f"Shutting down trading workflow ({reason})")
        self._stop_event.set()
        self._enter(WorkflowState.SHUTTING_DOWN)
        self.store.update(is_paused=True)

        canceled: Any = None
        try:
            canceled = self.trading.cancel_all_orders()
        except Exception as exc:
            logger.error(f"Failed to cancel open orders during shutdown: {exc}")

        def note(agent_state: AgentState) -> None:
            agent_state.trade_history.append({
                "event": "shutdown",
                "reason": reason,
                "canceled_orders": canceled,
                "timestamp": utc_now_iso(),
            })

        return self.store.update(note)

    def status(self) -> Dict[str, Any]:
        state = self.store.get()
        return {
            "workflow_state": self.state.value,
            "is_paused": state.is_paused,
            "last_run": state.last_run,
            "current_strategy": state.current_strategy,
            "account_balance": state.account_balance,
            "open_positions": len(state.open_positions),
            "active_locks": self.locks.active_keys(),
            "last_cycle": self.last_report.summary() if self.last_report else None,
        }
