"""
Tests for the trading workflow state machine.

Coverage:
- Full cycle ordering: plan -> filter -> wait -> execute -> record
- Skips: paused, outside trading window, shutting down, cycle in progress
- Error handling: critical errors pause and alert, cost limits and other
  errors abort without pausing
- pause/resume/shutdown through the operation lock manager
"""

from unittest.mock import MagicMock

import pytest

from core.exceptions import ConcurrencyError, CostLimitExceeded, CriticalWorkflowError
from core.workflow import PAUSE_KEY, TradingWorkflow, WorkflowState
from infra.state_store import AgentStateStore, JsonFileStateProvider
from tests.helpers import (
    StubMarketData,
    StubNotifier,
    StubPersistence,
    StubPlanner,
    StubTrading,
    make_candidate,
    make_plan,
)
from tests.helpers.stubs import strong_market_data, weak_symbol_data


@pytest.fixture
def parts(tmp_path):
    return {
        "state_store": AgentStateStore([JsonFileStateProvider(str(tmp_path / "state.json"))]),
        "planner": StubPlanner(make_plan(make_candidate("AAPL", confidence=0.75), id="plan-1")),
        "trading": StubTrading(),
        "persistence": StubPersistence(),
        "notifier": StubNotifier(),
        "market_data": StubMarketData(),
    }


def build(parts, **kwargs):
    kwargs.setdefault("market_poll_seconds", 0.01)
    return TradingWorkflow(**parts, **kwargs)


class TestCompletedCycle:
    def test_runs_every_step_in_order(self, parts, monday_morning):
        workflow = build(parts)
        report = workflow.run_cycle(monday_morning)

        assert report.status == "completed"
        assert report.states == ["planning", "filtering", "waiting_for_market_open", "executing", "recording"]
        assert parts["planner"].calls == ["craft_plan", "refine_predictions"]
        assert [t.symbol for t in parts["trading"].executed] == ["AAPL"]
        assert workflow.state == WorkflowState.IDLE

    def test_records_outcome(self, parts, monday_morning):
        workflow = build(parts)
        report = workflow.run_cycle(monday_morning)

        stored = parts["persistence"].stored[0]
        assert [t.symbol for t in stored["trades"]] == ["AAPL"]
        assert stored["thought_chain"] == report.thought_chain
        assert "Trades executed: 1/1" in report.thought_chain

        state = parts["state_store"].get()
        assert state.last_run == monday_morning.isoformat()
        assert state.account_balance == 100_000.0
        assert state.pause_token == "pause-token"
        assert state.trade_history[-1]["event"] == "trade"
        assert state.trade_history[-1]["plan_id"] == "plan-1"

    def test_dispatches_plan_before_execution(self, parts, monday_morning):
        build(parts).run_cycle(monday_morning)
        dispatched = parts["notifier"].plans[0]
        assert dispatched.metrics.filtered_trade_count == 1

    def test_waits_for_market_open(self, parts, monday_morning):
        answers = iter([False, False, True])
        parts["trading"].market_open = lambda: next(answers)
        report = build(parts).run_cycle(monday_morning)
        assert report.status == "completed"
        assert parts["trading"].market_checks == 3

    def test_no_survivors_skips_execution(self, parts, monday_morning):
        parts["market_data"].snapshot = {"market_sentiment": "neutral", "symbols": {"AAPL": weak_symbol_data()}}
        parts["planner"].plan = make_plan(make_candidate("AAPL", confidence=0.5))
        report = build(parts).run_cycle(monday_morning)

        assert report.status == "completed"
        assert "executing" not in report.states
        assert parts["trading"].executed == []
        assert parts["persistence"].stored[0]["trades"] == []

    def test_persistence_failure_does_not_abort(self, parts, monday_morning):
        parts["persistence"] = StubPersistence(fail_trades=True)
        report = build(parts).run_cycle(monday_morning)
        assert report.status == "completed"
        assert parts["state_store"].get().last_run == monday_morning.isoformat()

    def test_metrics_recorded(self, parts, monday_morning):
        metrics = MagicMock()
        report = build(parts, metrics=metrics).run_cycle(monday_morning)
        metrics.record_cycle.assert_called_once_with(report)


class TestSkips:
    def test_paused(self, parts, monday_morning):
        parts["state_store"].update(is_paused=True)
        workflow = build(parts)
        report = workflow.run_cycle(monday_morning)
        assert report.status == "skipped"
        assert report.reason == "paused"
        assert parts["planner"].calls == []
        assert workflow.state == WorkflowState.PAUSED

    def test_outside_trading_window(self, parts, saturday_noon):
        report = build(parts).run_cycle(saturday_noon)
        assert report.reason == "outside_trading_window"
        assert parts["planner"].calls == []

    def test_before_window_opens(self, parts, monday_morning):
        report = build(parts).run_cycle(monday_morning.replace(hour=5, minute=59))
        assert report.reason == "outside_trading_window"

    def test_cycle_in_progress(self, parts, monday_morning):
        workflow = build(parts)
        workflow._cycle_guard.acquire()
        try:
            report = workflow.run_cycle(monday_morning)
        finally:
            workflow._cycle_guard.release()
        assert report.reason == "cycle_in_progress"


class TestErrors:
    def test_critical_error_pauses_and_alerts(self, parts, monday_morning):
        parts["planner"].error = RuntimeError("API_ERROR: 401 authentication failed")
        workflow = build(parts)
        report = workflow.run_cycle(monday_morning)

        assert report.status == "paused"
        assert report.reason == "critical_error"
        assert parts["state_store"].get().is_paused
        assert len(parts["notifier"].critical) == 1
        assert parts["state_store"].get().trade_history[-1]["event"] == "critical_pause"
        assert workflow.state == WorkflowState.PAUSED
        assert workflow.run_cycle(monday_morning).reason == "paused"

    def test_critical_execution_error_pauses(self, parts, monday_morning):
        parts["trading"].error = CriticalWorkflowError("brokerage session revoked")
        report = build(parts).run_cycle(monday_morning)
        assert report.status == "paused"
        assert "executing" in report.states
        assert parts["state_store"].get().is_paused

    def test_fills_before_critical_execution_error_are_recorded(self, parts, monday_morning):
        parts["planner"].plan = make_plan(make_candidate("AAPL"), make_candidate("MSFT"), id="plan-2")
        parts["market_data"].snapshot = strong_market_data("AAPL", "MSFT")
        parts["trading"].errors_by_symbol = {"MSFT": RuntimeError("NETWORK unreachable")}

        report = build(parts).run_cycle(monday_morning)

        assert report.status == "paused"
        assert report.reason == "critical_error"
        assert [t.symbol for t in parts["trading"].executed] == ["AAPL"]
        stored = parts["persistence"].stored[0]["trades"]
        assert [(t.symbol, t.status) for t in stored] == [("AAPL", "executed"), ("MSFT", "failed")]
        assert report.execution.summary.trades_successful == 1

        state = parts["state_store"].get()
        assert state.is_paused
        assert state.last_run == monday_morning.isoformat()
        assert [e["event"] for e in state.trade_history] == ["trade", "trade", "critical_pause"]
        assert state.trade_history[0]["symbol"] == "AAPL"
        assert len(parts["notifier"].critical) == 1

    def test_cost_limit_aborts_without_pausing(self, parts, monday_morning):
        parts["planner"].error = CostLimitExceeded("Daily request limit reached (15/15)")
        report = build(parts).run_cycle(monday_morning)
        assert report.status == "aborted"
        assert report.reason == "cost_limit_exceeded"
        assert not parts["state_store"].get().is_paused
        assert parts["notifier"].critical == []

    def test_ordinary_error_aborts_without_pausing(self, parts, monday_morning):
        parts["planner"].error = ValueError("Planner returned invalid JSON")
        report = build(parts).run_cycle(monday_morning)
        assert report.status == "aborted"
        assert report.reason == "error"
        assert "invalid JSON" in report.error
        assert not parts["state_store"].get().is_paused
        assert parts["state_store"].get().last_run is None

    def test_validation_failure_aborts(self, parts, monday_morning):
        parts["planner"].plan = make_plan()
        report = build(parts).run_cycle(monday_morning)
        assert report.status == "aborted"
        assert report.reason == "validation_failed"
        assert report.validation.errors
        assert parts["notifier"].plans == []

    def test_custom_critical_keywords(self, parts, monday_morning):
        parts["planner"].error = RuntimeError("margin call")
        report = build(parts, critical_keywords=["MARGIN"]).run_cycle(monday_morning)
        assert report.status == "paused"


class TestControlOperations:
    def test_pause_and_resume(self, parts):
        workflow = build(parts)
        assert workflow.pause("test").is_paused
        parts["state_store"].update(pause_token="abc")

        state = workflow.resume("test")
        assert not state.is_paused
        assert state.pause_token is None
        events = [e["event"] for e in state.trade_history]
        assert events == ["paused", "resumed"]

    def test_concurrent_pause_rejected(self, parts):
        workflow = build(parts)
        workflow.locks.acquire(PAUSE_KEY)
        with pytest.raises(ConcurrencyError):
            workflow.pause()
        assert not parts["state_store"].get().is_paused

    def test_shutdown(self, parts, monday_morning):
        workflow = build(parts)
        state = workflow.shutdown("test")

        assert state.is_paused
        assert state.trade_history[-1]["event"] == "shutdown"
        assert parts["trading"].cancel_calls == 1
        assert workflow.state == WorkflowState.SHUTTING_DOWN
        assert workflow.run_cycle(monday_morning).reason == "shutting_down"

    def test_status(self, parts, monday_morning):
        workflow = build(parts)
        workflow.run_cycle(monday_morning)
        status = workflow.status()
        assert status["workflow_state"] == "idle"
        assert status["active_locks"] == []
        assert status["last_cycle"]["status"] == "completed"
        assert status["last_cycle"]["metrics"]["filtered_trade_count"] == 1


class TestBackgroundTasks:
    def test_daily_summary_filters_today(self, parts, monday_morning):
        parts["state_store"].update(trade_history=[
            {"event": "trade", "symbol": "AAPL", "status": "executed", "executed_at": "2026-10-19T14:00:00+00:00"},
            {"event": "trade", "symbol": "MSFT", "status": "executed", "executed_at": "2026-10-16T14:00:00+00:00"},
            {"event": "paused", "timestamp": "2026-10-19T15:00:00+00:00"},
        ])
        build(parts).send_daily_summary(monday_morning)

        account, trades = parts["notifier"].summaries[0]
        assert account["balance"] == 100_000.0
        assert [t["symbol"] for t in trades] == ["AAPL"]

    def test_resync_deferred_during_cycle(self, parts):
        workflow = build(parts)
        workflow._cycle_guard.acquire()
        try:
            assert workflow.resync_state() is False
        finally:
            workflow._cycle_guard.release()

    def test_cycle_started_during_resync_is_not_skipped(self, parts, monday_morning):
        workflow = build(parts)
        reports = []

        def resync_with_cycle():
            reports.append(workflow.run_cycle(monday_morning))
            return True

        parts["state_store"].resync = resync_with_cycle
        assert workflow.resync_state() is True
        assert reports[0].status == "completed"
