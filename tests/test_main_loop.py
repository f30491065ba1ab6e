"""
Tests for runner wiring and graceful shutdown.

The runner is built from an in-memory AgentConfig pointing at tmp_path;
no threads or servers are started.
"""

from unittest.mock import MagicMock

import pytest

from ai.planner import MockPlanner
from runner.main_loop import AgentRunner, build_enhancer
from tools.config_validator import AgentConfig


@pytest.fixture
def config(tmp_path):
    return AgentConfig(
        app={"mode": "DRY_RUN"},
        logging={"file": None},
        state={
            "state_file": str(tmp_path / "agent_state.json"),
            "sqlite_path": str(tmp_path / "agent.db"),
            "instance_lock_dir": str(tmp_path),
        },
        monitoring={"control_enabled": False},
        strategy={"breakout_threshold": 0.55, "max_position_fraction": 0.05},
    )


def test_build_enhancer_uses_config(config):
    enhancer = build_enhancer(config)
    assert enhancer.breakout_filter.threshold == 0.55
    assert enhancer.sizer.max_fraction == 0.05
    assert enhancer.exit_builder.stop_loss_pct == 0.06
    assert enhancer.exit_builder.ladder == ((0.10, 0.5), (0.15, 0.3), (0.20, 0.2))


def test_runner_wiring(config):
    runner = AgentRunner(config, acquire_lock=False)
    assert isinstance(runner.planner, MockPlanner)
    assert runner.broker.read_only
    assert runner.control_server is None
    assert [task.name for task in runner.tasks] == ["daily-run", "state-resync", "daily-summary"]

    status = runner.status()
    assert status["mode"] == "DRY_RUN"
    assert status["governor"]["requests"] == 0
    assert status["state_source"] == "defaults"


def test_instance_lock_released_on_close(config, tmp_path):
    runner = AgentRunner(config)
    assert (tmp_path / "ada-trader.pid").exists()
    runner.close()
    assert not (tmp_path / "ada-trader.pid").exists()


def test_stop_signal_shuts_down_workflow(config):
    runner = AgentRunner(config, acquire_lock=False)
    runner._handle_stop()
    assert runner.workflow.is_shutting_down
    assert runner.state_store.get().is_paused
    assert runner._stopped.is_set()


def test_run_once_closes(config):
    runner = AgentRunner(config, acquire_lock=False)
    runner.workflow.run_cycle = MagicMock(return_value="report")
    task = MagicMock()
    runner.tasks = [task]
    assert runner.run_once() == "report"
    task.stop.assert_called_once()


def test_strategy_name_from_config(config):
    config.strategy.name = "breakout_momentum"
    runner = AgentRunner(config, acquire_lock=False)
    assert runner.state_store.get().current_strategy == "breakout_momentum"
    assert runner.status()["current_strategy"] == "breakout_momentum"
    assert runner.persistence.get_agent_state().current_strategy == "breakout_momentum"


def test_governor_day_follows_trading_timezone(config):
    runner = AgentRunner(config, acquire_lock=False)
    assert str(runner.governor._clock().tzinfo) == "America/New_York"
