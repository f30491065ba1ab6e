"""
ada-trader Runner: Main Loop

Wires the collaborators from config/agent.yaml and drives the workflow.

Flow:
1. Validate config, configure logging, take the single-instance lock
2. Build governor, planner, broker, persistence, state store, notifier
3. Build the StrategyEnhancer and TradingWorkflow
4. Schedule the daily cycle, daily summary and periodic state resync
5. Serve the control endpoint until SIGINT/SIGTERM, then shut down gracefully
"""

import logging
import signal
import threading
from datetime import datetime
from pathlib import Path
from typing import List, Optional
from zoneinfo import ZoneInfo

from ai.planner import create_planner
from core.exceptions import ConcurrencyError
from core.market_data import SnapshotMarketData
from core.market_hours import market_hours, trading_window
from core.models import AgentState
from core.operation_lock import OperationLockManager
from core.paper_broker import PaperBroker
from core.workflow import CycleReport, TradingWorkflow
from infra.alerting import AlertService
from infra.control_server import ControlServer
from infra.cost_governor import CostGovernor
from infra.instance_lock import SingleInstanceLock
from infra.metrics import MetricsRecorder
from infra.scheduler import DailyTrigger, PeriodicTask
from infra.sqlite_store import SqlitePersistence
from infra.state_store import build_state_store
from strategy.breakout_filter import BreakoutFilter
from strategy.enhancer import StrategyEnhancer
from strategy.exit_plan import ExitPlanBuilder
from strategy.position_sizing import PositionSizer
from tools.config_validator import AgentConfig, load_config, validate_config_file

logger = logging.getLogger(__name__)


def setup_logging(config: AgentConfig) -> None:
    handlers: List[logging.Handler] = [logging.StreamHandler()]
    if config.logging.file:
        log_path = Path(config.logging.file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.insert(0, logging.FileHandler(log_path))
    logging.basicConfig(
        level=getattr(logging, config.logging.level.upper()),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        handlers=handlers,
    )


def build_enhancer(config: AgentConfig) -> StrategyEnhancer:
    strategy_cfg = config.strategy
    return StrategyEnhancer(
        sizer=PositionSizer(
            max_fraction=strategy_cfg.max_position_fraction,
            alpha=strategy_cfg.beta_alpha,
            beta=strategy_cfg.beta_beta,
        ),
        breakout_filter=BreakoutFilter(
            threshold=strategy_cfg.breakout_threshold,
            weights=strategy_cfg.breakout_weights,
            high_confidence_boost=strategy_cfg.high_confidence_boost,
            high_confidence_level=strategy_cfg.high_confidence_level,
        ),
        exit_builder=ExitPlanBuilder(
            stop_loss_pct=strategy_cfg.exits.stop_loss_pct,
            ladder=[(level.gain_pct, level.fraction) for level in strategy_cfg.exits.take_profit_levels],
        ),
        confidence_floor=strategy_cfg.confidence_floor,
        critical_keywords=config.workflow.critical_keywords,
    )


class AgentRunner:
    """
    Process-level orchestrator.

    Responsibilities:
    - Build every collaborator from config
    - Run background triggers and the control endpoint
    - Translate signals into a graceful workflow shutdown
    """

    def __init__(self, config: AgentConfig, acquire_lock: bool = True):
        self.config = config
        self.mode = config.app.mode
        self.instance_lock: Optional[SingleInstanceLock] = None
        if acquire_lock:
            self.instance_lock = SingleInstanceLock(config.app.name, lock_dir=config.state.instance_lock_dir)
            if not self.instance_lock.acquire():
                raise RuntimeError(f"Another {config.app.name} instance is already running")

        monitoring = config.monitoring
        self.metrics = MetricsRecorder(enabled=monitoring.metrics_enabled, port=monitoring.metrics_port)
        workflow_cfg = config.workflow

        self.governor = CostGovernor(
            daily_request_limit=config.governor.daily_request_limit,
            max_daily_cost_usd=config.governor.max_daily_cost_usd,
            min_request_interval=config.governor.min_request_interval_seconds,
            cost_per_1k_tokens=config.governor.cost_per_1k_tokens,
            warn_threshold=config.governor.warn_threshold,
            clock=lambda: datetime.now(ZoneInfo(workflow_cfg.timezone)),
            metrics=self.metrics,
        )
        self.planner = create_planner(config.ai.model_dump(), self.governor, config.api_key())
        self.broker = PaperBroker(
            starting_balance=config.paper.starting_balance,
            slippage_bps=config.paper.slippage_bps,
            hours=market_hours(workflow_cfg.timezone),
            read_only=self.mode == "DRY_RUN",
        )
        self.persistence = SqlitePersistence(config.state.sqlite_path)
        strategy_name = config.strategy.name
        self.state_store = build_state_store(
            self.persistence, config.state.state_file, defaults=AgentState(current_strategy=strategy_name)
        )
        if self.state_store.load().current_strategy != strategy_name:
            logger.info(f"Switching current strategy to {strategy_name} from config")
            self.state_store.update(current_strategy=strategy_name)
        self.notifier = AlertService.from_config(monitoring.alerts_enabled, monitoring.alerts)

        self.workflow = TradingWorkflow(
            state_store=self.state_store,
            planner=self.planner,
            trading=self.broker,
            persistence=self.persistence,
            notifier=self.notifier,
            market_data=SnapshotMarketData(config.market_data.snapshot_file),
            enhancer=build_enhancer(config),
            locks=OperationLockManager(),
            window=trading_window(
                workflow_cfg.start_hour, workflow_cfg.end_hour, workflow_cfg.weekdays, workflow_cfg.timezone
            ),
            critical_keywords=workflow_cfg.critical_keywords,
            market_poll_seconds=workflow_cfg.market_poll_seconds,
            metrics=self.metrics,
        )
        self.metrics.record_paused(self.state_store.get().is_paused)

        schedule = workflow_cfg.schedule
        self.tasks: List = [
            DailyTrigger("daily-run", schedule.daily_run, self.workflow.run_cycle,
                         weekdays=workflow_cfg.weekdays, timezone=workflow_cfg.timezone),
            PeriodicTask("state-resync", schedule.resync_interval_seconds, self.workflow.resync_state),
        ]
        if schedule.daily_summary:
            self.tasks.append(
                DailyTrigger("daily-summary", schedule.daily_summary, self.workflow.send_daily_summary,
                             weekdays=workflow_cfg.weekdays, timezone=workflow_cfg.timezone)
            )

        self.control_server: Optional[ControlServer] = None
        if monitoring.control_enabled:
            self.control_server = ControlServer(
                monitoring.control_port,
                status_provider=self.status,
                pause_action=lambda: self.workflow.pause("control"),
                resume_action=lambda: self.workflow.resume("control"),
            )

        self._stopped = threading.Event()
        logger.info(f"Initialized AgentRunner in {self.mode} mode (planner={config.ai.provider})")

    def status(self):
        payload = self.workflow.status()
        payload["mode"] = self.mode
        payload["governor"] = self.governor.usage()
        payload["state_source"] = self.state_store.loaded_from
        return payload

    def run_once(self) -> CycleReport:
        try:
            return self.workflow.run_cycle()
        finally:
            self.close()

    def run_forever(self) -> None:
        signal.signal(signal.SIGINT, self._handle_stop)
        signal.signal(signal.SIGTERM, self._handle_stop)

        self.metrics.start()
        if self.control_server:
            self.control_server.start()
        for task in self.tasks:
            task.start()
        logger.info("Agent running; waiting for scheduled cycles")

        try:
            self._stopped.wait()
        finally:
            self.close()

    def _handle_stop(self, *_):
        logger.warning("Shutdown signal received - initiating graceful shutdown")
        try:
            self.workflow.shutdown("signal")
        except ConcurrencyError:
            logger.info("Shutdown already in progress")
        self._stopped.set()

    def close(self) -> None:
        for task in self.tasks:
            task.stop()
        if self.control_server:
            self.control_server.stop()
        if self.instance_lock:
            self.instance_lock.release()


def main():
    """Entry point"""
    import argparse

    parser = argparse.ArgumentParser(description="ada-trader agent")
    parser.add_argument("--config", default="config/agent.yaml", help="Path to agent.yaml")
    parser.add_argument("--once", action="store_true", help="Run one cycle now and exit")
    parser.add_argument("--validate", action="store_true", help="Validate config and exit")
    args = parser.parse_args()

    errors = validate_config_file(args.config)
    if errors:
        logging.basicConfig(level=logging.INFO, format="%(levelname)s: %(message)s")
        for error in errors:
            logger.error(error)
        raise SystemExit(1)
    if args.validate:
        print(f"{args.config}: OK")
        return

    config = load_config(args.config)
    setup_logging(config)
    runner = AgentRunner(config)

    if args.once:
        report = runner.run_once()
        logger.info(f"Cycle report: {report.summary()}")
    else:
        runner.run_forever()


if __name__ == "__main__":
    main()
