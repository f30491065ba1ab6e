"""Prometheus-backed metrics hooks for the trading workflow and cost governor."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from prometheus_client import CollectorRegistry, Counter, Gauge, Summary, start_http_server

logger = logging.getLogger(__name__)


@dataclass
class CycleStats:
    status: str
    reason: Optional[str]
    candidates: int
    surviving: int
    executed: int
    duration_seconds: float


class MetricsRecorder:
    """
    Expose workflow stats via Prometheus.

    Singleton so every component shares one registry; tests call
    ``_reset_for_testing`` between cases.
    """
    _instance: Optional["MetricsRecorder"] = None
    _initialized: bool = False

    def __new__(cls, enabled: bool = True, port: int = 9100):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self, enabled: bool = True, port: int = 9100) -> None:
        if self.__class__._initialized:
            return
        self.__class__._initialized = True

        self._enabled = bool(enabled)
        self._port = port
        self._started = False
        self._last_cycle_stats: Optional[CycleStats] = None
        self._last_governor_usage: Dict[str, float] = {}
        self.registry = CollectorRegistry()

        self._cycle_summary = Summary(
            "agent_cycle_duration_seconds",
            "Duration of a full workflow cycle",
            registry=self.registry,
        )
        self._cycle_counter = Counter(
            "agent_cycle_total",
            "Workflow cycles by status and reason",
            labelnames=("status", "reason"),
            registry=self.registry,
        )
        self._cycle_gauge = Gauge(
            "agent_cycle_stage_count",
            "Per-cycle counts (candidates, surviving, executed)",
            labelnames=("stage",),
            registry=self.registry,
        )
        self._governor_gauge = Gauge(
            "agent_decision_service_utilization",
            "Daily usage of the metered decision service (0-1)",
            labelnames=("counter",),
            registry=self.registry,
        )
        self._paused_gauge = Gauge(
            "agent_paused",
            "1 when the agent is paused",
            registry=self.registry,
        )

    @classmethod
    def _reset_for_testing(cls) -> None:
        """
        Reset singleton state for testing.
        WARNING: Only call from test fixtures/teardown.
        """
        cls._instance = None
        cls._initialized = False

    def is_enabled(self) -> bool:
        return self._enabled

    def start(self) -> None:
        if not self._enabled or self._started:
            return
        try:
            start_http_server(self._port, registry=self.registry)
        except OSError as exc:
            self._enabled = False
            logger.error("Failed to start metrics exporter on port %s: %s", self._port, exc)
            return
        self._started = True
        logger.info("Prometheus metrics exporter listening on 0.0.0.0:%s", self._port)

    def record_cycle(self, report: Any) -> None:
        """Record a workflow CycleReport."""
        metrics = report.enhanced_plan.metrics if report.enhanced_plan is not None else None
        summary = report.execution.summary if report.execution is not None else None
        stats = CycleStats(
            status=report.status,
            reason=report.reason,
            candidates=metrics.original_trade_count if metrics else 0,
            surviving=metrics.filtered_trade_count if metrics else 0,
            executed=summary.trades_successful if summary else 0,
            duration_seconds=report.duration_seconds,
        )
        self._last_cycle_stats = stats

        self._cycle_summary.observe(stats.duration_seconds)
        self._cycle_counter.labels(status=stats.status, reason=stats.reason or "none").inc()
        self._cycle_gauge.labels(stage="candidates").set(stats.candidates)
        self._cycle_gauge.labels(stage="surviving").set(stats.surviving)
        self._cycle_gauge.labels(stage="executed").set(stats.executed)

    def record_governor_usage(self, request_ratio: float, cost_ratio: float) -> None:
        self._last_governor_usage = {"requests": request_ratio, "cost": cost_ratio}
        self._governor_gauge.labels(counter="requests").set(max(request_ratio, 0.0))
        self._governor_gauge.labels(counter="cost").set(max(cost_ratio, 0.0))

    def record_paused(self, paused: bool) -> None:
        self._paused_gauge.set(1 if paused else 0)

    def last_cycle(self) -> Optional[CycleStats]:
        return self._last_cycle_stats

    def governor_snapshot(self) -> Dict[str, float]:
        return dict(self._last_governor_usage)
