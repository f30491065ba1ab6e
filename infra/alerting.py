"""Webhook notification service for plan dispatch, critical pauses and daily summaries."""

from __future__ import annotations

import hashlib
import json
import logging
import os
import secrets
import socket
import time
import urllib.error
import urllib.request
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)


class AlertSeverity(Enum):
    INFO = 10
    WARNING = 20
    CRITICAL = 30

    def __str__(self) -> str:  # pragma: no cover - trivial
        return self.name.lower()

    @classmethod
    def from_string(cls, value: str, default: Optional["AlertSeverity"] = None) -> "AlertSeverity":
        if not value:
            return default or cls.WARNING
        normalized = value.strip().lower()
        for member in cls:
            if member.name.lower() == normalized:
                return member
        return default or cls.WARNING


@dataclass
class AlertConfig:
    enabled: bool
    webhook_url: Optional[str]
    min_severity: AlertSeverity
    dry_run: bool
    timeout: float = 5.0
    dedupe_seconds: float = 60.0  # Suppress identical alerts within this window


class AlertService:
    """
    Send notifications about the agent's workflow.

    Features:
    - Deduplication of identical alerts inside a fixed window
    - Severity threshold
    - Dry-run mode that logs instead of posting
    - Delivery failures are logged, never raised
    """

    def __init__(self, config: AlertConfig) -> None:
        self._config = config
        self._enabled = bool(config.enabled and (config.webhook_url or config.dry_run))
        if config.enabled and not config.webhook_url and not config.dry_run:
            logger.warning("Alerting enabled but no webhook URL set; disabling alerts")
        self._sent_at: Dict[str, float] = {}  # fingerprint -> time.monotonic() of last delivery

    @classmethod
    def from_config(cls, enabled: bool, raw_config: Optional[Dict[str, Any]]) -> "AlertService":
        raw_config = raw_config or {}

        webhook_url = raw_config.get("webhook_url")
        if webhook_url and "${" in webhook_url:
            webhook_url = os.path.expandvars(webhook_url)
        if not webhook_url:
            env_key = raw_config.get("webhook_env", "ALERT_WEBHOOK_URL")
            webhook_url = os.getenv(env_key, "")

        config = AlertConfig(
            enabled=enabled,
            webhook_url=webhook_url or None,
            min_severity=AlertSeverity.from_string(raw_config.get("min_severity", "info"), default=AlertSeverity.INFO),
            dry_run=bool(raw_config.get("dry_run", False)),
            timeout=float(raw_config.get("timeout_seconds", 5.0)),
            dedupe_seconds=float(raw_config.get("dedupe_seconds", 60.0)),
        )
        return cls(config)

    def is_enabled(self) -> bool:
        return self._enabled

    def notify(
        self,
        severity: AlertSeverity,
        title: str,
        message: str,
        context: Optional[Dict[str, Any]] = None,
    ) -> bool:
        """
        Send one alert.

        Returns:
            True if the alert was handed to the webhook (or logged in dry-run)
        """
        if not self._enabled:
            return False
        if severity.value < self._config.min_severity.value:
            return False

        fingerprint = hashlib.sha256(f"{severity.name}|{title}|{message}".encode("utf-8")).hexdigest()
        now = time.monotonic()
        last = self._sent_at.get(fingerprint)
        if last is not None and now - last <= self._config.dedupe_seconds:
            logger.debug(f"Alert deduped: {title} (fingerprint={fingerprint[:8]}...)")
            return False
        self._sent_at = {fp: ts for fp, ts in self._sent_at.items() if now - ts <= self._config.dedupe_seconds}
        self._sent_at[fingerprint] = now

        return self._send_alert(severity, title, message, context)

    # Domain notifications --------------------------------------------------

    def send_trade_plan(self, enhanced_plan: Any) -> str:
        """Announce the day's plan; returns the pause token embedded in the message."""
        token = secrets.token_urlsafe(16)
        metrics = enhanced_plan.metrics
        lines: List[str] = [
            f"{metrics.filtered_trade_count} of {metrics.original_trade_count} candidate(s) survived "
            f"(strategy confidence {metrics.strategy_confidence:.0%})",
        ]
        for trade in enhanced_plan.trades:
            lines.append(
                f"{trade.action} {trade.enhanced_quantity} {trade.symbol} @ {trade.price_target:.2f} "
                f"stop {trade.exit_plan.stop_loss:.2f} tp {trade.exit_plan.take_profit:.2f}"
            )
        self.notify(
            AlertSeverity.INFO,
            "Trade plan ready",
            "; ".join(lines),
            {"plan_id": enhanced_plan.plan.id, "pause_token": token},
        )
        return token

    def send_critical_alert(self, error: BaseException, context: Optional[Dict[str, Any]] = None) -> None:
        self.notify(
            AlertSeverity.CRITICAL,
            "Agent paused after critical error",
            f"{type(error).__name__}: {error}",
            context,
        )

    def send_daily_summary(self, account: Dict[str, Any], trades: List[Dict[str, Any]]) -> None:
        executed = [t for t in trades if t.get("status") == "executed"]
        self.notify(
            AlertSeverity.INFO,
            "Daily summary",
            f"balance ${float(account.get('balance') or 0.0):,.2f}, "
            f"{len(executed)} executed / {len(trades)} attempted trade(s) today",
            {"symbols": sorted({t.get("symbol") for t in executed})},
        )

    # Delivery ----------------------------------------------------------------

    def _send_alert(
        self,
        severity: AlertSeverity,
        title: str,
        message: str,
        context: Optional[Dict[str, Any]],
    ) -> bool:
        payload = self._build_payload(severity, title, message, context)

        if self._config.dry_run:
            logger.info("[ALERT:%s] %s - %s | %s", severity.name, title, message, context or {})
            return True

        request = urllib.request.Request(
            self._config.webhook_url,
            data=json.dumps(payload).encode("utf-8"),
            headers={"Content-Type": "application/json"},
        )
        try:
            with urllib.request.urlopen(request, timeout=self._config.timeout) as response:
                if response.status >= 400:
                    logger.error("Alert '%s' rejected with HTTP %s", title, response.status)
                    return False
        except (urllib.error.URLError, socket.timeout) as exc:
            logger.error("Failed to deliver alert '%s': %s", title, exc)
            return False
        return True

    @staticmethod
    def _build_payload(
        severity: AlertSeverity,
        title: str,
        message: str,
        context: Optional[Dict[str, Any]],
    ) -> Dict[str, Any]:
        line_items = [f"[{severity.name}] {title}", message]
        if context:
            try:
                context_json = json.dumps(context, sort_keys=True)
            except TypeError:
                context_json = str(context)
            line_items.append(f"context={context_json}")
        return {"text": " | ".join(filter(None, line_items))}


__all__ = ["AlertConfig", "AlertService", "AlertSeverity"]
