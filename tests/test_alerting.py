"""
Tests for AlertService.

Delivery is exercised in dry-run mode (logs only) and with urlopen patched.
"""

import json
import logging
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest

from infra.alerting import AlertConfig, AlertService, AlertSeverity


@pytest.fixture
def dry_run():
    return AlertService(AlertConfig(
        enabled=True, webhook_url=None, min_severity=AlertSeverity.INFO, dry_run=True,
    ))


def fake_plan():
    exit_plan = SimpleNamespace(stop_loss=141.0, take_profit=165.0)
    trade = SimpleNamespace(action="BUY", enhanced_quantity=66, symbol="AAPL", price_target=150.0, exit_plan=exit_plan)
    metrics = SimpleNamespace(filtered_trade_count=1, original_trade_count=3, strategy_confidence=0.82)
    return SimpleNamespace(metrics=metrics, trades=[trade], plan=SimpleNamespace(id="plan-1"))


def test_disabled_service_sends_nothing():
    service = AlertService.from_config(False, {})
    assert not service.is_enabled()
    assert service.notify(AlertSeverity.CRITICAL, "t", "m") is False


def test_enabled_without_webhook_is_disabled(monkeypatch):
    monkeypatch.delenv("ALERT_WEBHOOK_URL", raising=False)
    assert not AlertService.from_config(True, {}).is_enabled()


def test_dry_run_logs(dry_run, caplog):
    with caplog.at_level(logging.INFO, logger="infra.alerting"):
        assert dry_run.notify(AlertSeverity.WARNING, "Title", "Body", {"k": 1})
    assert "[ALERT:WARNING] Title - Body" in caplog.text


def test_dedupe_identical_alerts(dry_run):
    assert dry_run.notify(AlertSeverity.INFO, "same", "msg")
    assert not dry_run.notify(AlertSeverity.INFO, "same", "msg")
    assert dry_run.notify(AlertSeverity.INFO, "same", "other msg")


def test_min_severity():
    service = AlertService(AlertConfig(
        enabled=True, webhook_url=None, min_severity=AlertSeverity.CRITICAL, dry_run=True,
    ))
    assert not service.notify(AlertSeverity.WARNING, "t", "m")
    assert service.notify(AlertSeverity.CRITICAL, "t", "m")


def test_send_trade_plan_returns_token(dry_run, caplog):
    with caplog.at_level(logging.INFO, logger="infra.alerting"):
        token = dry_run.send_trade_plan(fake_plan())
    assert isinstance(token, str) and len(token) >= 16
    assert "BUY 66 AAPL @ 150.00" in caplog.text
    assert token in caplog.text
    assert dry_run.send_trade_plan(fake_plan()) != token


def test_daily_summary(dry_run, caplog):
    trades = [{"symbol": "AAPL", "status": "executed"}, {"symbol": "MSFT", "status": "failed"}]
    with caplog.at_level(logging.INFO, logger="infra.alerting"):
        dry_run.send_daily_summary({"balance": 101_250.5}, trades)
    assert "balance $101,250.50, 1 executed / 2 attempted" in caplog.text


def test_webhook_delivery():
    service = AlertService(AlertConfig(
        enabled=True, webhook_url="https://hooks.example.test/x", min_severity=AlertSeverity.INFO, dry_run=False,
    ))
    response = MagicMock(status=200)
    response.__enter__.return_value = response
    with patch("infra.alerting.urllib.request.urlopen", return_value=response) as urlopen:
        service.send_critical_alert(RuntimeError("API_ERROR"), {"phase": "planning"})

    request = urlopen.call_args.args[0]
    body = json.loads(request.data.decode("utf-8"))
    assert body["text"].startswith("[CRITICAL] Agent paused after critical error")
    assert "RuntimeError: API_ERROR" in body["text"]


def test_webhook_failure_is_logged_not_raised():
    import urllib.error

    service = AlertService(AlertConfig(
        enabled=True, webhook_url="https://hooks.example.test/x", min_severity=AlertSeverity.INFO, dry_run=False,
    ))
    with patch("infra.alerting.urllib.request.urlopen", side_effect=urllib.error.URLError("down")):
        assert service.notify(AlertSeverity.CRITICAL, "t", "m") is False


def test_severity_from_string():
    assert AlertSeverity.from_string("critical") is AlertSeverity.CRITICAL
    assert AlertSeverity.from_string("bogus") is AlertSeverity.WARNING
