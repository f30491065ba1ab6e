"""Tests for the HTTP control endpoint (bound to an ephemeral localhost port)"""

import json
import urllib.error
import urllib.request

import pytest

from core.exceptions import ConcurrencyError
from infra.control_server import ControlServer


def request(server, path, method="GET"):
    req = urllib.request.Request(f"http://127.0.0.1:{server.port}{path}", method=method, data=b"" if method == "POST" else None)
    try:
        with urllib.request.urlopen(req, timeout=5) as response:
            return response.status, json.loads(response.read())
    except urllib.error.HTTPError as exc:
        return exc.code, json.loads(exc.read())


@pytest.fixture
def calls():
    return []


@pytest.fixture
def server(calls):
    def busy():
        raise ConcurrencyError("agent-resume")

    srv = ControlServer(
        0,
        status_provider=lambda: {"workflow_state": "idle"},
        pause_action=lambda: calls.append("pause"),
        resume_action=busy,
    )
    srv.start()
    yield srv
    srv.stop()


def test_health(server):
    assert request(server, "/health") == (200, {"ok": True})


def test_status(server):
    assert request(server, "/status") == (200, {"workflow_state": "idle"})


def test_pause(server, calls):
    status, payload = request(server, "/pause", method="POST")
    assert status == 200
    assert payload["ok"]
    assert calls == ["pause"]


def test_busy_operation_returns_conflict(server):
    status, payload = request(server, "/resume", method="POST")
    assert status == 409
    assert "agent-resume" in payload["error"]


def test_unknown_route(server):
    assert request(server, "/nope")[0] == 404
    assert request(server, "/nope", method="POST")[0] == 404
