"""Lightweight HTTP control endpoint: health, status, pause and resume."""

from __future__ import annotations

import json
import logging
import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Any, Callable, Dict, Optional, Tuple

from core.exceptions import ConcurrencyError

logger = logging.getLogger(__name__)


class ControlServer:
    """
    JSON control server.

    Routes:
        GET  /health  -> 200 while the agent is alive
        GET  /status  -> status_provider()
        POST /pause   -> pause_action(), 409 if a pause is already in flight
        POST /resume  -> resume_action(), 409 if a resume is already in flight
    """

    def __init__(
        self,
        port: int,
        status_provider: Callable[[], Dict[str, Any]],
        pause_action: Callable[[], Any],
        resume_action: Callable[[], Any],
        host: str = "127.0.0.1",
    ):
        self._port = int(port)
        self._host = host
        self._status_provider = status_provider
        self._actions = {"/pause": pause_action, "/resume": resume_action}
        self._server: Optional[ThreadingHTTPServer] = None
        self._thread: Optional[threading.Thread] = None

    @property
    def port(self) -> Optional[int]:
        if self._server is None:
            return None
        return self._server.server_port

    def start(self) -> None:
        if self._thread:
            return

        handler_cls = self._build_handler(self._status_provider, self._actions)
        self._server = ThreadingHTTPServer((self._host, self._port), handler_cls)
        self._thread = threading.Thread(target=self._server.serve_forever, name="ControlServer", daemon=True)
        self._thread.start()
        logger.info("Control server listening on %s:%s", self._host, self._server.server_port)

    def stop(self) -> None:
        if not self._server:
            return
        try:
            self._server.shutdown()
            self._server.server_close()
        except OSError as exc:  # pragma: no cover - logging only
            logger.warning("Failed shutting down control server: %s", exc)
        if self._thread:
            self._thread.join(timeout=3)
        self._thread = None
        self._server = None

    @staticmethod
    def _run_action(action: Callable[[], Any]) -> Tuple[int, Dict[str, Any]]:
        try:
            state = action()
        except ConcurrencyError as exc:
            return 409, {"ok": False, "error": str(exc)}
        except Exception as exc:
            logger.error("Control action failed: %s", exc)
            return 500, {"ok": False, "error": str(exc)}
        payload: Dict[str, Any] = {"ok": True}
        if hasattr(state, "is_paused"):
            payload["is_paused"] = state.is_paused
        return 200, payload

    @staticmethod
    def _build_handler(status_provider: Callable[[], Dict[str, Any]], actions: Dict[str, Callable[[], Any]]):
        provider = status_provider

        class ControlHandler(BaseHTTPRequestHandler):
            def _reply(self, code: int, payload: Dict[str, Any]) -> None:
                body = json.dumps(payload, default=str).encode("utf-8")
                self.send_response(code)
                self.send_header("Content-Type", "application/json")
                self.send_header("Content-Length", str(len(body)))
                self.end_headers()
                self.wfile.write(body)

            def do_GET(self):  # type: ignore[override]
                if self.path in ("/", "/health", "/healthz"):
                    self._reply(200, {"ok": True})
                elif self.path == "/status":
                    self._reply(200, provider() or {})
                else:
                    self._reply(404, {"ok": False, "error": "not found"})

            def do_POST(self):  # type: ignore[override]
                action = actions.get(self.path)
                if action is None:
                    self._reply(404, {"ok": False, "error": "not found"})
                    return
                code, payload = ControlServer._run_action(action)
                self._reply(code, payload)

            def log_message(self, format: str, *args: Any) -> None:  # pragma: no cover - suppress noisy logs
                return

        return ControlHandler


__all__ = ["ControlServer"]
