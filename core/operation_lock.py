"""
Operation Lock Manager - Prevent Duplicate Control Operations

Named, non-blocking mutual exclusion for control operations such as
"agent-pause", "agent-resume" and "agent-shutdown". A second request for a
busy key fails immediately instead of queueing behind the first.

Usage:
    locks = OperationLockManager()
    locks.with_lock("agent-pause", agent.pause)          # raises ConcurrencyError if busy
    outcome = locks.try_run("agent-pause", agent.pause)  # returns LockOutcome instead
"""

import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from core.exceptions import ConcurrencyError

logger = logging.getLogger(__name__)


@dataclass
class LockOutcome:
    """Result of ``try_run``: either the operation's value, busy, or its error"""
    key: str
    acquired: bool
    value: Any = None
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.acquired and self.error is None


class OperationLockManager:
    """Thread-safe registry of in-flight operation keys."""

    def __init__(self):
        self._guard = threading.Lock()
        self._active: Dict[str, float] = {}  # key -> time.monotonic() at acquire

    def acquire(self, key: str) -> bool:
        """Register ``key``; False when it is already in flight."""
        with self._guard:
            if key in self._active:
                return False
            self._active[key] = time.monotonic()
            return True

    def release(self, key: str) -> None:
        with self._guard:
            started = self._active.pop(key, None)
        if started is not None:
            logger.debug(f"Released operation lock {key} after {time.monotonic() - started:.3f}s")

    def is_locked(self, key: str) -> bool:
        with self._guard:
            return key in self._active

    def active_keys(self) -> List[str]:
        with self._guard:
            return sorted(self._active)

    def with_lock(self, key: str, operation: Callable[..., Any], *args, **kwargs) -> Any:
        """
        Run ``operation`` while holding ``key``.

        Raises:
            ConcurrencyError: immediately if ``key`` is already held; the
                operation is not executed
        """
        if not self.acquire(key):
            logger.warning(f"Rejected concurrent operation {key}")
            raise ConcurrencyError(key)
        try:
            return operation(*args, **kwargs)
        finally:
            self.release(key)

    def try_run(self, key: str, operation: Callable[..., Any], *args, **kwargs) -> LockOutcome:
        """Like ``with_lock`` but reports busy keys and failures as a LockOutcome."""
        try:
            value = self.with_lock(key, operation, *args, **kwargs)
        except ConcurrencyError:
            return LockOutcome(key=key, acquired=False)
        except Exception as exc:
            logger.error(f"Operation {key} failed: {exc}")
            return LockOutcome(key=key, acquired=True, error=exc)
        return LockOutcome(key=key, acquired=True, value=value)
