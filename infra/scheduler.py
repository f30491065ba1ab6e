"""Background triggers for the daily cycle, the daily summary and state resync."""

from __future__ import annotations

import logging
import threading
from datetime import datetime, time as time_cls, timedelta
from typing import Callable, Optional, Sequence
from zoneinfo import ZoneInfo

logger = logging.getLogger(__name__)


def parse_daily_time(value: str) -> time_cls:
    """Parse "HH:MM" into a time."""
    try:
        hour_str, minute_str = value.strip().split(":")
        return time_cls(hour=int(hour_str), minute=int(minute_str))
    except (AttributeError, ValueError) as exc:
        raise ValueError(f"Invalid daily time {value!r}; expected HH:MM") from exc


class DailyTrigger:
    """
    Fire ``action`` once per day at ``at`` (local to ``timezone``) on the given weekdays.

    The action runs on the trigger's own daemon thread; exceptions are logged
    and the trigger keeps going.
    """

    def __init__(
        self,
        name: str,
        at: str,
        action: Callable[[], object],
        weekdays: Sequence[int] = (0, 1, 2, 3, 4),
        timezone: str = "America/New_York",
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.name = name
        self.at = parse_daily_time(at)
        self.action = action
        self.weekdays = tuple(weekdays)
        self.tz = ZoneInfo(timezone)
        self._clock = clock or (lambda: datetime.now(self.tz))
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def next_run(self, now: Optional[datetime] = None) -> datetime:
        local = (now or self._clock()).astimezone(self.tz)
        for offset in range(0, 8):
            day = (local + timedelta(days=offset)).date()
            candidate = datetime.combine(day, self.at, tzinfo=self.tz)
            if candidate.weekday() in self.weekdays and candidate > local:
                return candidate
        raise ValueError(f"Trigger {self.name} has no weekdays")

    def start(self) -> None:
        if self._thread:
            return
        self._thread = threading.Thread(target=self._loop, name=f"DailyTrigger-{self.name}", daemon=True)
        self._thread.start()
        logger.info(f"Daily trigger {self.name} scheduled for {self.next_run().isoformat()}")

    def stop(self) -> None:
        self._stop_event.set()
        if self._thread:
            self._thread.join(timeout=5)
        self._thread = None

    def _loop(self) -> None:
        while not self._stop_event.is_set():
            now = self._clock()
            delay = max(0.0, (self.next_run(now) - now.astimezone(self.tz)).total_seconds())
            if self._stop_event.wait(delay):
                return
            try:
                self.action()
            except Exception:
                logger.exception(f"Daily trigger {self.name} failed")


class PeriodicTask:
    """Run ``action`` every ``interval_seconds`` on a daemon thread until stopped."""

    def __init__(self, name: str, interval_seconds: float, action: Callable[[], object]):
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        self.name = name
        self.interval_seconds = float(interval_seconds)
        self.action = action
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def start(self) -> None:
        if self._thread:
            return
        self._thread = threading.Thread(target=self._loop, name=f"PeriodicTask-{self.name}", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._stop_event.set()
        if self._thread:
            self._thread.join(timeout=5)
        self._thread = None

    def _loop(self) -> None:
        while not self._stop_event.wait(self.interval_seconds):
            try:
                self.action()
            except Exception:
                logger.exception(f"Periodic task {self.name} failed")


__all__ = ["DailyTrigger", "PeriodicTask", "parse_daily_time"]
