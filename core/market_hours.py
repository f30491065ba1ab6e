"""
Trading calendar helpers.

Two windows matter:
- the agent's trading window (when a daily cycle may start), weekdays
  06:00-17:00 exchange time by default
- regular market hours (when orders may be sent), 09:30-16:00
"""

from dataclasses import dataclass
from datetime import datetime, time, timedelta
from typing import Optional, Sequence
from zoneinfo import ZoneInfo

DEFAULT_TIMEZONE = "America/New_York"
WEEKDAYS = (0, 1, 2, 3, 4)


@dataclass(frozen=True)
class TimeWindow:
    """Half-open [start, end) window on the listed weekdays in ``timezone``."""
    start: time
    end: time
    weekdays: Sequence[int] = WEEKDAYS
    timezone: str = DEFAULT_TIMEZONE

    @property
    def tz(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)

    def localize(self, now: Optional[datetime] = None) -> datetime:
        if now is None:
            return datetime.now(self.tz)
        if now.tzinfo is None:
            return now.replace(tzinfo=self.tz)
        return now.astimezone(self.tz)

    def contains(self, now: Optional[datetime] = None) -> bool:
        local = self.localize(now)
        return local.weekday() in self.weekdays and self.start <= local.time() < self.end

    def next_open(self, now: Optional[datetime] = None) -> datetime:
        """Next moment the window opens (``now`` itself if already inside)."""
        local = self.localize(now)
        if self.contains(local):
            return local
        for offset in range(0, 8):
            day = (local + timedelta(days=offset)).date()
            candidate = datetime.combine(day, self.start, tzinfo=self.tz)
            if candidate.weekday() in self.weekdays and candidate > local:
                return candidate
        raise ValueError("Window has no weekdays")

    def seconds_until_open(self, now: Optional[datetime] = None) -> float:
        local = self.localize(now)
        return max(0.0, (self.next_open(local) - local).total_seconds())


def trading_window(start_hour: int = 6, end_hour: int = 17, weekdays: Sequence[int] = WEEKDAYS,
                   timezone: str = DEFAULT_TIMEZONE) -> TimeWindow:
    return TimeWindow(start=time(start_hour), end=time(end_hour), weekdays=tuple(weekdays), timezone=timezone)


def market_hours(timezone: str = DEFAULT_TIMEZONE) -> TimeWindow:
    return TimeWindow(start=time(9, 30), end=time(16, 0), weekdays=WEEKDAYS, timezone=timezone)
