"""
Rate/Cost Governor for the metered decision service

Caps daily calls and estimated spend on the LLM planner and enforces a
minimum spacing between calls.

- Daily counters reset when the calendar date of "now" differs from the date
  of the last request (no background timer).
- ``evaluate()`` returns a GovernorDecision. ``check_and_throttle()`` raises
  CostLimitExceeded on a cap breach; otherwise it reserves the next request
  slot under the lock and sleeps off the interval.
- ``track_usage()`` is called after every successful call and warns once per
  day per counter when usage reaches the warning threshold (80% by default).
"""
import logging
import time
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from threading import Lock
from typing import Callable, Dict, Mapping, Optional

from core.exceptions import CostLimitExceeded

logger = logging.getLogger(__name__)


def _local_now() -> datetime:
    return datetime.now().astimezone()


@dataclass
class UsageCounter:
    """Per-day usage of the metered service"""
    day: Optional[date] = None
    requests: int = 0
    cost_usd: float = 0.0
    tokens: int = 0
    last_request_at: Optional[datetime] = None
    warned_requests: bool = False
    warned_cost: bool = False

    def reset(self, day: date) -> None:
        self.day = day
        self.requests = 0
        self.cost_usd = 0.0
        self.tokens = 0
        self.warned_requests = False
        self.warned_cost = False


@dataclass
class GovernorDecision:
    """Whether a call may proceed now, after a wait, or not at all today"""
    allowed: bool
    wait_seconds: float = 0.0
    reason: Optional[str] = None


class CostGovernor:
    """
    Daily request/cost caps plus minimum inter-request interval.

    Args:
        daily_request_limit: Max calls per calendar day
        max_daily_cost_usd: Max estimated spend per calendar day
        min_request_interval: Seconds required between consecutive calls
        cost_per_1k_tokens: Blended USD price per 1k tokens (input + output)
        warn_threshold: Fraction of a cap that triggers the one-time warning
        clock: Returns the current timezone-aware datetime
        sleep: Blocking sleep used for throttling
        metrics: Optional MetricsRecorder for utilization gauges
    """

    def __init__(
        self,
        daily_request_limit: int = 50,
        max_daily_cost_usd: float = 5.0,
        min_request_interval: float = 1.0,
        cost_per_1k_tokens: float = 0.003,
        warn_threshold: float = 0.8,
        clock: Optional[Callable[[], datetime]] = None,
        sleep: Callable[[float], None] = time.sleep,
        metrics=None,
    ):
        if daily_request_limit <= 0:
            raise ValueError("daily_request_limit must be positive")
        if max_daily_cost_usd <= 0:
            raise ValueError("max_daily_cost_usd must be positive")
        self.daily_request_limit = int(daily_request_limit)
        self.max_daily_cost_usd = float(max_daily_cost_usd)
        self.min_request_interval = max(0.0, float(min_request_interval))
        self.cost_per_1k_tokens = float(cost_per_1k_tokens)
        self.warn_threshold = float(warn_threshold)
        self._clock = clock or _local_now
        self._sleep = sleep
        self._metrics = metrics
        self._usage = UsageCounter()
        self._last_slot_at: Optional[datetime] = None
        self._lock = Lock()

        logger.info(
            f"Initialized CostGovernor: {self.daily_request_limit} req/day, "
            f"${self.max_daily_cost_usd:.2f}/day, interval={self.min_request_interval}s"
        )

    def _rollover(self, now: datetime) -> None:
        """Reset counters if the calendar day differs from the last request's day."""
        usage = self._usage
        last = usage.last_request_at
        if usage.day is None:
            usage.reset(now.date())
        elif now.date() != (last.date() if last is not None else usage.day):
            logger.info(
                f"New day {now.date()}: resetting governor usage "
                f"({usage.requests} requests, ${usage.cost_usd:.4f} on {usage.day})"
            )
            usage.reset(now.date())

    def evaluate(self) -> GovernorDecision:
        """Decide whether a call may go ahead, without blocking or reserving a slot."""
        with self._lock:
            return self._decide(self._clock())

    def _decide(self, now: datetime) -> GovernorDecision:
        self._rollover(now)
        usage = self._usage

        if usage.requests >= self.daily_request_limit:
            return GovernorDecision(
                allowed=False,
                reason=f"Daily request limit reached ({usage.requests}/{self.daily_request_limit})",
            )
        if usage.cost_usd >= self.max_daily_cost_usd:
            return GovernorDecision(
                allowed=False,
                reason=f"Daily cost limit reached (${usage.cost_usd:.4f}/${self.max_daily_cost_usd:.2f})",
            )

        wait = 0.0
        anchors = [t for t in (usage.last_request_at, self._last_slot_at) if t is not None]
        if anchors and self.min_request_interval > 0:
            elapsed = (now - max(anchors)).total_seconds()
            wait = max(0.0, self.min_request_interval - elapsed)
        return GovernorDecision(allowed=True, wait_seconds=wait)

    def check_and_throttle(self) -> float:
        """
        Gate a metered call.

        Returns:
            Seconds spent waiting for the minimum interval

        Raises:
            CostLimitExceeded: if either daily cap is reached
        """
        with self._lock:
            now = self._clock()
            decision = self._decide(now)
            if decision.allowed:
                # Reserve the slot before sleeping; track_usage may never follow
                self._last_slot_at = now + timedelta(seconds=decision.wait_seconds)
            requests, cost_usd = self._usage.requests, self._usage.cost_usd

        if not decision.allowed:
            logger.error(f"Decision service call blocked: {decision.reason}")
            raise CostLimitExceeded(
                decision.reason or "Daily limit reached",
                requests=requests,
                cost_usd=cost_usd,
            )

        # Sleep outside lock
        if decision.wait_seconds > 0:
            logger.debug(f"Throttling decision service call for {decision.wait_seconds:.2f}s")
            self._sleep(decision.wait_seconds)
        return decision.wait_seconds

    def track_usage(self, token_counts: Optional[Mapping[str, int]] = None) -> UsageCounter:
        """
        Record one successful call and its token usage.

        Args:
            token_counts: Mapping with ``input_tokens`` / ``output_tokens``
                (``prompt_tokens`` / ``completion_tokens`` also accepted)
        """
        token_counts = token_counts or {}
        tokens = int(token_counts.get("input_tokens", token_counts.get("prompt_tokens", 0)) or 0)
        tokens += int(token_counts.get("output_tokens", token_counts.get("completion_tokens", 0)) or 0)
        cost = tokens / 1000.0 * self.cost_per_1k_tokens

        with self._lock:
            now = self._clock()
            self._rollover(now)
            usage = self._usage
            usage.requests += 1
            usage.tokens += tokens
            usage.cost_usd += cost
            usage.last_request_at = now

            request_ratio = usage.requests / self.daily_request_limit
            cost_ratio = usage.cost_usd / self.max_daily_cost_usd
            warn_requests = request_ratio >= self.warn_threshold and not usage.warned_requests
            warn_cost = cost_ratio >= self.warn_threshold and not usage.warned_cost
            usage.warned_requests = usage.warned_requests or warn_requests
            usage.warned_cost = usage.warned_cost or warn_cost
            snapshot = UsageCounter(**usage.__dict__)

        if warn_requests:
            logger.warning(
                f"Decision service requests at {request_ratio:.0%} of daily limit "
                f"({snapshot.requests}/{self.daily_request_limit})"
            )
        if warn_cost:
            logger.warning(
                f"Decision service cost at {cost_ratio:.0%} of daily limit "
                f"(${snapshot.cost_usd:.4f}/${self.max_daily_cost_usd:.2f})"
            )
        if self._metrics is not None:
            self._metrics.record_governor_usage(request_ratio, cost_ratio)
        return snapshot

    def usage(self) -> Dict[str, object]:
        """Current counters for status endpoints"""
        with self._lock:
            self._rollover(self._clock())
            usage = self._usage
            return {
                "day": usage.day.isoformat() if usage.day else None,
                "requests": usage.requests,
                "daily_request_limit": self.daily_request_limit,
                "cost_usd": round(usage.cost_usd, 6),
                "max_daily_cost_usd": self.max_daily_cost_usd,
                "tokens": usage.tokens,
                "last_request_at": usage.last_request_at.isoformat() if usage.last_request_at else None,
            }
