"""
ada-trader Strategy: Position Sizer

Beta-CDF position sizing. Signal strength is pushed through the cumulative
distribution of a Beta(a, b) distribution and scaled by a hard cap on the
fraction of account equity committed to a single trade:

    position_fraction = max_fraction * BetaCDF(signal_strength; a, b)
    shares = floor(account_balance * position_fraction / target_price)

With the default Beta(2, 5) the curve rises steeply through mid-range
strengths and saturates near the cap, so weak signals get small allocations.
"""

import logging
import math
from dataclasses import dataclass
from typing import Optional

from core.exceptions import ValidationError
from core.models import TradeCandidate

logger = logging.getLogger(__name__)

DEFAULT_MAX_FRACTION = 0.10
DEFAULT_ALPHA = 2
DEFAULT_BETA = 5


def beta_cdf(x: float, a: int = DEFAULT_ALPHA, b: int = DEFAULT_BETA) -> float:
    """
    Regularized incomplete beta function I_x(a, b) for integer shapes.

    Uses the binomial identity I_x(a, b) = P(Binomial(a + b - 1, x) >= a),
    which is exact and stable at both endpoints.
    """
    if int(a) != a or int(b) != b or a < 1 or b < 1:
        raise ValueError(f"Beta shape parameters must be positive integers, got a={a} b={b}")
    if math.isnan(x):
        raise ValueError("x must be a number")
    if x <= 0.0:
        return 0.0
    if x >= 1.0:
        return 1.0

    n = int(a) + int(b) - 1
    total = 0.0
    for j in range(int(a), n + 1):
        total += math.comb(n, j) * (x ** j) * ((1.0 - x) ** (n - j))
    return min(1.0, max(0.0, total))


@dataclass
class PositionSizingResult:
    """Outcome of sizing one candidate"""
    signal_strength: float
    beta_cdf_value: float
    position_fraction: float
    position_size_shares: int
    position_value: float

    @property
    def is_tradeable(self) -> bool:
        return self.position_size_shares > 0


class PositionSizer:
    """
    Pure Beta-CDF sizer.

    Args:
        max_fraction: Cap on fraction of equity per trade (default 10%)
        alpha: Beta shape a
        beta: Beta shape b
    """

    def __init__(
        self,
        max_fraction: float = DEFAULT_MAX_FRACTION,
        alpha: int = DEFAULT_ALPHA,
        beta: int = DEFAULT_BETA,
    ):
        if not 0.0 < max_fraction <= 1.0:
            raise ValueError(f"max_fraction must be within (0, 1], got {max_fraction}")
        beta_cdf(0.5, alpha, beta)  # validates shapes
        self.max_fraction = float(max_fraction)
        self.alpha = int(alpha)
        self.beta = int(beta)

    def fraction(self, signal_strength: float) -> float:
        """Fraction of equity for a signal strength, always within [0, max_fraction]."""
        return self.max_fraction * beta_cdf(signal_strength, self.alpha, self.beta)

    def size(
        self,
        signal_strength: float,
        account_balance: float,
        target_price: float,
        candidate: Optional[TradeCandidate] = None,
    ) -> PositionSizingResult:
        """
        Size a position.

        Args:
            signal_strength: Normalized strength in [0, 1]
            account_balance: Account equity in USD
            target_price: Expected entry price per share
            candidate: Optional candidate, only used for log/error context

        Returns:
            PositionSizingResult (shares may be 0, caller decides to drop)

        Raises:
            ValidationError: on out-of-range strength or non-positive price
        """
        symbol = candidate.symbol if candidate else None
        if signal_strength is None or math.isnan(signal_strength) or not 0.0 <= signal_strength <= 1.0:
            raise ValidationError(f"Signal strength must be within [0, 1], got {signal_strength}", symbol=symbol)
        if not math.isfinite(target_price) or target_price <= 0:
            raise ValidationError(f"Target price must be positive, got {target_price}", symbol=symbol)

        cdf_value = beta_cdf(signal_strength, self.alpha, self.beta)
        position_fraction = self.max_fraction * cdf_value
        balance = max(0.0, float(account_balance))
        shares = int(math.floor(balance * position_fraction / target_price))

        logger.debug(
            f"Sized {symbol or '?'}: strength={signal_strength:.3f} cdf={cdf_value:.4f} "
            f"fraction={position_fraction:.4f} shares={shares}"
        )
        return PositionSizingResult(
            signal_strength=signal_strength,
            beta_cdf_value=cdf_value,
            position_fraction=position_fraction,
            position_size_shares=max(0, shares),
            position_value=max(0, shares) * target_price,
        )
