"""
ada-trader Strategy: Breakout Filter

Scores each candidate on how likely it is to follow through on its expected
move and removes candidates below a hard conviction threshold.

Five sub-scores, each in [0, 1]:
- volume_surge: current vs average volume
- price_momentum: direction and size of the recent price trend
- volatility_breakout: current vs historical volatility
- market_sentiment: plan-wide sentiment indicator
- technical_strength: RSI extremes and moving-average alignment

Missing or partial data yields a neutral 0.5 for the affected sub-score.

Market data layout (per symbol, either at ``market_data["symbols"][SYM]`` or
directly at ``market_data[SYM]``)::

    {"current_volume": ..., "avg_volume": ..., "recent_prices": [...],
     "volatility": ..., "historical_volatility": ..., "indicators": {...}}

plus plan-wide ``market_sentiment`` and ``indicators`` keys.
"""

import logging
import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence

from core.models import TradeCandidate
from strategy.signals import clamp

logger = logging.getLogger(__name__)

NEUTRAL = 0.5
DEFAULT_THRESHOLD = 0.4
DEFAULT_WEIGHTS: Dict[str, float] = {
    "volume_surge": 0.25,
    "price_momentum": 0.25,
    "volatility_breakout": 0.20,
    "market_sentiment": 0.15,
    "technical_strength": 0.15,
}
COMPONENTS = tuple(DEFAULT_WEIGHTS)

_SENTIMENT_WORDS = {
    "bullish": 0.7,
    "positive": 0.7,
    "bearish": 0.3,
    "negative": 0.3,
    "neutral": 0.5,
}

# Alternate spellings accepted from market-data providers
_ALIASES = {
    "current_volume": ("current_volume", "volume"),
    "avg_volume": ("avg_volume", "average_volume"),
    "recent_prices": ("recent_prices", "prices", "price_history"),
    "volatility": ("volatility", "current_volatility"),
    "historical_volatility": ("historical_volatility", "avg_volatility"),
    "rsi": ("rsi", "RSI"),
    "ma20": ("ma20", "MA20", "sma20"),
    "ma50": ("ma50", "MA50", "sma50"),
}


@dataclass
class BreakoutScore:
    """Breakout evaluation for one candidate"""
    symbol: str
    probability: float
    should_filter: bool
    component_scores: Dict[str, float] = field(default_factory=dict)


@dataclass
class FilterResult:
    """Outcome of filtering a batch of candidates"""
    passed: List[TradeCandidate]
    filtered_out_count: int
    scores: List[BreakoutScore] = field(default_factory=list)


def _lookup(data: Mapping[str, Any], name: str) -> Optional[float]:
    for key in _ALIASES.get(name, (name,)):
        value = data.get(key)
        if value is None:
            continue
        try:
            number = float(value)
        except (TypeError, ValueError):
            continue
        if math.isfinite(number):
            return number
    return None


def symbol_data(market_data: Optional[Mapping[str, Any]], symbol: str) -> Dict[str, Any]:
    """Per-symbol indicator block, or an empty dict when absent."""
    if not market_data:
        return {}
    symbols = market_data.get("symbols")
    if isinstance(symbols, Mapping) and isinstance(symbols.get(symbol), Mapping):
        return dict(symbols[symbol])
    block = market_data.get(symbol)
    return dict(block) if isinstance(block, Mapping) else {}


class BreakoutFilter:
    """
    Weighted breakout-probability filter.

    Args:
        threshold: Candidates scoring strictly below this are removed
        weights: Sub-score weights, must cover all five components and sum to 1
        high_confidence_boost: Added to the probability when confidence exceeds
            ``high_confidence_level``; 0 disables
    """

    def __init__(
        self,
        threshold: float = DEFAULT_THRESHOLD,
        weights: Optional[Mapping[str, float]] = None,
        high_confidence_boost: float = 0.1,
        high_confidence_level: float = 0.8,
    ):
        weights = dict(weights or DEFAULT_WEIGHTS)
        missing = [name for name in COMPONENTS if name not in weights]
        if missing:
            raise ValueError(f"Breakout weights missing components: {missing}")
        unknown = [name for name in weights if name not in COMPONENTS]
        if unknown:
            raise ValueError(f"Unknown breakout weight components: {unknown}")
        if not math.isclose(sum(weights.values()), 1.0, abs_tol=1e-6):
            raise ValueError(f"Breakout weights must sum to 1.0, got {sum(weights.values()):.4f}")
        if not 0.0 <= threshold <= 1.0:
            raise ValueError(f"threshold must be within [0, 1], got {threshold}")

        self.threshold = float(threshold)
        self.weights = weights
        self.high_confidence_boost = float(high_confidence_boost)
        self.high_confidence_level = float(high_confidence_level)

    # ------------------------------------------------------------------
    # Sub-scores
    # ------------------------------------------------------------------

    @staticmethod
    def volume_surge(data: Mapping[str, Any]) -> float:
        current = _lookup(data, "current_volume")
        average = _lookup(data, "avg_volume")
        if current is None or average is None or average <= 0:
            return NEUTRAL
        ratio = current / average
        # 0.5x average -> 0, 2x average -> 1
        return clamp((ratio - 0.5) / 1.5)

    @staticmethod
    def price_momentum(data: Mapping[str, Any], action: str) -> float:
        series = next((data[k] for k in _ALIASES["recent_prices"] if data.get(k) is not None), None)
        if isinstance(series, (str, bytes)) or not isinstance(series, Sequence):
            return NEUTRAL
        values = []
        for item in series:
            try:
                values.append(float(item))
            except (TypeError, ValueError):
                continue
        if len(values) < 2 or values[0] <= 0:
            return NEUTRAL
        change = (values[-1] - values[0]) / values[0]
        directional = change if action == "BUY" else -change
        # +/-25% move saturates the score
        return clamp(NEUTRAL + directional * 2.0)

    @staticmethod
    def volatility_breakout(data: Mapping[str, Any]) -> float:
        current = _lookup(data, "volatility")
        historical = _lookup(data, "historical_volatility")
        if current is None or historical is None or historical <= 0:
            return NEUTRAL
        ratio = current / historical
        # 0.8x historical -> 0, 1.2x historical -> 1
        return clamp((ratio - 0.8) / 0.4)

    @staticmethod
    def market_sentiment(market_data: Optional[Mapping[str, Any]]) -> float:
        if not market_data:
            return NEUTRAL
        sentiment = market_data.get("market_sentiment")
        if isinstance(sentiment, str):
            word = sentiment.strip().lower()
            if word in _SENTIMENT_WORDS:
                return _SENTIMENT_WORDS[word]
        elif isinstance(sentiment, (int, float)) and math.isfinite(sentiment):
            return clamp(float(sentiment))

        indicators = market_data.get("indicators") or {}
        if isinstance(indicators, Mapping) and (
            indicators.get("congress_trading") or indicators.get("insider_trading")
        ):
            return 0.6
        return NEUTRAL

    @staticmethod
    def technical_strength(
        candidate: TradeCandidate,
        data: Mapping[str, Any],
        market_data: Optional[Mapping[str, Any]],
    ) -> float:
        indicators: Dict[str, Any] = {}
        if market_data and isinstance(market_data.get("indicators"), Mapping):
            indicators.update(market_data["indicators"])
        if isinstance(data.get("indicators"), Mapping):
            indicators.update(data["indicators"])
        if not indicators:
            return NEUTRAL

        score = clamp(candidate.confidence)
        used = False

        rsi = _lookup(indicators, "rsi")
        if rsi is not None:
            used = True
            if (candidate.is_buy and rsi < 30) or (not candidate.is_buy and rsi > 70):
                score = max(score, 0.8)

        ma20 = _lookup(indicators, "ma20")
        ma50 = _lookup(indicators, "ma50")
        if ma20 is not None and ma50 is not None:
            used = True
            aligned = ma20 > ma50 if candidate.is_buy else ma20 < ma50
            score = (score + (0.7 if aligned else 0.3)) / 2.0

        return clamp(score) if used else NEUTRAL

    # ------------------------------------------------------------------
    # Scoring
    # ------------------------------------------------------------------

    def combine(self, component_scores: Mapping[str, float], confidence: float = 0.0) -> float:
        """Weighted average of sub-scores plus the optional high-confidence boost."""
        probability = sum(
            self.weights[name] * clamp(float(component_scores.get(name, NEUTRAL)))
            for name in COMPONENTS
        )
        if self.high_confidence_boost and confidence > self.high_confidence_level:
            probability += self.high_confidence_boost
        return clamp(probability)

    def score(self, candidate: TradeCandidate, market_data: Optional[Mapping[str, Any]]) -> BreakoutScore:
        data = symbol_data(market_data, candidate.symbol)
        components = {
            "volume_surge": self.volume_surge(data),
            "price_momentum": self.price_momentum(data, candidate.action),
            "volatility_breakout": self.volatility_breakout(data),
            "market_sentiment": self.market_sentiment(market_data),
            "technical_strength": self.technical_strength(candidate, data, market_data),
        }
        probability = self.combine(components, candidate.confidence)
        return BreakoutScore(
            symbol=candidate.symbol,
            probability=probability,
            should_filter=probability < self.threshold,
            component_scores=components,
        )

    def filter_trades(
        self,
        candidates: Sequence[TradeCandidate],
        market_data: Optional[Mapping[str, Any]],
    ) -> FilterResult:
        """Score every candidate and keep those at or above the threshold, in order."""
        passed: List[TradeCandidate] = []
        scores: List[BreakoutScore] = []
        for candidate in candidates:
            result = self.score(candidate, market_data)
            scores.append(result)
            if result.should_filter:
                logger.info(
                    f"Filtered {candidate.symbol} {candidate.action}: breakout probability "
                    f"{result.probability:.1%} < {self.threshold:.0%}"
                )
                continue
            passed.append(candidate)

        filtered_out = len(candidates) - len(passed)
        logger.info(f"Breakout filter: {len(passed)}/{len(candidates)} passed, {filtered_out} filtered")
        return FilterResult(passed=passed, filtered_out_count=filtered_out, scores=scores)
