"""
Tests for the breakout filter.

Coverage:
- Each sub-score, including neutral fallbacks on missing data
- Weighted combination and the high-confidence boost
- Batch filtering: order preserved, counts reported
"""

from contextlib import ExitStack
from unittest.mock import patch

import pytest

from strategy.breakout_filter import BreakoutFilter, NEUTRAL, symbol_data
from tests.helpers import make_candidate, strong_market_data
from tests.helpers.stubs import weak_symbol_data


class TestSubScores:
    def test_volume_surge(self):
        assert BreakoutFilter.volume_surge({"current_volume": 2_000, "avg_volume": 1_000}) == pytest.approx(1.0)
        assert BreakoutFilter.volume_surge({"volume": 500, "average_volume": 1_000}) == pytest.approx(0.0)
        assert BreakoutFilter.volume_surge({"current_volume": 1_250, "avg_volume": 1_000}) == pytest.approx(0.5)

    def test_volume_surge_missing(self):
        assert BreakoutFilter.volume_surge({}) == NEUTRAL
        assert BreakoutFilter.volume_surge({"current_volume": 10, "avg_volume": 0}) == NEUTRAL

    def test_price_momentum_direction(self):
        rising = {"recent_prices": [100.0, 110.0]}
        assert BreakoutFilter.price_momentum(rising, "BUY") == pytest.approx(0.7)
        assert BreakoutFilter.price_momentum(rising, "SELL") == pytest.approx(0.3)

    def test_price_momentum_needs_two_prices(self):
        assert BreakoutFilter.price_momentum({"recent_prices": [100.0]}, "BUY") == NEUTRAL
        assert BreakoutFilter.price_momentum({"recent_prices": "100,110"}, "BUY") == NEUTRAL
        assert BreakoutFilter.price_momentum({}, "BUY") == NEUTRAL

    def test_volatility_breakout(self):
        assert BreakoutFilter.volatility_breakout({"volatility": 0.03, "historical_volatility": 0.03}) == pytest.approx(0.5)
        assert BreakoutFilter.volatility_breakout({"volatility": 0.01}) == NEUTRAL

    def test_market_sentiment(self):
        assert BreakoutFilter.market_sentiment({"market_sentiment": "Bullish"}) == pytest.approx(0.7)
        assert BreakoutFilter.market_sentiment({"market_sentiment": 0.9}) == pytest.approx(0.9)
        assert BreakoutFilter.market_sentiment({"indicators": {"insider_trading": True}}) == pytest.approx(0.6)
        assert BreakoutFilter.market_sentiment(None) == NEUTRAL

    def test_technical_strength_rsi_oversold_buy(self):
        candidate = make_candidate(confidence=0.5)
        assert BreakoutFilter.technical_strength(candidate, {"indicators": {"rsi": 25}}, None) == pytest.approx(0.8)

    def test_technical_strength_ma_alignment(self):
        candidate = make_candidate(confidence=0.5)
        aligned = {"indicators": {"ma20": 110, "ma50": 100}}
        against = {"indicators": {"ma20": 90, "ma50": 100}}
        assert BreakoutFilter.technical_strength(candidate, aligned, None) == pytest.approx(0.6)
        assert BreakoutFilter.technical_strength(candidate, against, None) == pytest.approx(0.4)

    def test_technical_strength_without_indicators(self):
        assert BreakoutFilter.technical_strength(make_candidate(), {}, None) == NEUTRAL


class TestScoring:
    def test_combine_uses_weights(self):
        breakout = BreakoutFilter()
        scores = {
            "volume_surge": 0.6,
            "price_momentum": 0.5,
            "volatility_breakout": 0.3,
            "market_sentiment": 0.3,
            "technical_strength": 0.5,
        }
        # 0.25*0.6 + 0.25*0.5 + 0.20*0.3 + 0.15*0.3 + 0.15*0.5
        assert breakout.combine(scores) == pytest.approx(0.455)

    def test_documented_example_passes(self):
        breakout = BreakoutFilter()
        sub_scores = {
            "volume_surge": 0.8,
            "price_momentum": 0.2,
            "volatility_breakout": 0.3,
            "market_sentiment": 0.5,
            "technical_strength": 0.4,
        }
        with ExitStack() as stack:
            for name, value in sub_scores.items():
                stack.enter_context(patch.object(breakout, name, return_value=value))
            result = breakout.score(make_candidate(confidence=0.75), strong_market_data("AAPL"))

        # 0.25*0.8 + 0.25*0.2 + 0.20*0.3 + 0.15*0.5 + 0.15*0.4
        assert result.probability == pytest.approx(0.445)
        assert result.component_scores == sub_scores
        assert not result.should_filter

    @pytest.mark.parametrize("probability,filtered", [(0.4, False), (0.3999, True), (0.4001, False)])
    def test_threshold_is_inclusive(self, probability, filtered):
        breakout = BreakoutFilter()
        with patch.object(breakout, "combine", return_value=probability):
            assert breakout.score(make_candidate(), {}).should_filter is filtered
            result = breakout.filter_trades([make_candidate()], {})
        assert result.filtered_out_count == (1 if filtered else 0)

    def test_high_confidence_boost(self):
        breakout = BreakoutFilter()
        neutral = {name: 0.5 for name in breakout.weights}
        assert breakout.combine(neutral, confidence=0.8) == pytest.approx(0.5)
        assert breakout.combine(neutral, confidence=0.85) == pytest.approx(0.6)
        assert BreakoutFilter(high_confidence_boost=0.0).combine(neutral, confidence=0.95) == pytest.approx(0.5)

    def test_missing_data_is_neutral_and_passes(self):
        result = BreakoutFilter().score(make_candidate(symbol="ZZZ", confidence=0.7), {})
        assert result.probability == pytest.approx(0.5)
        assert set(result.component_scores.values()) == {NEUTRAL}
        assert not result.should_filter

    def test_weak_candidate_is_filtered(self):
        market = {"market_sentiment": "neutral", "symbols": {"AAPL": weak_symbol_data()}}
        result = BreakoutFilter().score(make_candidate(confidence=0.5), market)
        # sentiment 0.15*0.5 + technical 0.15*(0.5+0.3)/2; everything else scores 0
        assert result.probability == pytest.approx(0.135)
        assert result.should_filter

    def test_strong_candidate_passes(self):
        result = BreakoutFilter().score(make_candidate(confidence=0.75), strong_market_data("AAPL"))
        assert result.probability == pytest.approx(0.88375)
        assert not result.should_filter

    def test_probability_bounded(self):
        market = strong_market_data("AAPL", sentiment="bullish")
        result = BreakoutFilter().score(make_candidate(confidence=0.99), market)
        assert result.probability <= 1.0

    @pytest.mark.parametrize("weights", [
        {"volume_surge": 1.0},
        {"volume_surge": 0.5, "price_momentum": 0.5, "volatility_breakout": 0.5,
         "market_sentiment": 0.0, "technical_strength": 0.0},
    ])
    def test_invalid_weights(self, weights):
        with pytest.raises(ValueError):
            BreakoutFilter(weights=weights)


class TestFilterTrades:
    def test_batch_preserves_order_and_counts(self):
        market = strong_market_data("AAPL", "AMZN")
        market["symbols"]["MSFT"] = weak_symbol_data()
        candidates = [
            make_candidate("AAPL"),
            make_candidate("MSFT", confidence=0.5),
            make_candidate("AMZN", confidence=0.6),
        ]
        result = BreakoutFilter().filter_trades(candidates, market)
        assert [c.symbol for c in result.passed] == ["AAPL", "AMZN"]
        assert result.filtered_out_count == 1
        assert [s.symbol for s in result.scores] == ["AAPL", "MSFT", "AMZN"]

    def test_empty_batch(self):
        result = BreakoutFilter().filter_trades([], {})
        assert result.passed == []
        assert result.filtered_out_count == 0


def test_symbol_data_accepts_flat_layout():
    assert symbol_data({"AAPL": {"volume": 1}}, "AAPL") == {"volume": 1}
    assert symbol_data({"symbols": {"AAPL": {"volume": 2}}}, "AAPL") == {"volume": 2}
    assert symbol_data(None, "AAPL") == {}
