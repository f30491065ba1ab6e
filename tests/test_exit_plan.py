"""
Tests for exit plan construction and trigger evaluation.

Validates:
- -6% stop, +10% primary take-profit, mirrored for SELL
- 50/30/20 ladder with fractions summing to exactly 1.0
- Level quantities add up to the position
- Consumed levels never retrigger; a stop hit closes the plan
"""

import pytest

from core.exceptions import ValidationError
from strategy.exit_plan import ExitPlanBuilder
from tests.helpers import make_candidate


@pytest.fixture
def builder():
    return ExitPlanBuilder()


class TestBuild:
    def test_buy_plan(self, builder):
        plan = builder.build(make_candidate(price_target=100.0, quantity=100))
        assert plan.stop_loss == pytest.approx(94.0)
        assert plan.take_profit == pytest.approx(110.0)
        assert [lvl.trigger_price for lvl in plan.levels] == pytest.approx([110.0, 115.0, 120.0])
        assert [lvl.exit_fraction for lvl in plan.levels] == [0.5, 0.3, 0.2]
        assert [lvl.quantity for lvl in plan.levels] == [50, 30, 20]
        assert plan.total_fraction() == pytest.approx(1.0, abs=1e-12)

    def test_sell_plan_is_mirrored(self, builder):
        plan = builder.build(make_candidate(action="SELL", price_target=100.0, quantity=10))
        assert plan.stop_loss == pytest.approx(106.0)
        assert plan.take_profit == pytest.approx(90.0)
        assert [lvl.trigger_price for lvl in plan.levels] == pytest.approx([90.0, 85.0, 80.0])

    def test_quantity_override_and_remainder(self, builder):
        plan = builder.build(make_candidate(price_target=150.0), quantity=66)
        assert [lvl.quantity for lvl in plan.levels] == [33, 19, 14]
        assert sum(lvl.quantity for lvl in plan.levels) == 66

    def test_zero_quantity_rejected(self, builder):
        with pytest.raises(ValidationError):
            builder.build(make_candidate(), quantity=0)

    def test_custom_ladder(self):
        builder = ExitPlanBuilder(stop_loss_pct=0.05, ladder=[(0.08, 0.6), (0.12, 0.4)])
        plan = builder.build(make_candidate(price_target=50.0, quantity=10))
        assert plan.stop_loss == pytest.approx(47.5)
        assert len(plan.levels) == 2

    def test_bad_fractions_rejected(self):
        builder = ExitPlanBuilder(ladder=[(0.10, 0.5), (0.15, 0.3)])
        with pytest.raises(ValidationError, match="sum"):
            builder.build(make_candidate(quantity=10))

    def test_non_increasing_triggers_rejected(self):
        builder = ExitPlanBuilder(ladder=[(0.15, 0.5), (0.10, 0.5)])
        with pytest.raises(ValidationError, match="increasing"):
            builder.build(make_candidate(quantity=10))


class TestCheckTriggers:
    def test_no_trigger_between_stop_and_first_level(self, builder):
        plan = builder.build(make_candidate(price_target=100.0, quantity=100))
        signal = builder.check_triggers(plan, 105.0, 100)
        assert not signal.should_exit
        assert not signal.triggered_stop

    def test_first_level_triggers_once(self, builder):
        plan = builder.build(make_candidate(price_target=100.0, quantity=100))
        first = builder.check_triggers(plan, 111.0, 100)
        assert first.should_exit
        assert first.exit_quantity == 50
        assert [lvl.gain_pct for lvl in first.triggered_takes] == [0.10]

        again = builder.check_triggers(plan, 111.0, 50)
        assert not again.should_exit
        assert again.triggered_takes == []

    def test_gap_through_several_levels(self, builder):
        plan = builder.build(make_candidate(price_target=100.0, quantity=100))
        signal = builder.check_triggers(plan, 116.0, 100)
        assert len(signal.triggered_takes) == 2
        assert signal.exit_quantity == 80

    def test_last_level_exits_remaining_position(self, builder):
        plan = builder.build(make_candidate(price_target=100.0, quantity=100))
        builder.check_triggers(plan, 116.0, 100)
        signal = builder.check_triggers(plan, 125.0, 23)
        assert signal.exit_quantity == 23
        assert plan.is_closed

    def test_stop_loss_closes_plan(self, builder):
        plan = builder.build(make_candidate(price_target=100.0, quantity=100))
        signal = builder.check_triggers(plan, 93.5, 100)
        assert signal.triggered_stop
        assert signal.exit_quantity == 100
        assert signal.reason == "stop_loss"
        assert plan.is_closed
        assert not builder.check_triggers(plan, 130.0, 100).should_exit

    def test_sell_stop_above_entry(self, builder):
        plan = builder.build(make_candidate(action="SELL", price_target=100.0, quantity=10))
        assert builder.check_triggers(plan, 107.0, 10).triggered_stop

    def test_sell_take_profit_below_entry(self, builder):
        plan = builder.build(make_candidate(action="SELL", price_target=100.0, quantity=10))
        signal = builder.check_triggers(plan, 89.0, 10)
        assert signal.should_exit
        assert signal.exit_quantity == 5
