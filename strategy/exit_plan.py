"""
ada-trader Strategy: Exit Plan Builder

Attaches a stop-loss and a laddered take-profit schedule to each surviving
trade, and evaluates live prices against that schedule.

Default policy (BUY; SELL is mirrored around the entry price):
- stop-loss at entry -6%
- primary take-profit at entry +10%
- ladder: +10% releases 50%, +15% releases 30%, +20% releases 20%
"""

import logging
import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

from core.exceptions import ValidationError
from core.models import TradeCandidate

logger = logging.getLogger(__name__)

DEFAULT_STOP_LOSS_PCT = 0.06
DEFAULT_LADDER: Tuple[Tuple[float, float], ...] = ((0.10, 0.5), (0.15, 0.3), (0.20, 0.2))
FRACTION_TOLERANCE = 1e-9


@dataclass
class TakeProfitLevel:
    """One rung of the take-profit ladder"""
    trigger_price: float
    exit_fraction: float
    gain_pct: float
    quantity: int = 0
    consumed: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "trigger_price": self.trigger_price,
            "exit_fraction": self.exit_fraction,
            "gain_pct": self.gain_pct,
            "quantity": self.quantity,
            "consumed": self.consumed,
        }


@dataclass
class ExitPlan:
    """Stop-loss and take-profit schedule for one position"""
    symbol: str
    action: str
    entry_price: float
    quantity: int
    stop_loss: float
    take_profit: float
    levels: List[TakeProfitLevel] = field(default_factory=list)
    stopped: bool = False

    @property
    def is_buy(self) -> bool:
        return self.action == "BUY"

    @property
    def active_levels(self) -> List[TakeProfitLevel]:
        return [level for level in self.levels if not level.consumed]

    @property
    def is_closed(self) -> bool:
        return self.stopped or not self.active_levels

    def total_fraction(self) -> float:
        return math.fsum(level.exit_fraction for level in self.levels)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "symbol": self.symbol,
            "action": self.action,
            "entry_price": self.entry_price,
            "quantity": self.quantity,
            "stop_loss": self.stop_loss,
            "take_profit": self.take_profit,
            "levels": [level.to_dict() for level in self.levels],
            "stopped": self.stopped,
        }


@dataclass
class ExitSignal:
    """Result of checking a price against an exit plan"""
    should_exit: bool
    triggered_stop: bool = False
    triggered_takes: List[TakeProfitLevel] = field(default_factory=list)
    exit_quantity: int = 0
    reason: Optional[str] = None


class ExitPlanBuilder:
    """
    Builds and evaluates exit plans.

    Args:
        stop_loss_pct: Adverse move that triggers the full stop
        ladder: Sequence of (gain_pct, exit_fraction) pairs, in increasing gain order
    """

    def __init__(
        self,
        stop_loss_pct: float = DEFAULT_STOP_LOSS_PCT,
        ladder: Optional[Sequence[Tuple[float, float]]] = None,
    ):
        ladder = tuple((float(g), float(f)) for g, f in (ladder or DEFAULT_LADDER))
        if not ladder:
            raise ValueError("Take-profit ladder must have at least one level")
        if not 0.0 < stop_loss_pct < 1.0:
            raise ValueError(f"stop_loss_pct must be within (0, 1), got {stop_loss_pct}")
        self.stop_loss_pct = float(stop_loss_pct)
        self.ladder = ladder

    def build(self, trade: TradeCandidate, quantity: Optional[int] = None) -> ExitPlan:
        """
        Build an exit plan for ``trade`` using its price target as entry.

        Args:
            trade: Candidate to protect
            quantity: Position size to schedule (defaults to the candidate quantity)

        Raises:
            ValidationError: if the resulting plan violates ordering or fraction rules
        """
        entry = float(trade.price_target)
        qty = int(trade.quantity if quantity is None else quantity)
        direction = 1.0 if trade.is_buy else -1.0

        levels = [
            TakeProfitLevel(
                trigger_price=round(entry * (1.0 + direction * gain), 6),
                exit_fraction=fraction,
                gain_pct=gain,
            )
            for gain, fraction in self.ladder
        ]
        self._allocate_quantities(levels, qty)

        plan = ExitPlan(
            symbol=trade.symbol,
            action=trade.action,
            entry_price=entry,
            quantity=qty,
            stop_loss=round(entry * (1.0 - direction * self.stop_loss_pct), 6),
            take_profit=levels[0].trigger_price,
            levels=levels,
        )

        problems = self.validate(plan)
        if problems:
            raise ValidationError(f"Invalid exit plan: {'; '.join(problems)}", symbol=trade.symbol)
        return plan

    @staticmethod
    def _allocate_quantities(levels: List[TakeProfitLevel], quantity: int) -> None:
        """Split ``quantity`` across levels by fraction; the last level takes the remainder."""
        allocated = 0
        for level in levels[:-1]:
            level.quantity = int(math.floor(quantity * level.exit_fraction))
            allocated += level.quantity
        levels[-1].quantity = max(0, quantity - allocated)

    @staticmethod
    def validate(plan: ExitPlan) -> List[str]:
        """Return a list of problems; empty means the plan is valid."""
        problems: List[str] = []
        if plan.quantity <= 0:
            problems.append(f"quantity must be positive (got {plan.quantity})")
        if plan.entry_price <= 0:
            problems.append(f"entry price must be positive (got {plan.entry_price})")
        if not plan.levels:
            problems.append("no take-profit levels")
            return problems

        if not math.isclose(plan.total_fraction(), 1.0, rel_tol=0.0, abs_tol=FRACTION_TOLERANCE):
            problems.append(f"exit fractions sum to {plan.total_fraction():.6f}, expected 1.0")
        if any(not 0.0 < level.exit_fraction <= 1.0 for level in plan.levels):
            problems.append("each exit fraction must be within (0, 1]")

        triggers = [level.trigger_price for level in plan.levels]
        if plan.is_buy:
            if not plan.stop_loss < plan.entry_price < triggers[0]:
                problems.append("BUY requires stop_loss < entry < first take-profit")
            if any(b <= a for a, b in zip(triggers, triggers[1:])):
                problems.append("BUY take-profit triggers must be strictly increasing")
        else:
            if not plan.stop_loss > plan.entry_price > triggers[0]:
                problems.append("SELL requires stop_loss > entry > first take-profit")
            if any(b >= a for a, b in zip(triggers, triggers[1:])):
                problems.append("SELL take-profit triggers must be strictly decreasing")
            if triggers[-1] <= 0:
                problems.append("SELL take-profit triggers must stay above zero")

        if plan.quantity > 0 and sum(level.quantity for level in plan.levels) != plan.quantity:
            problems.append("level quantities do not add up to the position")
        return problems

    @staticmethod
    def check_triggers(plan: ExitPlan, current_price: float, position_qty: int) -> ExitSignal:
        """
        Evaluate ``current_price`` against the plan.

        A stop-loss hit exits the whole remaining position and closes the plan;
        take-profit levels are not evaluated in that case. Crossed take-profit
        levels are marked consumed and never fire again.
        """
        if position_qty <= 0 or plan.is_closed or current_price <= 0:
            return ExitSignal(should_exit=False)

        stop_hit = current_price <= plan.stop_loss if plan.is_buy else current_price >= plan.stop_loss
        if stop_hit:
            plan.stopped = True
            logger.warning(
                f"Stop-loss hit for {plan.symbol}: price={current_price:.4f} stop={plan.stop_loss:.4f}"
            )
            return ExitSignal(
                should_exit=True,
                triggered_stop=True,
                exit_quantity=int(position_qty),
                reason="stop_loss",
            )

        triggered: List[TakeProfitLevel] = []
        for level in plan.active_levels:
            crossed = current_price >= level.trigger_price if plan.is_buy else current_price <= level.trigger_price
            if crossed:
                level.consumed = True
                triggered.append(level)

        if not triggered:
            return ExitSignal(should_exit=False)

        if not plan.active_levels:
            exit_quantity = int(position_qty)
        else:
            exit_quantity = min(int(position_qty), sum(level.quantity for level in triggered))

        logger.info(
            f"Take-profit for {plan.symbol}: {len(triggered)} level(s) at price={current_price:.4f}, "
            f"exiting {exit_quantity}"
        )
        return ExitSignal(
            should_exit=exit_quantity > 0,
            triggered_takes=triggered,
            exit_quantity=exit_quantity,
            reason="take_profit",
        )
