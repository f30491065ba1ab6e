"""
ada-trader Strategy: Strategy Enhancer

Turns a raw TradePlan into an execution-ready plan:

    signal normalization -> Beta-CDF sizing -> breakout filter -> exit plan

Sizing always precedes filtering and only survivors receive an exit plan.
Per-candidate problems (zero shares, invalid exit plan) drop that candidate
and never abort the batch.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from core.exceptions import DEFAULT_CRITICAL_KEYWORDS, ValidationError, is_critical_error
from core.models import AgentState, ExecutedTrade, TradeCandidate, TradePlan
from strategy.breakout_filter import BreakoutFilter, symbol_data
from strategy.exit_plan import ExitPlan, ExitPlanBuilder
from strategy.position_sizing import PositionSizer, PositionSizingResult
from strategy.signals import signal_strength

logger = logging.getLogger(__name__)

LOW_CONFIDENCE_WARNING = 0.6
SMALL_ACCOUNT_WARNING = 10_000.0


@dataclass
class EnhancedTrade:
    """A surviving candidate with sizing, breakout score and exit plan attached"""
    candidate: TradeCandidate
    signal_strength: float
    position_percentage: float
    beta_cdf_value: float
    enhanced_quantity: int
    original_quantity: int
    breakout_probability: float
    filter_passed: bool
    risk_adjusted: bool
    exit_plan: ExitPlan
    component_scores: Dict[str, float] = field(default_factory=dict)

    @property
    def symbol(self) -> str:
        return self.candidate.symbol

    @property
    def action(self) -> str:
        return self.candidate.action

    @property
    def price_target(self) -> float:
        return self.candidate.price_target

    @property
    def position_value(self) -> float:
        return self.enhanced_quantity * self.candidate.price_target

    def to_dict(self) -> Dict[str, Any]:
        payload = self.candidate.to_dict()
        payload.update({
            "signal_strength": self.signal_strength,
            "position_percentage": self.position_percentage,
            "beta_cdf_value": self.beta_cdf_value,
            "enhanced_quantity": self.enhanced_quantity,
            "original_quantity": self.original_quantity,
            "breakout_probability": self.breakout_probability,
            "filter_passed": self.filter_passed,
            "risk_adjusted": self.risk_adjusted,
            "exit_plan": self.exit_plan.to_dict(),
            "component_scores": dict(self.component_scores),
        })
        return payload


@dataclass
class PlanMetrics:
    """Plan-level aggregates; averages are over surviving trades"""
    original_trade_count: int
    filtered_trade_count: int
    filtered_out_count: int
    dropped_count: int
    average_signal_strength: float
    average_breakout_probability: float
    strategy_confidence: float
    total_position_percentage: float
    risk_reduction_factor: float

    def to_dict(self) -> Dict[str, Any]:
        return dict(self.__dict__)


@dataclass
class EnhancedPlan:
    """Execution-ready plan produced by ``StrategyEnhancer.enhance``"""
    plan: TradePlan
    trades: List[EnhancedTrade]
    metrics: PlanMetrics
    total_risk_exposure: float
    rejections: List[Tuple[str, str]] = field(default_factory=list)  # (symbol, reason)

    def to_dict(self) -> Dict[str, Any]:
        payload = self.plan.to_dict()
        payload.update({
            "trades": [trade.to_dict() for trade in self.trades],
            "original_trades": [trade.to_dict() for trade in self.plan.trades],
            "total_risk_exposure": self.total_risk_exposure,
            "metrics": self.metrics.to_dict(),
            "rejections": [{"symbol": s, "reason": r} for s, r in self.rejections],
        })
        return payload


@dataclass
class ExecutionSummary:
    trades_planned: int
    trades_filtered: int
    trades_executed: int
    trades_successful: int
    total_position_value: float
    risk_exposure_percentage: float
    strategy_effectiveness: float


@dataclass
class ExecutionResult:
    """Per-trade outcomes of ``StrategyEnhancer.execute``"""
    executed_trades: List[ExecutedTrade]
    summary: ExecutionSummary
    skipped_reason: Optional[str] = None
    critical_error: Optional[BaseException] = None  # stopped the batch; trades before it still count

    @property
    def successful_trades(self) -> List[ExecutedTrade]:
        return [trade for trade in self.executed_trades if trade.succeeded]


@dataclass
class PlanValidation:
    valid: bool
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)


class StrategyEnhancer:
    """
    Orchestrates normalization, sizing, filtering and exit planning.

    Collaborating components are injected so their parameters come from config.
    """

    def __init__(
        self,
        sizer: Optional[PositionSizer] = None,
        breakout_filter: Optional[BreakoutFilter] = None,
        exit_builder: Optional[ExitPlanBuilder] = None,
        confidence_floor: float = 0.0,
        critical_keywords: Sequence[str] = DEFAULT_CRITICAL_KEYWORDS,
    ):
        self.sizer = sizer or PositionSizer()
        self.breakout_filter = breakout_filter or BreakoutFilter()
        self.exit_builder = exit_builder or ExitPlanBuilder()
        self.confidence_floor = confidence_floor
        self.critical_keywords = tuple(critical_keywords)

    def enhance(
        self,
        trade_plan: TradePlan,
        market_data: Optional[Mapping[str, Any]],
        agent_state: AgentState,
    ) -> EnhancedPlan:
        """
        Produce an enhanced plan from ``trade_plan``.

        Args:
            trade_plan: Raw plan from the planning collaborator
            market_data: Symbol-level indicators plus plan-wide sentiment
            agent_state: Snapshot of agent state (balance is read from it)

        Returns:
            EnhancedPlan with survivors in their original order
        """
        balance = float(agent_state.account_balance)
        rejections: List[Tuple[str, str]] = []

        # Step 1-2: normalize and size
        sized: List[Tuple[TradeCandidate, PositionSizingResult]] = []
        for candidate in trade_plan.trades:
            strength = signal_strength(candidate.confidence, self.confidence_floor)
            try:
                sizing = self.sizer.size(strength, balance, candidate.price_target, candidate)
                if not sizing.is_tradeable:
                    raise ValidationError(
                        f"Computed position of {sizing.position_size_shares} shares "
                        f"(fraction={sizing.position_fraction:.4f}, balance={balance:.2f})",
                        symbol=candidate.symbol,
                    )
            except ValidationError as exc:
                logger.warning(f"Dropping {candidate.symbol}: {exc}")
                rejections.append((candidate.symbol, f"sizing: {exc}"))
                continue
            sized.append((candidate, sizing))
        dropped = len(trade_plan.trades) - len(sized)

        # Step 3: breakout filter
        filter_result = self.breakout_filter.filter_trades([c for c, _ in sized], market_data)
        for (candidate, _), score in zip(sized, filter_result.scores):
            if score.should_filter:
                rejections.append((candidate.symbol, f"breakout: {score.probability:.2f} < {self.breakout_filter.threshold:.2f}"))

        # Step 4: exit plans for survivors only
        enhanced: List[EnhancedTrade] = []
        for (candidate, sizing), score in zip(sized, filter_result.scores):
            if score.should_filter:
                continue
            try:
                exit_plan = self.exit_builder.build(candidate, quantity=sizing.position_size_shares)
            except ValidationError as exc:
                logger.warning(f"Dropping {candidate.symbol}: {exc}")
                rejections.append((candidate.symbol, f"exit plan: {exc}"))
                dropped += 1
                continue
            enhanced.append(EnhancedTrade(
                candidate=candidate,
                signal_strength=sizing.signal_strength,
                position_percentage=sizing.position_fraction,
                beta_cdf_value=sizing.beta_cdf_value,
                enhanced_quantity=sizing.position_size_shares,
                original_quantity=candidate.quantity,
                breakout_probability=score.probability,
                filter_passed=True,
                risk_adjusted=sizing.position_size_shares != candidate.quantity,
                exit_plan=exit_plan,
                component_scores=dict(score.component_scores),
            ))

        metrics = self._metrics(trade_plan, enhanced, filter_result.filtered_out_count, dropped)
        exposure = sum(t.position_value for t in enhanced) / balance if balance > 0 else 0.0

        logger.info(
            f"Enhanced plan {trade_plan.id}: {metrics.original_trade_count} candidates -> "
            f"{metrics.filtered_trade_count} trades (filtered={metrics.filtered_out_count}, "
            f"dropped={metrics.dropped_count}), exposure={exposure:.2%}"
        )
        return EnhancedPlan(
            plan=trade_plan,
            trades=enhanced,
            metrics=metrics,
            total_risk_exposure=exposure,
            rejections=rejections,
        )

    @staticmethod
    def _metrics(
        trade_plan: TradePlan,
        enhanced: List[EnhancedTrade],
        filtered_out: int,
        dropped: int,
    ) -> PlanMetrics:
        original = len(trade_plan.trades)
        surviving = len(enhanced)
        if surviving:
            avg_signal = sum(t.signal_strength for t in enhanced) / surviving
            avg_breakout = sum(t.breakout_probability for t in enhanced) / surviving
        else:
            avg_signal = avg_breakout = 0.0
        return PlanMetrics(
            original_trade_count=original,
            filtered_trade_count=surviving,
            filtered_out_count=filtered_out,
            dropped_count=dropped,
            average_signal_strength=avg_signal,
            average_breakout_probability=avg_breakout,
            strategy_confidence=(avg_signal + avg_breakout) / 2.0,
            total_position_percentage=sum(t.position_percentage for t in enhanced),
            risk_reduction_factor=1.0 - surviving / original if original else 0.0,
        )

    def execute(self, enhanced_plan: EnhancedPlan, trading, agent_state: AgentState) -> ExecutionResult:
        """
        Submit surviving trades one at a time, in plan order.

        A failed trade is recorded and the batch continues. An error classified
        as critical stops the batch: the failing trade is recorded as failed,
        the remaining trades are not submitted, and the error is returned in
        ``critical_error`` alongside the trades already filled.
        """
        executed: List[ExecutedTrade] = []
        skipped_reason = None
        critical_error = None

        if agent_state.is_paused:
            skipped_reason = "agent_paused"
            logger.warning("Agent is paused; skipping execution")
        else:
            for index, trade in enumerate(enhanced_plan.trades):
                try:
                    executed.append(self._execute_one(trade, trading))
                except Exception as exc:
                    if not is_critical_error(exc, self.critical_keywords):
                        raise
                    remaining = len(enhanced_plan.trades) - index - 1
                    logger.critical(
                        f"Critical error executing {trade.symbol}; stopping batch "
                        f"({len(executed)} submitted, {remaining} not submitted): {exc}"
                    )
                    executed.append(self._failed(trade, exc))
                    critical_error = exc
                    break

        return ExecutionResult(
            executed_trades=executed,
            summary=self._summarize(enhanced_plan, executed, agent_state),
            skipped_reason=skipped_reason,
            critical_error=critical_error,
        )

    @staticmethod
    def _order_fields(trade: EnhancedTrade) -> Dict[str, Any]:
        candidate = trade.candidate
        return {
            "symbol": candidate.symbol,
            "action": candidate.action,
            "quantity": trade.enhanced_quantity,
            "price_target": candidate.price_target,
            "stop_loss": trade.exit_plan.stop_loss,
            "take_profit": trade.exit_plan.take_profit,
            "confidence": candidate.confidence,
            "reasoning": candidate.reasoning,
        }

    def _failed(self, trade: EnhancedTrade, exc: BaseException) -> ExecutedTrade:
        return ExecutedTrade(**self._order_fields(trade), executed_quantity=0, status="failed", error=str(exc))

    def _execute_one(self, trade: EnhancedTrade, trading) -> ExecutedTrade:
        candidate = trade.candidate
        base = self._order_fields(trade)
        try:
            response = trading.execute(trade) or {}
        except Exception as exc:
            if is_critical_error(exc, self.critical_keywords):
                raise
            logger.error(f"Execution failed for {candidate.symbol}: {exc}")
            return self._failed(trade, exc)

        status = "executed" if response.get("status") == "executed" else "failed"
        filled_price = response.get("filled_price")
        result = ExecutedTrade(
            **base,
            executed_quantity=int(response.get("executed_quantity") or 0) if status == "executed" else 0,
            status=status,
            filled_price=float(filled_price) if filled_price is not None else None,
            order_id=response.get("order_id"),
            error=response.get("error"),
        )
        if result.succeeded:
            logger.info(
                f"Executed {candidate.action} {result.executed_quantity} {candidate.symbol} "
                f"@ {result.filled_price or candidate.price_target:.2f}"
            )
        else:
            logger.warning(f"Trade {candidate.symbol} not executed: {result.error or response}")
        return result

    @staticmethod
    def _summarize(
        enhanced_plan: EnhancedPlan,
        executed: List[ExecutedTrade],
        agent_state: AgentState,
    ) -> ExecutionSummary:
        successful = [t for t in executed if t.succeeded]
        total_value = sum(t.notional for t in successful)
        balance = float(agent_state.account_balance)
        planned = len(enhanced_plan.trades)
        return ExecutionSummary(
            trades_planned=enhanced_plan.metrics.original_trade_count,
            trades_filtered=planned,
            trades_executed=len(executed),
            trades_successful=len(successful),
            total_position_value=total_value,
            risk_exposure_percentage=(total_value / balance * 100.0) if balance > 0 else 0.0,
            strategy_effectiveness=len(successful) / planned if planned else 0.0,
        )

    @staticmethod
    def validate(
        trade_plan: TradePlan,
        market_data: Optional[Mapping[str, Any]],
        agent_state: AgentState,
    ) -> PlanValidation:
        """Pre-flight checks before committing to a run."""
        errors: List[str] = []
        warnings: List[str] = []

        if not trade_plan.trades:
            errors.append("Trade plan has no candidates")
        if agent_state.account_balance <= 0:
            errors.append(f"Account balance must be positive (got {agent_state.account_balance})")
        if not market_data:
            errors.append("Market data is required for breakout filtering")

        if trade_plan.trades:
            avg_conf = sum(t.confidence for t in trade_plan.trades) / len(trade_plan.trades)
            if avg_conf < LOW_CONFIDENCE_WARNING:
                warnings.append(f"Low average confidence ({avg_conf:.2f}); most trades may be filtered")

            if market_data:
                uncovered = [t.symbol for t in trade_plan.trades if not symbol_data(market_data, t.symbol)]
                if uncovered:
                    warnings.append(
                        f"No indicators for {', '.join(sorted(set(uncovered)))}; breakout scores fall back to neutral"
                    )

            seen = set()
            for trade in trade_plan.trades:
                key = (trade.symbol, trade.action)
                if key in seen:
                    warnings.append(f"Duplicate {trade.action} candidate for {trade.symbol}")
                seen.add(key)

        if 0 < agent_state.account_balance < SMALL_ACCOUNT_WARNING:
            warnings.append("Small account balance may limit position sizing")

        return PlanValidation(valid=not errors, errors=errors, warnings=warnings)


def build_thought_chain(
    enhanced_plan: EnhancedPlan,
    execution: Optional[ExecutionResult],
    agent_state: AgentState,
    sizer: Optional[PositionSizer] = None,
    threshold: Optional[float] = None,
) -> List[str]:
    """Ordered, human-readable rationale for one cycle, stored with the trade records."""
    sizer = sizer or PositionSizer()
    metrics = enhanced_plan.metrics
    plan = enhanced_plan.plan
    chain = [
        f"Strategy applied: {agent_state.current_strategy} with Beta-CDF sizing and breakout filter",
        f"Market analysis: {plan.market_analysis or 'n/a'}",
        f"Risk assessment: {plan.risk_assessment or 'n/a'}",
        f"Account balance: ${agent_state.account_balance:,.2f}",
        f"Original trades: {metrics.original_trade_count}",
        f"Trades after filtering: {metrics.filtered_trade_count} "
        f"(breakout filtered {metrics.filtered_out_count}, dropped {metrics.dropped_count})",
    ]
    if execution is not None:
        chain.append(
            f"Trades executed: {execution.summary.trades_successful}/{execution.summary.trades_executed}"
        )
    chain.extend([
        f"Total risk exposure: {enhanced_plan.total_risk_exposure:.2%}",
        f"Average signal strength: {metrics.average_signal_strength:.2%}",
        f"Average breakout probability: {metrics.average_breakout_probability:.2%}",
        f"Strategy confidence: {metrics.strategy_confidence:.2%}",
        f"Beta distribution parameters: a={sizer.alpha}, b={sizer.beta}",
        f"Breakout threshold: {threshold if threshold is not None else 0.4:.0%}",
        f"Position sizing: fraction = {sizer.max_fraction:.0%} x BetaCDF(signal strength)",
    ])
    for symbol, reason in enhanced_plan.rejections:
        chain.append(f"Rejected {symbol}: {reason}")
    for trade in enhanced_plan.trades:
        chain.append(
            f"{trade.action} {trade.enhanced_quantity} {trade.symbol} @ {trade.price_target:.2f} "
            f"(signal {trade.signal_strength:.2f}, breakout {trade.breakout_probability:.2f}, "
            f"stop {trade.exit_plan.stop_loss:.2f}, take-profit {trade.exit_plan.take_profit:.2f}): "
            f"{trade.candidate.reasoning}"
        )
    return chain
