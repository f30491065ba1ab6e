"""
AI Planner - LLM-backed planning collaborator.

Produces the daily TradePlan in two metered calls:
1. craft_plan: market snapshot + agent state -> candidate trades
2. refine_predictions: re-score the candidates against the same snapshot

Every call passes through the CostGovernor (check before, track after).
Errors propagate so the workflow can abort or pause the cycle.
"""

import json
import logging
from typing import Any, Dict, Literal, Optional, Tuple

from core.models import AgentState, TradePlan

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = """You are a disciplined equity swing trader running a {strategy} strategy.
Propose at most {max_trades} trades for today's session.

CONSTRAINTS:
- Only trade symbols present in the market snapshot
- action is BUY or SELL; quantity is a positive integer
- confidence is your probability (0-1) that the move follows through
- stop_loss below price_target for BUY, above for SELL

RESPONSE FORMAT (JSON only):
{{
  "market_analysis": "...",
  "risk_assessment": "...",
  "total_risk_exposure": 0.05,
  "trades": [
    {{"symbol": "AAPL", "action": "BUY", "quantity": 10, "price_target": 150.0,
      "stop_loss": 141.0, "take_profit": 165.0, "confidence": 0.75,
      "reasoning": "..."}}
  ]
}}"""


def extract_json(content: str) -> Dict[str, Any]:
    """Parse a JSON object from a model reply, tolerating markdown fences."""
    if "```json" in content:
        content = content.split("```json")[1].split("```")[0]
    elif "```" in content:
        content = content.split("```")[1].split("```")[0]
    try:
        data = json.loads(content)
    except json.JSONDecodeError as exc:
        raise ValueError(f"Planner returned invalid JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise ValueError("Planner response is not a JSON object")
    return data


class LLMPlanner:
    """
    Planning service over the OpenAI or Anthropic SDK.

    Args:
        provider: "openai" or "anthropic"
        model: Model identifier
        api_key: Provider API key
        governor: CostGovernor guarding every call
        timeout_s: Request timeout
        max_tokens: Completion budget per call
        max_trades: Upper bound on candidates per plan
        client: Pre-built SDK client (tests)
    """

    def __init__(
        self,
        provider: Literal["openai", "anthropic"],
        model: str,
        api_key: str,
        governor,
        timeout_s: float = 30.0,
        max_tokens: int = 2000,
        max_trades: int = 5,
        client: Any = None,
    ):
        self.provider = provider
        self.model = model
        self.governor = governor
        self.max_tokens = max_tokens
        self.max_trades = max_trades

        if client is not None:
            self.client = client
        elif provider == "openai":
            import openai
            self.client = openai.OpenAI(api_key=api_key, timeout=timeout_s)
        elif provider == "anthropic":
            import anthropic
            self.client = anthropic.Anthropic(api_key=api_key, timeout=timeout_s)
        else:
            raise ValueError(f"Unknown provider: {provider}")

    def craft_plan(self, market_snapshot: Dict[str, Any], agent_state: AgentState) -> TradePlan:
        prompt = self._build_prompt(market_snapshot, agent_state)
        data = self._call(prompt)
        plan = TradePlan.from_dict(data)
        plan.trades = plan.trades[: self.max_trades]
        logger.info(f"Planner crafted plan {plan.id} with {len(plan.trades)} candidate(s)")
        return plan

    def refine_predictions(
        self,
        plan: TradePlan,
        market_snapshot: Dict[str, Any],
        agent_state: AgentState,
    ) -> TradePlan:
        prompt = (
            self._build_prompt(market_snapshot, agent_state)
            + "\n\nDRAFT PLAN:\n"
            + json.dumps(plan.to_dict(), indent=2)
            + "\n\nRe-examine each trade against the snapshot. Adjust confidence, price_target, "
            "stop_loss and take_profit, drop trades you no longer believe in, and return the "
            "full plan in the same JSON format."
        )
        data = self._call(prompt)
        refined = TradePlan.from_dict(data)
        refined.id = plan.id
        refined.date = plan.date
        refined.created_at = plan.created_at
        refined.trades = refined.trades[: self.max_trades]
        refined.market_analysis = refined.market_analysis or plan.market_analysis
        refined.risk_assessment = refined.risk_assessment or plan.risk_assessment
        logger.info(f"Planner refined plan {plan.id}: {len(plan.trades)} -> {len(refined.trades)} candidate(s)")
        return refined

    def _build_prompt(self, snapshot: Dict[str, Any], agent_state: AgentState) -> str:
        system_msg = SYSTEM_PROMPT.format(strategy=agent_state.current_strategy, max_trades=self.max_trades)
        user_msg = f"""AGENT STATE:
Account balance: ${agent_state.account_balance:,.2f}
Open positions: {self._format_positions(agent_state.open_positions)}

MARKET SNAPSHOT:
{json.dumps(snapshot, indent=2, default=str)}

Return JSON only."""
        return system_msg + "\n\n" + user_msg

    @staticmethod
    def _format_positions(positions) -> str:
        if not positions:
            return "(none)"
        return ", ".join(f"{p.get('symbol')} x{p.get('quantity')}" for p in positions)

    def _call(self, prompt: str) -> Dict[str, Any]:
        self.governor.check_and_throttle()
        if self.provider == "openai":
            content, usage = self._call_openai(prompt)
        else:
            content, usage = self._call_anthropic(prompt)
        self.governor.track_usage(usage)
        return extract_json(content)

    def _call_openai(self, prompt: str) -> Tuple[str, Dict[str, int]]:
        response = self.client.chat.completions.create(
            model=self.model,
            messages=[{"role": "user", "content": prompt}],
            response_format={"type": "json_object"},
            max_tokens=self.max_tokens,
            temperature=0.3,
        )
        usage = getattr(response, "usage", None)
        return response.choices[0].message.content, {
            "input_tokens": getattr(usage, "prompt_tokens", 0) or 0,
            "output_tokens": getattr(usage, "completion_tokens", 0) or 0,
        }

    def _call_anthropic(self, prompt: str) -> Tuple[str, Dict[str, int]]:
        response = self.client.messages.create(
            model=self.model,
            messages=[{"role": "user", "content": prompt}],
            max_tokens=self.max_tokens,
            temperature=0.3,
        )
        usage = getattr(response, "usage", None)
        return response.content[0].text, {
            "input_tokens": getattr(usage, "input_tokens", 0) or 0,
            "output_tokens": getattr(usage, "output_tokens", 0) or 0,
        }


class MockPlanner:
    """
    Deterministic planner for DRY_RUN/PAPER modes and tests.

    Uses a preset plan if given, otherwise the ``candidates`` list in the
    market snapshot. Still honors the governor when one is supplied.
    """

    def __init__(self, plan: Optional[TradePlan] = None, governor=None):
        self.plan = plan
        self.governor = governor
        self.call_count = 0

    def _tick(self) -> None:
        if self.governor is not None:
            self.governor.check_and_throttle()
        self.call_count += 1
        if self.governor is not None:
            self.governor.track_usage({"input_tokens": 0, "output_tokens": 0})

    def craft_plan(self, market_snapshot: Dict[str, Any], agent_state: AgentState) -> TradePlan:
        self._tick()
        if self.plan is not None:
            return TradePlan.from_dict(self.plan.to_dict())
        return TradePlan.from_dict({
            "trades": market_snapshot.get("candidates") or [],
            "market_analysis": market_snapshot.get("market_analysis", "Mock planner: snapshot candidates"),
            "risk_assessment": market_snapshot.get("risk_assessment", ""),
        })

    def refine_predictions(
        self,
        plan: TradePlan,
        market_snapshot: Dict[str, Any],
        agent_state: AgentState,
    ) -> TradePlan:
        self._tick()
        return plan


def create_planner(ai_config: Dict[str, Any], governor, api_key: Optional[str] = None):
    """
    Factory for planning services.

    Args:
        ai_config: ``ai`` config section (provider, model, timeout_s, max_tokens, max_trades)
        governor: CostGovernor
        api_key: Resolved API key; required unless provider is "mock"
    """
    provider = ai_config.get("provider", "mock")
    if provider == "mock":
        return MockPlanner(governor=governor)
    if not api_key:
        raise ValueError(f"AI provider {provider} requires an API key")
    return LLMPlanner(
        provider=provider,
        model=ai_config["model"],
        api_key=api_key,
        governor=governor,
        timeout_s=float(ai_config.get("timeout_s", 30.0)),
        max_tokens=int(ai_config.get("max_tokens", 2000)),
        max_trades=int(ai_config.get("max_trades", 5)),
    )
