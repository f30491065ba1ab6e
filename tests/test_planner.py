"""
Tests for the planning collaborators.

LLM SDK clients are replaced with MagicMock; the governor is real with a
no-op sleep so cost tracking is exercised end to end.
"""

import json
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest

from ai.planner import LLMPlanner, MockPlanner, create_planner, extract_json
from core.exceptions import CostLimitExceeded
from core.models import AgentState
from infra.cost_governor import CostGovernor

PLAN_JSON = {
    "market_analysis": "Semis leading",
    "risk_assessment": "Moderate",
    "total_risk_exposure": 0.05,
    "trades": [
        {"symbol": "nvda", "action": "buy", "quantity": 10, "price_target": 120.0,
         "stop_loss": 112.8, "take_profit": 132.0, "confidence": 0.8, "reasoning": "trend"},
        {"symbol": "AMD", "action": "HOLD", "quantity": 1, "price_target": 100.0},
    ],
}


@pytest.fixture
def governor():
    return CostGovernor(daily_request_limit=10, min_request_interval=0.0, sleep=lambda s: None)


def openai_client(content):
    client = MagicMock()
    client.chat.completions.create.return_value = SimpleNamespace(
        choices=[SimpleNamespace(message=SimpleNamespace(content=content))],
        usage=SimpleNamespace(prompt_tokens=800, completion_tokens=200),
    )
    return client


def anthropic_client(content):
    client = MagicMock()
    client.messages.create.return_value = SimpleNamespace(
        content=[SimpleNamespace(text=content)],
        usage=SimpleNamespace(input_tokens=500, output_tokens=500),
    )
    return client


class TestExtractJson:
    def test_plain(self):
        assert extract_json('{"a": 1}') == {"a": 1}

    def test_fenced(self):
        assert extract_json('Here you go:\n```json\n{"a": 2}\n```') == {"a": 2}

    def test_invalid(self):
        with pytest.raises(ValueError):
            extract_json("not json")

    def test_non_object(self):
        with pytest.raises(ValueError):
            extract_json("[1, 2]")


class TestLLMPlanner:
    def test_openai_craft_plan(self, governor):
        client = openai_client(json.dumps(PLAN_JSON))
        planner = LLMPlanner("openai", "gpt-test", "key", governor, client=client)

        plan = planner.craft_plan({"symbols": {}}, AgentState(account_balance=50_000.0))

        assert [t.symbol for t in plan.trades] == ["NVDA"]
        assert plan.trades[0].action == "BUY"
        assert plan.market_analysis == "Semis leading"
        usage = governor.usage()
        assert usage["requests"] == 1
        assert usage["tokens"] == 1000
        prompt = client.chat.completions.create.call_args.kwargs["messages"][0]["content"]
        assert "$50,000.00" in prompt

    def test_anthropic_refine_keeps_identity(self, governor):
        client = anthropic_client("```json\n" + json.dumps(PLAN_JSON) + "\n```")
        planner = LLMPlanner("anthropic", "claude-test", "key", governor, client=client)
        draft = planner.craft_plan({}, AgentState())

        refined = planner.refine_predictions(draft, {}, AgentState())

        assert refined.id == draft.id
        assert refined.created_at == draft.created_at
        assert governor.usage()["requests"] == 2
        assert "DRAFT PLAN" in client.messages.create.call_args.kwargs["messages"][0]["content"]

    def test_max_trades(self, governor):
        many = dict(PLAN_JSON, trades=[PLAN_JSON["trades"][0]] * 4)
        planner = LLMPlanner("openai", "gpt-test", "key", governor, max_trades=2,
                             client=openai_client(json.dumps(many)))
        assert len(planner.craft_plan({}, AgentState()).trades) == 2

    def test_governor_blocks_call(self):
        governor = CostGovernor(daily_request_limit=1, min_request_interval=0.0, sleep=lambda s: None)
        client = openai_client(json.dumps(PLAN_JSON))
        planner = LLMPlanner("openai", "gpt-test", "key", governor, client=client)
        planner.craft_plan({}, AgentState())

        with pytest.raises(CostLimitExceeded):
            planner.craft_plan({}, AgentState())
        assert client.chat.completions.create.call_count == 1

    def test_unknown_provider(self, governor):
        with pytest.raises(ValueError):
            LLMPlanner("cohere", "m", "key", governor)


class TestMockPlanner:
    def test_uses_snapshot_candidates(self, governor):
        planner = MockPlanner(governor=governor)
        snapshot = {"candidates": PLAN_JSON["trades"], "market_analysis": "snapshot"}
        plan = planner.craft_plan(snapshot, AgentState())
        assert [t.symbol for t in plan.trades] == ["NVDA"]
        assert planner.refine_predictions(plan, snapshot, AgentState()) is plan
        assert planner.call_count == 2
        assert governor.usage()["requests"] == 2


class TestFactory:
    def test_mock(self, governor):
        assert isinstance(create_planner({"provider": "mock"}, governor), MockPlanner)

    def test_requires_api_key(self, governor):
        with pytest.raises(ValueError):
            create_planner({"provider": "openai", "model": "gpt-test"}, governor, api_key=None)
