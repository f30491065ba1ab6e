"""
Narrow capability interfaces for the workflow's external collaborators.

The workflow receives one object per role through its constructor; no
collaborator ever holds a reference back to the workflow.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional, Protocol, Sequence

from core.models import AgentState, ExecutedTrade, TradePlan


class MarketDataService(Protocol):
    def collect(self, symbols: Optional[Sequence[str]] = None) -> Dict[str, Any]:
        """Symbol-level indicators plus plan-wide ``market_sentiment`` / ``indicators``."""
        ...


class PlanningService(Protocol):
    def craft_plan(self, market_snapshot: Dict[str, Any], agent_state: AgentState) -> TradePlan:
        ...

    def refine_predictions(
        self, plan: TradePlan, market_snapshot: Dict[str, Any], agent_state: AgentState
    ) -> TradePlan:
        ...


class TradingService(Protocol):
    def execute(self, trade: Any) -> Dict[str, Any]:
        """Returns ``{"status": "executed"|"failed", "executed_quantity", "filled_price"?, "order_id"?}``."""
        ...

    def get_account_details(self) -> Dict[str, Any]:
        ...

    def cancel_all_orders(self) -> int:
        ...

    def is_market_open(self, now: Optional[datetime] = None) -> bool:
        ...


class PersistenceService(Protocol):
    def store_trades(self, executed_trades: Sequence[ExecutedTrade], plan: Any, thought_chain: Sequence[str]) -> None:
        ...

    def get_agent_state(self) -> Optional[AgentState]:
        ...

    def store_agent_state(self, state: AgentState) -> None:
        ...


class NotificationService(Protocol):
    def send_trade_plan(self, enhanced_plan: Any) -> Optional[str]:
        """Dispatch the plan; may return a pause token."""
        ...

    def send_critical_alert(self, error: BaseException, context: Optional[Dict[str, Any]] = None) -> None:
        ...

    def send_daily_summary(self, account: Dict[str, Any], trades: List[Dict[str, Any]]) -> None:
        ...
