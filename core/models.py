"""
ada-trader Core: Domain Models

Plain dataclasses shared by the strategy layer, the workflow and the
persistence collaborators. Every type round-trips through ``to_dict`` /
``from_dict`` so it can be stored as JSON.
"""

import copy
import math
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional

from core.exceptions import ValidationError

Action = Literal["BUY", "SELL"]
ACTIONS = ("BUY", "SELL")


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass(frozen=True)
class TradeCandidate:
    """Raw trade idea produced by the planning collaborator."""
    symbol: str
    action: Action
    quantity: int
    price_target: float
    stop_loss: float
    take_profit: float
    confidence: float       # 0.0–1.0
    reasoning: str = ""

    @property
    def is_buy(self) -> bool:
        return self.action == "BUY"

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "TradeCandidate":
        """
        Build a candidate from a loosely-typed mapping.

        Raises:
            ValidationError: if a required field is missing or out of range
        """
        if not isinstance(raw, dict):
            raise ValidationError(f"Trade candidate must be a mapping, got {type(raw).__name__}")

        symbol = str(raw.get("symbol") or "").strip().upper()
        if not symbol:
            raise ValidationError("Trade candidate is missing a symbol")

        action = str(raw.get("action") or "").strip().upper()
        if action not in ACTIONS:
            raise ValidationError(f"Invalid action {raw.get('action')!r}", symbol=symbol)

        try:
            quantity = int(raw.get("quantity", 0))
            price_target = float(raw["price_target"])
            stop_loss = float(raw.get("stop_loss", 0.0))
            take_profit = float(raw.get("take_profit", 0.0))
            confidence = float(raw.get("confidence", 0.0))
        except (KeyError, TypeError, ValueError) as exc:
            raise ValidationError(f"Malformed numeric field: {exc}", symbol=symbol) from exc

        if quantity <= 0:
            raise ValidationError(f"Quantity must be positive, got {quantity}", symbol=symbol)
        if not math.isfinite(price_target) or price_target <= 0:
            raise ValidationError(f"Price target must be positive, got {price_target}", symbol=symbol)
        if not 0.0 <= confidence <= 1.0:
            raise ValidationError(f"Confidence must be within [0, 1], got {confidence}", symbol=symbol)

        return cls(
            symbol=symbol,
            action=action,  # type: ignore[arg-type]
            quantity=quantity,
            price_target=price_target,
            stop_loss=stop_loss,
            take_profit=take_profit,
            confidence=confidence,
            reasoning=str(raw.get("reasoning") or ""),
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class TradePlan:
    """Daily plan returned by the planning collaborator."""
    trades: List[TradeCandidate]
    market_analysis: str = ""
    risk_assessment: str = ""
    total_risk_exposure: float = 0.0
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    date: str = field(default_factory=lambda: datetime.now(timezone.utc).date().isoformat())
    created_at: str = field(default_factory=utc_now_iso)

    @classmethod
    def from_dict(cls, raw: Dict[str, Any], strict: bool = False) -> "TradePlan":
        """
        Build a plan; malformed candidates are skipped unless ``strict``.
        """
        trades: List[TradeCandidate] = []
        for item in raw.get("trades") or []:
            try:
                trades.append(TradeCandidate.from_dict(item))
            except ValidationError:
                if strict:
                    raise
        kwargs: Dict[str, Any] = {
            "trades": trades,
            "market_analysis": str(raw.get("market_analysis") or ""),
            "risk_assessment": str(raw.get("risk_assessment") or ""),
            "total_risk_exposure": float(raw.get("total_risk_exposure") or 0.0),
        }
        for key in ("id", "date", "created_at"):
            if raw.get(key):
                kwargs[key] = str(raw[key])
        return cls(**kwargs)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "date": self.date,
            "market_analysis": self.market_analysis,
            "trades": [trade.to_dict() for trade in self.trades],
            "risk_assessment": self.risk_assessment,
            "total_risk_exposure": self.total_risk_exposure,
            "created_at": self.created_at,
        }


@dataclass
class ExecutedTrade:
    """Outcome of submitting one trade to the trading collaborator."""
    symbol: str
    action: Action
    quantity: int
    price_target: float
    stop_loss: float
    take_profit: float
    confidence: float
    reasoning: str
    executed_quantity: int
    status: Literal["executed", "failed"]
    filled_price: Optional[float] = None
    order_id: Optional[str] = None
    executed_at: str = field(default_factory=utc_now_iso)
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.status == "executed"

    @property
    def notional(self) -> float:
        price = self.filled_price if self.filled_price is not None else self.price_target
        return self.executed_quantity * price

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class AgentState:
    """Cross-cycle memory of the agent; owned by ``AgentStateStore``."""
    is_paused: bool = False
    last_run: Optional[str] = None
    current_strategy: str = "momentum_reversal"
    account_balance: float = 0.0
    open_positions: List[Dict[str, Any]] = field(default_factory=list)
    trade_history: List[Dict[str, Any]] = field(default_factory=list)
    pause_token: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return copy.deepcopy(asdict(self))

    @classmethod
    def from_dict(cls, raw: Optional[Dict[str, Any]]) -> "AgentState":
        """Merge a persisted mapping over the defaults, ignoring unknown keys."""
        merged = {**DEFAULT_AGENT_STATE, **(raw or {})}
        return cls(
            is_paused=bool(merged["is_paused"]),
            last_run=merged["last_run"] or None,
            current_strategy=str(merged["current_strategy"]),
            account_balance=float(merged["account_balance"] or 0.0),
            open_positions=copy.deepcopy(list(merged["open_positions"] or [])),
            trade_history=copy.deepcopy(list(merged["trade_history"] or [])),
            pause_token=merged["pause_token"] or None,
        )

    def copy(self) -> "AgentState":
        return AgentState.from_dict(self.to_dict())


DEFAULT_AGENT_STATE: Dict[str, Any] = {
    "is_paused": False,
    "last_run": None,
    "current_strategy": "momentum_reversal",
    "account_balance": 0.0,
    "open_positions": [],
    "trade_history": [],
    "pause_token": None,
}
