"""
ada-trader Core: Paper Broker

Simulated trading collaborator used in PAPER mode and in tests.
Fills immediately at the target price adjusted by a fixed slippage and keeps
cash and positions in memory.
"""

import logging
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from core.market_hours import TimeWindow, market_hours

logger = logging.getLogger(__name__)


@dataclass
class PaperOrder:
    """Simulated order with fill details"""
    order_id: str
    symbol: str
    side: str  # "BUY" or "SELL"
    quantity: int
    limit_price: float
    status: str = "open"  # "open" | "filled" | "canceled" | "rejected"
    filled_price: Optional[float] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    reason: Optional[str] = None


class PaperBroker:
    """
    In-memory broker.

    Args:
        starting_balance: Initial cash in USD
        slippage_bps: Adverse fill adjustment in basis points
        hours: Regular market hours used by ``is_market_open``
        read_only: Reject every order (DRY_RUN mode)
    """

    def __init__(
        self,
        starting_balance: float = 100_000.0,
        slippage_bps: float = 5.0,
        hours: Optional[TimeWindow] = None,
        read_only: bool = False,
    ):
        self.cash = float(starting_balance)
        self.slippage_bps = float(slippage_bps)
        self.hours = hours or market_hours()
        self.read_only = read_only
        self.positions: Dict[str, int] = {}
        self.last_prices: Dict[str, float] = {}
        self.orders: Dict[str, PaperOrder] = {}
        self._lock = threading.Lock()
        logger.info(
            f"PaperBroker initialized: cash=${self.cash:,.2f}, slippage={self.slippage_bps}bps, "
            f"read_only={self.read_only}"
        )

    def is_market_open(self, now: Optional[datetime] = None) -> bool:
        return self.hours.contains(now)

    def _fill_price(self, side: str, price: float) -> float:
        adj = self.slippage_bps / 10000.0
        return price * (1.0 + adj) if side == "BUY" else price * (1.0 - adj)

    def execute(self, trade: Any) -> Dict[str, Any]:
        """
        Fill ``trade`` (EnhancedTrade or TradeCandidate) at its target price.

        Returns:
            Order result dict with status executed|failed
        """
        symbol = trade.symbol
        side = trade.action
        quantity = int(getattr(trade, "enhanced_quantity", None) or trade.quantity)
        order = PaperOrder(
            order_id=str(uuid.uuid4()),
            symbol=symbol,
            side=side,
            quantity=quantity,
            limit_price=float(trade.price_target),
        )

        with self._lock:
            self.orders[order.order_id] = order
            if self.read_only:
                return self._reject(order, "read-only mode")
            if quantity <= 0:
                return self._reject(order, "non-positive quantity")

            price = self._fill_price(side, order.limit_price)
            notional = price * quantity
            if side == "BUY" and notional > self.cash:
                return self._reject(order, f"insufficient buying power (${self.cash:,.2f} < ${notional:,.2f})")

            self.cash += -notional if side == "BUY" else notional
            delta = quantity if side == "BUY" else -quantity
            self.positions[symbol] = self.positions.get(symbol, 0) + delta
            if self.positions[symbol] == 0:
                del self.positions[symbol]
            self.last_prices[symbol] = price
            order.status = "filled"
            order.filled_price = price

        logger.info(f"Paper fill: {side} {quantity} {symbol} @ {price:.4f} (order {order.order_id[:8]})")
        return {
            "status": "executed",
            "executed_quantity": quantity,
            "filled_price": price,
            "order_id": order.order_id,
        }

    def _reject(self, order: PaperOrder, reason: str) -> Dict[str, Any]:
        order.status = "rejected"
        order.reason = reason
        logger.warning(f"Paper order rejected for {order.symbol}: {reason}")
        return {"status": "failed", "executed_quantity": 0, "order_id": order.order_id, "error": reason}

    def get_account_details(self) -> Dict[str, Any]:
        with self._lock:
            positions_value = sum(qty * self.last_prices.get(sym, 0.0) for sym, qty in self.positions.items())
            return {
                "balance": self.cash + positions_value,
                "cash": self.cash,
                "buying_power": self.cash,
                "portfolio_value": positions_value,
                "positions": [
                    {"symbol": sym, "quantity": qty, "last_price": self.last_prices.get(sym)}
                    for sym, qty in sorted(self.positions.items())
                ],
            }

    def open_orders(self) -> List[PaperOrder]:
        with self._lock:
            return [o for o in self.orders.values() if o.status == "open"]

    def cancel_all_orders(self) -> int:
        """Cancel every open order; returns how many were canceled."""
        with self._lock:
            canceled = 0
            for order in self.orders.values():
                if order.status == "open":
                    order.status = "canceled"
                    canceled += 1
        logger.info(f"Canceled {canceled} open paper order(s)")
        return canceled
