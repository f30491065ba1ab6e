"""
ada-trader Infrastructure: SQLite Persistence

Reference persistence collaborator:
- trades: one row per executed (or failed) trade
- thought_chains: enhanced plan snapshot and decision rationale per cycle
- agent_state: single-row JSON blob for crash recovery

Every failure surfaces as PersistenceError so callers can fall back.
"""

import json
import logging
import sqlite3
from contextlib import closing
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, List, Optional, Sequence

from core.exceptions import PersistenceError
from core.models import AgentState, ExecutedTrade

logger = logging.getLogger(__name__)

_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS trades (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        plan_id TEXT,
        symbol TEXT NOT NULL,
        action TEXT NOT NULL,
        quantity INTEGER NOT NULL,
        executed_quantity INTEGER NOT NULL,
        price_target REAL NOT NULL,
        filled_price REAL,
        stop_loss REAL,
        take_profit REAL,
        confidence REAL,
        status TEXT NOT NULL,
        order_id TEXT,
        reasoning TEXT,
        error TEXT,
        executed_at TIMESTAMP NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_trades_executed_at ON trades(executed_at)",
    "CREATE INDEX IF NOT EXISTS idx_trades_symbol ON trades(symbol)",
    """
    CREATE TABLE IF NOT EXISTS thought_chains (
        plan_id TEXT PRIMARY KEY,
        plan_json TEXT NOT NULL,
        thought_chain_json TEXT NOT NULL,
        created_at TIMESTAMP NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS agent_state (
        id INTEGER PRIMARY KEY CHECK (id = 1),
        state_json TEXT NOT NULL,
        updated_at TIMESTAMP NOT NULL
    )
    """,
)


class SqlitePersistence:
    """
    SQLite-backed persistence service.

    Args:
        db_file: Path to the database (created on first use)
    """

    def __init__(self, db_file: str = "data/agent.db"):
        self.db_file = Path(db_file)
        self.db_file.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()
        logger.info(f"SqlitePersistence initialized at {self.db_file}")

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self.db_file))
        conn.row_factory = sqlite3.Row
        return conn

    def _init_db(self) -> None:
        try:
            with closing(self._connect()) as conn, conn:
                for statement in _SCHEMA:
                    conn.execute(statement)
        except sqlite3.Error as exc:
            raise PersistenceError("sqlite init", exc) from exc

    def store_trades(self, executed_trades: Sequence[ExecutedTrade], plan: Any, thought_chain: Sequence[str]) -> None:
        """
        Persist executed trades and the cycle's thought chain atomically.

        Args:
            executed_trades: Outcomes from the trading collaborator
            plan: EnhancedPlan (or TradePlan) with ``to_dict`` and a plan id
            thought_chain: Ordered rationale strings
        """
        plan_dict = plan.to_dict() if hasattr(plan, "to_dict") else dict(plan or {})
        plan_id = plan_dict.get("id")
        now = datetime.now(timezone.utc).isoformat()
        rows = [
            (
                plan_id, t.symbol, t.action, t.quantity, t.executed_quantity, t.price_target,
                t.filled_price, t.stop_loss, t.take_profit, t.confidence, t.status,
                t.order_id, t.reasoning, t.error, t.executed_at,
            )
            for t in executed_trades
        ]
        try:
            with closing(self._connect()) as conn, conn:
                conn.executemany(
                    """
                    INSERT INTO trades (
                        plan_id, symbol, action, quantity, executed_quantity, price_target,
                        filled_price, stop_loss, take_profit, confidence, status,
                        order_id, reasoning, error, executed_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    rows,
                )
                conn.execute(
                    "INSERT OR REPLACE INTO thought_chains (plan_id, plan_json, thought_chain_json, created_at) "
                    "VALUES (?, ?, ?, ?)",
                    (plan_id or now, json.dumps(plan_dict, default=str), json.dumps(list(thought_chain)), now),
                )
        except sqlite3.Error as exc:
            raise PersistenceError("store_trades", exc) from exc
        logger.info(f"Stored {len(rows)} trade record(s) for plan {plan_id}")

    def get_agent_state(self) -> Optional[AgentState]:
        try:
            with closing(self._connect()) as conn:
                row = conn.execute("SELECT state_json FROM agent_state WHERE id = 1").fetchone()
        except sqlite3.Error as exc:
            raise PersistenceError("get_agent_state", exc) from exc
        if row is None:
            return None
        try:
            return AgentState.from_dict(json.loads(row["state_json"]))
        except (ValueError, TypeError) as exc:
            raise PersistenceError("get_agent_state: corrupt state row", exc) from exc

    def store_agent_state(self, state: AgentState) -> None:
        payload = json.dumps(state.to_dict(), default=str)
        try:
            with closing(self._connect()) as conn, conn:
                conn.execute(
                    "INSERT OR REPLACE INTO agent_state (id, state_json, updated_at) VALUES (1, ?, ?)",
                    (payload, datetime.now(timezone.utc).isoformat()),
                )
        except sqlite3.Error as exc:
            raise PersistenceError("store_agent_state", exc) from exc

    def get_thought_chain(self, plan_id: str) -> Optional[List[str]]:
        try:
            with closing(self._connect()) as conn:
                row = conn.execute(
                    "SELECT thought_chain_json FROM thought_chains WHERE plan_id = ?", (plan_id,)
                ).fetchone()
        except sqlite3.Error as exc:
            raise PersistenceError("get_thought_chain", exc) from exc
        return json.loads(row["thought_chain_json"]) if row else None
