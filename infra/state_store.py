"""
ada-trader Infrastructure: Agent State Store

Single owner of the persisted AgentState.

- All reads return copies; all mutations go through ``update`` and are
  followed by a save (persistence-first).
- Load and save walk an explicit, ordered list of providers. The usual chain
  is: persistence collaborator -> local JSON file -> defaults.
- JSON writes are atomic (temp file + rename).
"""

import json
import logging
import os
import tempfile
import threading
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Callable, List, Optional, Sequence

from core.models import AgentState

logger = logging.getLogger(__name__)

DEFAULT_STATE_FILE = "data/agent_state.json"
MAX_TRADE_HISTORY = 500
_STATE_FIELDS = {f.name for f in fields(AgentState)}


@dataclass
class ProviderResult:
    """Outcome of one provider load/save attempt"""
    ok: bool
    provider: str
    state: Optional[AgentState] = None
    error: Optional[str] = None


class PersistenceStateProvider:
    """Reads and writes state through the persistence collaborator."""

    name = "persistence"

    def __init__(self, persistence):
        self._persistence = persistence

    def load(self) -> ProviderResult:
        try:
            state = self._persistence.get_agent_state()
        except Exception as exc:
            return ProviderResult(ok=False, provider=self.name, error=str(exc))
        if state is None:
            return ProviderResult(ok=False, provider=self.name, error="no stored state")
        return ProviderResult(ok=True, provider=self.name, state=state)

    def save(self, state: AgentState) -> ProviderResult:
        try:
            self._persistence.store_agent_state(state)
        except Exception as exc:
            return ProviderResult(ok=False, provider=self.name, error=str(exc))
        return ProviderResult(ok=True, provider=self.name)


class JsonFileStateProvider:
    """Local durable fallback file."""

    name = "file"

    def __init__(self, state_file: Optional[str] = None):
        self.state_file = Path(state_file or os.getenv("AGENT_STATE_FILE", DEFAULT_STATE_FILE))

    def load(self) -> ProviderResult:
        if not self.state_file.exists():
            return ProviderResult(ok=False, provider=self.name, error=f"{self.state_file} not found")
        try:
            with open(self.state_file, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as exc:
            return ProviderResult(ok=False, provider=self.name, error=str(exc))
        if not isinstance(data, dict):
            return ProviderResult(ok=False, provider=self.name, error="state file is not a JSON object")
        return ProviderResult(ok=True, provider=self.name, state=AgentState.from_dict(data))

    def save(self, state: AgentState) -> ProviderResult:
        temp_path = None
        try:
            self.state_file.parent.mkdir(parents=True, exist_ok=True)
            temp_fd, temp_path = tempfile.mkstemp(
                dir=self.state_file.parent,
                prefix=".agent_state_",
                suffix=".json.tmp",
            )
            with os.fdopen(temp_fd, "w", encoding="utf-8") as f:
                json.dump(state.to_dict(), f, indent=2, default=str)
                f.flush()
                os.fsync(f.fileno())
            os.replace(temp_path, self.state_file)
        except OSError as exc:
            if temp_path and os.path.exists(temp_path):
                os.unlink(temp_path)
            return ProviderResult(ok=False, provider=self.name, error=str(exc))
        return ProviderResult(ok=True, provider=self.name)


class DefaultStateProvider:
    """Last resort on load; never accepts writes."""

    name = "defaults"

    def __init__(self, defaults: Optional[AgentState] = None):
        self._defaults = defaults or AgentState()

    def load(self) -> ProviderResult:
        return ProviderResult(ok=True, provider=self.name, state=self._defaults.copy())

    def save(self, state: AgentState) -> ProviderResult:
        return ProviderResult(ok=False, provider=self.name, error="defaults are read-only")


class AgentStateStore:
    """
    Mutex-guarded owner of AgentState.

    Usage:
        store = AgentStateStore([PersistenceStateProvider(db), JsonFileStateProvider()])
        state = store.load()
        store.update(is_paused=True)
    """

    def __init__(self, providers: Sequence[Any], defaults: Optional[AgentState] = None):
        self._providers: List[Any] = [p for p in providers if not isinstance(p, DefaultStateProvider)]
        self._fallback = DefaultStateProvider(defaults)
        self._lock = threading.RLock()
        self._state = self._fallback.load().state
        self.loaded_from: Optional[str] = None
        self.last_save: Optional[ProviderResult] = None

    @property
    def providers(self) -> List[Any]:
        return list(self._providers) + [self._fallback]

    def _read_chain(self, include_defaults: bool) -> ProviderResult:
        chain = self.providers if include_defaults else self._providers
        for provider in chain:
            result = provider.load()
            if result.ok and result.state is not None:
                return result
            logger.warning(f"State load from {provider.name} failed: {result.error}")
        return ProviderResult(ok=False, provider="none", error="no provider returned state")

    def load(self) -> AgentState:
        """Crash recovery: first provider that yields a state wins."""
        with self._lock:
            result = self._read_chain(include_defaults=True)
            self._state = result.state.copy()
            self.loaded_from = result.provider
            logger.info(
                f"Loaded agent state from {result.provider} "
                f"(paused={self._state.is_paused}, last_run={self._state.last_run})"
            )
            return self._state.copy()

    def resync(self) -> bool:
        """
        Re-read persisted state, skipping defaults. Returns True when state was re-read.

        If the last save missed the primary provider, the in-memory state is
        pushed to it first; while the primary is still unavailable the resync is
        skipped so a stale primary copy can never overwrite newer state.
        """
        with self._lock:
            if self._primary_stale():
                result = self._save_locked()
                if not self._primary_stale():
                    logger.info(f"Re-synced in-memory state to {result.provider} after fallback save")
                else:
                    logger.warning("Primary state provider still unavailable; skipping resync")
                    return False
            result = self._read_chain(include_defaults=False)
            if not result.ok:
                return False
            if result.state != self._state:
                logger.info(f"Resynced agent state from {result.provider}")
                self._state = result.state.copy()
            return True

    def _primary_stale(self) -> bool:
        """True when the newest state was not written to the first provider."""
        if not self._providers or self.last_save is None:
            return False
        return not self.last_save.ok or self.last_save.provider != self._providers[0].name

    def get(self) -> AgentState:
        with self._lock:
            return self._state.copy()

    def update(self, mutator: Optional[Callable[[AgentState], None]] = None, **changes: Any) -> AgentState:
        """
        Apply ``changes`` (and/or ``mutator``) then persist.

        Raises:
            AttributeError: on an unknown AgentState field
        """
        unknown = set(changes) - _STATE_FIELDS
        if unknown:
            raise AttributeError(f"Unknown agent state fields: {sorted(unknown)}")
        with self._lock:
            state = self._state.copy()
            for key, value in changes.items():
                setattr(state, key, value)
            if mutator is not None:
                mutator(state)
            if len(state.trade_history) > MAX_TRADE_HISTORY:
                state.trade_history = state.trade_history[-MAX_TRADE_HISTORY:]
            self._state = state
            self._save_locked()
            return state.copy()

    def save(self) -> ProviderResult:
        with self._lock:
            return self._save_locked()

    def _save_locked(self) -> ProviderResult:
        for provider in self._providers:
            result = provider.save(self._state)
            if result.ok:
                self.last_save = result
                logger.debug(f"Saved agent state via {provider.name}")
                return result
            logger.warning(f"State save via {provider.name} failed: {result.error}")
        result = ProviderResult(ok=False, provider="none", error="all state providers failed")
        logger.error("Agent state could not be persisted; keeping in-memory copy")
        self.last_save = result
        return result


def build_state_store(
    persistence=None,
    state_file: Optional[str] = None,
    defaults: Optional[AgentState] = None,
) -> AgentStateStore:
    """Standard chain: persistence collaborator (if any) -> JSON file -> defaults."""
    providers: List[Any] = []
    if persistence is not None:
        providers.append(PersistenceStateProvider(persistence))
    providers.append(JsonFileStateProvider(state_file))
    return AgentStateStore(providers, defaults)
