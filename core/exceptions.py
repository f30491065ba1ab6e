"""Shared exception types for the strategy and workflow layers."""

from typing import Optional


class AgentError(Exception):
    """Base class for agent errors."""


class ValidationError(AgentError, ValueError):
    """Raised when a candidate or plan is malformed or economically meaningless."""

    def __init__(self, message: str, symbol: Optional[str] = None):
        super().__init__(message)
        self.symbol = symbol


class ConcurrencyError(AgentError):
    """Raised when a lock-guarded operation is already in flight under the same key."""

    def __init__(self, key: str):
        super().__init__(f"Operation {key} is already in progress")
        self.key = key


class CostLimitExceeded(AgentError):
    """Raised when the metered decision service hits its daily request or cost cap."""

    def __init__(self, reason: str, requests: int = 0, cost_usd: float = 0.0):
        super().__init__(reason)
        self.reason = reason
        self.requests = requests
        self.cost_usd = cost_usd


class CriticalWorkflowError(AgentError, RuntimeError):
    """Raised when an error must pause the agent (auth failure, irrecoverable API error)."""

    def __init__(self, message: str, original: Optional[Exception] = None):
        super().__init__(message)
        self.original = original


class PersistenceError(AgentError, RuntimeError):
    """Raised when state or trade records cannot be read or written."""

    def __init__(self, source: str, original: Optional[Exception] = None):
        message = source if original is None else f"{source}: {original}"
        super().__init__(message)
        self.source = source
        self.original = original


DEFAULT_CRITICAL_KEYWORDS = ("CRITICAL", "API_ERROR", "AUTHENTICATION", "NETWORK")


def is_critical_error(exc: BaseException, keywords=DEFAULT_CRITICAL_KEYWORDS) -> bool:
    """True when ``exc`` must pause the agent: explicit critical errors or a keyword match."""
    if isinstance(exc, CriticalWorkflowError):
        return True
    message = f"{type(exc).__name__}: {exc}".upper()
    return any(keyword.upper() in message for keyword in keywords)
