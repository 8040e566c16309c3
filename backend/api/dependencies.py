"""
Dependency injection for the API service.
Provides the live runtime (store, ledger, poll cycle) to route handlers.
"""
from __future__ import annotations

from shared.polling_config import LivePollingConfig
from shared.store.match_store import MatchStateStore
from shared.store.usage_ledger import UsageLedger

from scheduler.engine.poll_cycle import LivePollCycle
from scheduler.runtime import LiveRuntime

# Module-level singleton, initialized at startup
_runtime: LiveRuntime | None = None


def init_dependencies(runtime: LiveRuntime | None) -> None:
    """Initialize module-level singletons. Called once at startup."""
    global _runtime
    _runtime = runtime


def get_runtime() -> LiveRuntime:
    """FastAPI dependency: returns the shared LiveRuntime."""
    if _runtime is None:
        raise RuntimeError("LiveRuntime not initialized, call init_dependencies first")
    return _runtime


def get_match_store() -> MatchStateStore:
    return get_runtime().store


def get_usage_ledger() -> UsageLedger:
    return get_runtime().ledger


def get_polling_config() -> LivePollingConfig:
    return get_runtime().config


def get_poll_cycle() -> LivePollCycle:
    return get_runtime().cycle
