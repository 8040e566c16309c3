"""
Live polling event log.
A fixed vocabulary of structured events emitted by the poll cycle, all under
the "live" logger so they can be filtered as one stream.
"""
from __future__ import annotations

from typing import Any

from shared.utils.logging import get_logger


class LiveEventLog:
    """Thin facade over a structlog logger with one method per poll event."""

    def __init__(self, name: str = "live") -> None:
        self._logger = get_logger(name)

    def poll_start(self, tier: str) -> None:
        self._logger.info("poll_start", tier=tier)

    def poll_skip(self, reason: str, **data: Any) -> None:
        self._logger.info("poll_skip", reason=reason, **data)

    def poll_success(self, updated: int, removed: int, usage: int, tier: str) -> None:
        self._logger.info("poll_success", updated=updated, removed=removed, usage=usage, tier=tier)

    def poll_error(self, error: BaseException | str) -> None:
        self._logger.error("poll_error", error=str(error), exc_info=isinstance(error, BaseException))

    def threshold_crossed(self, tier: str, usage: int, budget: int, pct: int) -> None:
        self._logger.warning("threshold_crossed", tier=tier, usage=usage, budget=budget, pct=pct)

    def downgrade(self, from_tier: str, to_tier: str, interval_ms: float) -> None:
        self._logger.warning(
            "polling_downgrade",
            from_tier=from_tier,
            to_tier=to_tier,
            interval_ms=None if interval_ms == float("inf") else int(interval_ms),
        )

    def kill_switch_active(self) -> None:
        self._logger.warning("kill_switch_active")

    def usage_snapshot(self, hourly: int, daily: int, monthly: int, budget: int) -> None:
        self._logger.info("usage_snapshot", hourly=hourly, daily=daily, monthly=monthly, budget=budget)

    def adapter_failed(self, sport: str, error: BaseException | str) -> None:
        self._logger.warning("adapter_failed", sport=sport, error=str(error))


live_log = LiveEventLog()
