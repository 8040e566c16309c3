"""
Unit tests for the budget governor: tiers, intervals and reader status.

Run: pytest backend/tests/test_polling_governor.py -v
"""
from __future__ import annotations

import math

import pytest

from shared.models.enums import LiveSport, PollingStatus, UsageTier
from shared.polling_config import LivePollingConfig
from scheduler.engine.polling import (
    get_poll_interval_ms,
    get_polling_status,
    get_usage_tier,
    usage_percent,
)


# ── get_usage_tier ──────────────────────────────────────────────────────

@pytest.mark.parametrize(
    "used,expected",
    [
        (0, UsageTier.NORMAL),
        (2099, UsageTier.NORMAL),
        (2100, UsageTier.TIER70),
        (2549, UsageTier.TIER70),
        (2550, UsageTier.TIER85),
        (2849, UsageTier.TIER85),
        (2850, UsageTier.TIER95),
        (2880, UsageTier.TIER95),
        (5000, UsageTier.TIER95),
    ],
)
def test_usage_tier_thresholds(used: int, expected: UsageTier) -> None:
    assert get_usage_tier(used, 3000) == expected


def test_usage_tier_is_monotonic_in_usage() -> None:
    severities = [get_usage_tier(used, 3000).severity for used in range(0, 3200, 7)]
    assert severities == sorted(severities)


@pytest.mark.parametrize("budget", [0, -10])
def test_non_positive_budget_suspends(budget: int) -> None:
    assert get_usage_tier(0, budget) == UsageTier.TIER95


# ── get_poll_interval_ms ────────────────────────────────────────────────

def test_interval_scales_with_tier(config: LivePollingConfig) -> None:
    assert get_poll_interval_ms(LiveSport.FOOTBALL, UsageTier.NORMAL, config) == 30_000
    assert get_poll_interval_ms(LiveSport.FOOTBALL, UsageTier.TIER70, config) == 60_000
    assert get_poll_interval_ms(LiveSport.FOOTBALL, UsageTier.TIER85, config) == 90_000
    assert math.isinf(get_poll_interval_ms(LiveSport.FOOTBALL, UsageTier.TIER95, config))


def test_interval_uses_sport_base(config: LivePollingConfig) -> None:
    assert get_poll_interval_ms(LiveSport.BASKETBALL, UsageTier.NORMAL, config) == 10_000
    assert get_poll_interval_ms(LiveSport.BASKETBALL, UsageTier.TIER85, config) == 30_000


def test_interval_never_shrinks_as_tier_rises(config: LivePollingConfig) -> None:
    tiers = [UsageTier.NORMAL, UsageTier.TIER70, UsageTier.TIER85, UsageTier.TIER95]
    for sport in LiveSport:
        intervals = [get_poll_interval_ms(sport, t, config) for t in tiers]
        assert intervals == sorted(intervals)


# ── get_polling_status / usage_percent ──────────────────────────────────

def test_polling_status_kill_switch_wins() -> None:
    assert get_polling_status(True, UsageTier.NORMAL) == PollingStatus.DISABLED
    assert get_polling_status(True, UsageTier.TIER95) == PollingStatus.DISABLED


def test_polling_status_by_tier() -> None:
    assert get_polling_status(False, UsageTier.NORMAL) == PollingStatus.ACTIVE
    assert get_polling_status(False, UsageTier.TIER70) == PollingStatus.DEGRADED
    assert get_polling_status(False, UsageTier.TIER85) == PollingStatus.DEGRADED
    assert get_polling_status(False, UsageTier.TIER95) == PollingStatus.PAUSED


def test_usage_percent_rounds() -> None:
    assert usage_percent(2880, 3000) == 96
    assert usage_percent(1, 3000) == 0
    assert usage_percent(0, 0) == 100


@pytest.mark.parametrize("used,expected", [(2115, 71), (2114, 70), (1500, 50), (15, 1)])
def test_usage_percent_rounds_halves_up(used: int, expected: int) -> None:
    assert usage_percent(used, 3000) == expected
