"""
Budget governor for the live poller.
Maps monthly API usage onto a throttling tier and the tier onto a poll
interval per sport. Pure functions: all I/O happens in the poll cycle.
"""
from __future__ import annotations

import math

from shared.models.enums import LiveSport, PollingStatus, UsageTier
from shared.polling_config import LivePollingConfig

# ── Tier thresholds (fraction of the monthly budget, inclusive) ─────────
# Checked from the most severe down.
TIER_THRESHOLDS: tuple[tuple[float, UsageTier], ...] = (
    (0.95, UsageTier.TIER95),
    (0.85, UsageTier.TIER85),
    (0.70, UsageTier.TIER70),
)

# Interval multipliers: higher tiers poll less often, tier95 not at all
TIER_INTERVAL_MULTIPLIERS: dict[UsageTier, float] = {
    UsageTier.NORMAL: 1.0,
    UsageTier.TIER70: 2.0,
    UsageTier.TIER85: 3.0,
    UsageTier.TIER95: math.inf,
}


def get_usage_tier(monthly_used: int, budget: int) -> UsageTier:
    """Classify monthly usage against the budget."""
    if budget <= 0:
        return UsageTier.TIER95
    for fraction, tier in TIER_THRESHOLDS:
        if monthly_used >= budget * fraction:
            return tier
    return UsageTier.NORMAL


def get_poll_interval_ms(sport: LiveSport, tier: UsageTier, config: LivePollingConfig) -> float:
    """
    Effective poll interval for a sport at a tier, in milliseconds.
    Returns math.inf when the tier suspends polling.
    """
    multiplier = TIER_INTERVAL_MULTIPLIERS[tier]
    if math.isinf(multiplier):
        return math.inf
    return config.policy(sport).base_interval_ms * multiplier


def get_polling_status(polling_disabled: bool, tier: UsageTier) -> PollingStatus:
    """Reader-facing summary of the governor state."""
    if polling_disabled:
        return PollingStatus.DISABLED
    if tier.is_suspended:
        return PollingStatus.PAUSED
    if tier != UsageTier.NORMAL:
        return PollingStatus.DEGRADED
    return PollingStatus.ACTIVE


def usage_percent(used: int, budget: int) -> int:
    """Share of the budget used, in whole percent. Halves round up (70.5 -> 71)."""
    if budget <= 0:
        return 100
    return math.floor(used / budget * 100 + 0.5)
