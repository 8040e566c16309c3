"""Domain enumerations for the live poller."""
from __future__ import annotations

from enum import Enum


class LiveSport(str, Enum):
    FOOTBALL = "football"
    BASKETBALL = "basketball"
    RUGBY = "rugby"


class UsageTier(str, Enum):
    """Throttling level derived from the share of the monthly budget consumed."""
    NORMAL = "normal"
    TIER70 = "tier70"
    TIER85 = "tier85"
    TIER95 = "tier95"

    @property
    def is_suspended(self) -> bool:
        return self == UsageTier.TIER95

    @property
    def severity(self) -> int:
        return _TIER_ORDER.index(self)


_TIER_ORDER = [UsageTier.NORMAL, UsageTier.TIER70, UsageTier.TIER85, UsageTier.TIER95]


class PollingStatus(str, Enum):
    """Polling state exposed to snapshot readers."""
    ACTIVE = "active"
    DEGRADED = "degraded"
    PAUSED = "paused"
    DISABLED = "disabled"


class SkipReason(str, Enum):
    KILL_SWITCH = "kill_switch"
    BUDGET_EXCEEDED = "budget_exceeded_95"
    INTERVAL_NOT_ELAPSED = "interval_not_elapsed"
