"""
Pydantic v2 domain models shared by the scheduler and the API.
These are the canonical stored/wire representations of the live snapshot.
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from shared.models.enums import LiveSport, PollingStatus, SkipReason, UsageTier


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ── Base ────────────────────────────────────────────────────────────────
class DomainModel(BaseModel):
    model_config = ConfigDict(from_attributes=True, populate_by_name=True)


# ── Live snapshot ───────────────────────────────────────────────────────
class LiveMatchState(DomainModel):
    """One live fixture as published to readers. Keyed by the band-encoded fixture_id."""
    fixture_id: int
    status: str
    minute: Optional[int] = None
    score_home: int = Field(default=0, ge=0)
    score_away: int = Field(default=0, ge=0)
    last_updated_at: datetime = Field(default_factory=utcnow)
    league_id: Optional[int] = None
    # Records persisted before multi-sport support carry no sport.
    sport: LiveSport = LiveSport.FOOTBALL

    def same_state(self, other: "LiveMatchState") -> bool:
        """Field equality ignoring the write timestamp."""
        return self.model_dump(exclude={"last_updated_at"}) == other.model_dump(
            exclude={"last_updated_at"}
        )


class LiveLeagueConfig(DomainModel):
    """Static per-competition live policy. Lower priority number wins."""
    model_config = ConfigDict(frozen=True)

    league_id: int
    sport: LiveSport
    enabled: bool = True
    priority: int = Field(default=3, ge=1)


# ── Read API payloads ───────────────────────────────────────────────────
STATUS_LABELS: dict[str, str] = {
    "1H": "First Half",
    "HT": "Halftime",
    "2H": "Second Half",
    "ET": "Extra Time",
    "PEN": "Penalties",
    "PEN_LIVE": "Penalties",
    "Q1": "Q1",
    "Q2": "Q2",
    "Q3": "Q3",
    "Q4": "Q4",
    "OT": "Overtime",
    "BT": "Break",
    "PT": "Penalties",
}


class LiveScore(DomainModel):
    home: int = 0
    away: int = 0


class LiveMatchPayload(DomainModel):
    """Minimal per-match payload served to polling clients."""
    fixture_id: int
    sport: LiveSport
    status: str
    status_label: str
    minute: Optional[int] = None
    score: LiveScore
    last_updated_at: datetime

    @classmethod
    def from_state(cls, state: LiveMatchState) -> "LiveMatchPayload":
        return cls(
            fixture_id=state.fixture_id,
            sport=state.sport,
            status=state.status,
            status_label=STATUS_LABELS.get(state.status, state.status),
            minute=state.minute,
            score=LiveScore(home=state.score_home, away=state.score_away),
            last_updated_at=state.last_updated_at,
        )


class UsageCounts(DomainModel):
    hourly: int = 0
    daily: int = 0
    monthly: int = 0
    budget: int = 0
    pct: int = 0


class PollingStatusReport(DomainModel):
    polling_disabled: bool
    polling_status: PollingStatus
    tier: UsageTier
    interval_ms: Optional[int] = None
    usage: UsageCounts
    last_poll_at: Optional[datetime] = None


# ── Poll cycle outcome ──────────────────────────────────────────────────
class PollCycleResult(DomainModel):
    """Outcome of one tick. skipped and error are mutually exclusive."""
    updated: int = 0
    removed: int = 0
    admitted: int = 0
    api_calls: int = 0
    tier: Optional[UsageTier] = None
    skipped: bool = False
    reason: Optional[SkipReason] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None
