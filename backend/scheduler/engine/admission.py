"""
Admission control: which live matches earn a slot in the snapshot.

Per sport, a match is eligible when its status is live for that sport and its
competition is listed and enabled. Eligible matches are ordered by league
priority (stable, so provider order breaks ties) and then cut to the sport's
cap.
"""
from __future__ import annotations

from typing import Iterable

from shared.models.domain import LiveMatchState
from shared.models.enums import LiveSport
from shared.polling_config import LivePollingConfig


def eligible(states: Iterable[LiveMatchState], sport: LiveSport, config: LivePollingConfig) -> list[LiveMatchState]:
    policy = config.policy(sport)
    return [
        s for s in states
        if s.sport == sport
        and policy.is_live_status(s.status)
        and config.is_live_enabled(sport, s.league_id)
    ]


def admit(states: Iterable[LiveMatchState], sport: LiveSport, config: LivePollingConfig) -> list[LiveMatchState]:
    """Filter, prioritise and cap one sport's live matches."""
    candidates = eligible(states, sport, config)
    # sorted() is stable; the cap must come after ordering.
    ranked = sorted(candidates, key=lambda s: config.league_priority(sport, s.league_id))
    return ranked[: config.policy(sport).max_live_matches]
