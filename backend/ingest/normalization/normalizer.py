"""
Sport-specific normalization of raw API-Sports records into LiveMatchState.

Each sport's payload differs:
    football    fixture.id, fixture.status.{short,elapsed}, goals.{home,away}
    basketball  id, status.{short,timer}, scores.{home,away}.total
    rugby       id, status.short, scores.{home,away}  (no elapsed minute)

Native ids are moved into the sport's fixture-id band here, so everything
downstream works with globally unique ids.
"""
from __future__ import annotations

import re
from datetime import datetime
from typing import Any, Callable, Optional

from pydantic import ValidationError

from shared.models.domain import LiveMatchState, utcnow
from shared.models.enums import LiveSport
from shared.models.fixture_ids import encode_fixture_id
from shared.utils.logging import get_logger

logger = get_logger(__name__)

RawRecord = dict[str, Any]

_TIMER_RE = re.compile(r"^(\d+):(\d+)$")


def _dig(record: RawRecord, *path: str) -> Any:
    node: Any = record
    for key in path:
        if not isinstance(node, dict):
            return None
        node = node.get(key)
    return node


def _safe_int(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _score(value: Any) -> int:
    """Provider scores can be null before the first point; treat as 0."""
    parsed = _safe_int(value)
    return parsed if parsed is not None and parsed >= 0 else 0


def parse_timer_minute(timer: Any) -> Optional[int]:
    """Basketball timers look like "5:23"; keep the minutes, drop anything else."""
    if not isinstance(timer, str):
        return None
    match = _TIMER_RE.match(timer.strip())
    if not match:
        return None
    return int(match.group(1))


def _football_fields(record: RawRecord) -> dict[str, Any]:
    return {
        "native_id": _safe_int(_dig(record, "fixture", "id")),
        "status": _dig(record, "fixture", "status", "short") or "",
        "minute": _safe_int(_dig(record, "fixture", "status", "elapsed")),
        "score_home": _score(_dig(record, "goals", "home")),
        "score_away": _score(_dig(record, "goals", "away")),
        "league_id": _safe_int(_dig(record, "league", "id")),
    }


def _basketball_fields(record: RawRecord) -> dict[str, Any]:
    return {
        "native_id": _safe_int(record.get("id")),
        "status": _dig(record, "status", "short") or "",
        "minute": parse_timer_minute(_dig(record, "status", "timer")),
        "score_home": _score(_dig(record, "scores", "home", "total")),
        "score_away": _score(_dig(record, "scores", "away", "total")),
        "league_id": _safe_int(_dig(record, "league", "id")),
    }


def _rugby_fields(record: RawRecord) -> dict[str, Any]:
    return {
        "native_id": _safe_int(record.get("id")),
        "status": _dig(record, "status", "short") or "",
        "minute": None,
        "score_home": _score(_dig(record, "scores", "home")),
        "score_away": _score(_dig(record, "scores", "away")),
        "league_id": _safe_int(_dig(record, "league", "id")),
    }


_FIELD_EXTRACTORS: dict[LiveSport, Callable[[RawRecord], dict[str, Any]]] = {
    LiveSport.FOOTBALL: _football_fields,
    LiveSport.BASKETBALL: _basketball_fields,
    LiveSport.RUGBY: _rugby_fields,
}


def normalize_record(
    sport: LiveSport,
    record: RawRecord,
    now: Optional[datetime] = None,
) -> Optional[LiveMatchState]:
    """Map one raw record; returns None when it has no usable id."""
    fields = _FIELD_EXTRACTORS[sport](record)
    native_id = fields.pop("native_id")
    if native_id is None:
        logger.warning("normalize_missing_id", sport=sport.value)
        return None
    try:
        fixture_id = encode_fixture_id(sport, native_id)
        return LiveMatchState(
            fixture_id=fixture_id,
            sport=sport,
            last_updated_at=now or utcnow(),
            **fields,
        )
    except (ValueError, ValidationError) as exc:
        logger.warning("normalize_record_rejected", sport=sport.value, native_id=native_id, error=str(exc))
        return None


def normalize_records(
    sport: LiveSport,
    records: list[RawRecord],
    now: Optional[datetime] = None,
) -> list[LiveMatchState]:
    """Normalize a batch, stamping every state with the same write time."""
    stamp = now or utcnow()
    states: list[LiveMatchState] = []
    for record in records:
        state = normalize_record(sport, record, stamp)
        if state is not None:
            states.append(state)
    return states
