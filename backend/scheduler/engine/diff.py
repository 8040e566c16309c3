"""Change detection between the admitted set and the stored snapshot."""
from __future__ import annotations

from typing import Iterable

from shared.models.domain import LiveMatchState


def compute_delta(
    admitted: Iterable[LiveMatchState],
    existing: Iterable[LiveMatchState],
) -> tuple[list[LiveMatchState], list[int]]:
    """
    Returns (to_write, to_remove).

    to_write holds admitted states that are new or differ from the stored copy
    in any field other than last_updated_at. to_remove holds stored fixture
    ids that are no longer admitted. Running it again after applying the
    delta yields two empty lists.
    """
    stored = {s.fixture_id: s for s in existing}
    to_write: list[LiveMatchState] = []
    admitted_ids: set[int] = set()
    for state in admitted:
        admitted_ids.add(state.fixture_id)
        previous = stored.get(state.fixture_id)
        if previous is None or not previous.same_state(state):
            to_write.append(state)
    to_remove = [fid for fid in stored if fid not in admitted_ids]
    return to_write, to_remove
