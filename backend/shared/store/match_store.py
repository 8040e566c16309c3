"""
Live match state store: the current snapshot of admitted live fixtures.

MatchStateStore is the single abstraction the poll cycle writes and readers
poll. Backends:
  - RedisMatchStateStore: one key per fixture (24h TTL) plus a set index of
    live fixture ids so reading everything needs no key scan.
  - FileMatchStateStore: in-process dict persisted to a JSON file after each
    mutation; loaded lazily and reloaded when another process rewrote it.

The store is a cache of "now", not a log: there is no history.
"""
from __future__ import annotations

import abc
import asyncio
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Callable, Iterable, Optional

from pydantic import ValidationError
from redis.exceptions import RedisError

from shared.models.domain import LiveMatchState, utcnow
from shared.store.json_file import JsonSnapshotFile
from shared.utils.logging import get_logger
from shared.utils.metrics import BACKEND_ERRORS
from shared.utils.redis_manager import (
    FIXTURE_INDEX_KEY,
    FIXTURE_KEY,
    FIXTURE_TTL_S,
    RedisManager,
    fmt_key,
)

logger = get_logger(__name__)

Clock = Callable[[], datetime]

FIXTURE_TTL = timedelta(seconds=FIXTURE_TTL_S)
BACKEND_ERRORS_CAUGHT = (RedisError, OSError)


class MatchStateStore(abc.ABC):
    """Current snapshot of live matches keyed by band-encoded fixture_id."""

    @abc.abstractmethod
    async def set_match(self, state: LiveMatchState) -> None: ...

    @abc.abstractmethod
    async def set_matches(self, states: Iterable[LiveMatchState]) -> None: ...

    @abc.abstractmethod
    async def get_match(self, fixture_id: int) -> Optional[LiveMatchState]: ...

    @abc.abstractmethod
    async def get_all_matches(self) -> list[LiveMatchState]: ...

    @abc.abstractmethod
    async def remove_match(self, fixture_id: int) -> None: ...

    @abc.abstractmethod
    async def remove_matches(self, fixture_ids: Iterable[int]) -> None: ...


def _split_index(members: Iterable[str]) -> tuple[list[str], list[str]]:
    """Split index members into numeric fixture ids (sorted) and malformed entries."""
    ids: list[str] = []
    malformed: list[str] = []
    for member in members:
        try:
            int(member)
        except (TypeError, ValueError):
            malformed.append(member)
            continue
        ids.append(member)
    ids.sort(key=int)
    if malformed:
        logger.warning("match_index_malformed_members", members=malformed)
    return ids, malformed


def _parse_state(raw: str, fixture_id: Any) -> Optional[LiveMatchState]:
    try:
        return LiveMatchState.model_validate_json(raw)
    except ValidationError as exc:
        logger.warning("live_match_record_invalid", fixture_id=fixture_id, error=str(exc))
        return None


# ── Redis backend ───────────────────────────────────────────────────────
class RedisMatchStateStore(MatchStateStore):

    def __init__(self, redis: RedisManager) -> None:
        self._redis = redis

    def _backend_failed(self, op: str, exc: Exception) -> None:
        BACKEND_ERRORS.labels(component="store").inc()
        logger.warning("match_store_unavailable", backend="redis", op=op, error=str(exc))

    async def set_match(self, state: LiveMatchState) -> None:
        await self.set_matches([state])

    async def set_matches(self, states: Iterable[LiveMatchState]) -> None:
        states = list(states)
        if not states:
            return
        try:
            pipe = self._redis.client.pipeline(transaction=True)
            for state in states:
                key = fmt_key(FIXTURE_KEY, fixture_id=state.fixture_id)
                pipe.set(key, state.model_dump_json(), ex=FIXTURE_TTL_S)
                pipe.sadd(FIXTURE_INDEX_KEY, str(state.fixture_id))
            await pipe.execute()
        except BACKEND_ERRORS_CAUGHT as exc:
            self._backend_failed("set_matches", exc)

    async def get_match(self, fixture_id: int) -> Optional[LiveMatchState]:
        try:
            raw = await self._redis.client.get(fmt_key(FIXTURE_KEY, fixture_id=fixture_id))
        except BACKEND_ERRORS_CAUGHT as exc:
            self._backend_failed("get_match", exc)
            return None
        if not raw:
            return None
        return _parse_state(raw, fixture_id)

    async def get_all_matches(self) -> list[LiveMatchState]:
        client = self._redis.client
        try:
            ids, malformed = _split_index(await client.smembers(FIXTURE_INDEX_KEY))
            if not ids and not malformed:
                return []
            raws = await client.mget([fmt_key(FIXTURE_KEY, fixture_id=i) for i in ids]) if ids else []
        except BACKEND_ERRORS_CAUGHT as exc:
            self._backend_failed("get_all_matches", exc)
            return []

        states: list[LiveMatchState] = []
        dangling: list[str] = list(malformed)
        for fixture_id, raw in zip(ids, raws):
            if raw is None:
                dangling.append(fixture_id)
                continue
            state = _parse_state(raw, fixture_id)
            if state is not None:
                states.append(state)

        if dangling:
            # Record TTL fired before an explicit removal, or the member is not a fixture id.
            try:
                await client.srem(FIXTURE_INDEX_KEY, *dangling)
            except BACKEND_ERRORS_CAUGHT as exc:
                self._backend_failed("prune_index", exc)
        return states

    async def remove_match(self, fixture_id: int) -> None:
        await self.remove_matches([fixture_id])

    async def remove_matches(self, fixture_ids: Iterable[int]) -> None:
        fixture_ids = list(fixture_ids)
        if not fixture_ids:
            return
        try:
            pipe = self._redis.client.pipeline(transaction=True)
            for fixture_id in fixture_ids:
                pipe.delete(fmt_key(FIXTURE_KEY, fixture_id=fixture_id))
                pipe.srem(FIXTURE_INDEX_KEY, str(fixture_id))
            await pipe.execute()
        except BACKEND_ERRORS_CAUGHT as exc:
            self._backend_failed("remove_matches", exc)


# ── File backend ────────────────────────────────────────────────────────
class FileMatchStateStore(MatchStateStore):
    """
    Fallback used when no Redis is configured. Entries older than the
    durable TTL are treated as gone, so both backends expire dead fixtures.
    """

    def __init__(self, path: Path, clock: Clock = utcnow) -> None:
        self._file = JsonSnapshotFile(path)
        self._clock = clock
        self._matches: dict[int, LiveMatchState] = {}
        self._loaded = False
        self._lock = asyncio.Lock()

    def _ensure_loaded(self) -> None:
        if self._loaded and not self._file.changed_on_disk():
            return
        document = self._file.load(default={})
        matches: dict[int, LiveMatchState] = {}
        if isinstance(document, dict):
            for key, value in document.items():
                try:
                    state = LiveMatchState.model_validate(value)
                except ValidationError as exc:
                    logger.warning("live_match_record_invalid", fixture_id=key, error=str(exc))
                    continue
                matches[state.fixture_id] = state
        self._matches = matches
        self._loaded = True

    def _persist(self, op: str) -> None:
        self._matches = {k: v for k, v in self._matches.items() if self._is_live(v)}
        document = {
            str(fixture_id): state.model_dump(mode="json")
            for fixture_id, state in sorted(self._matches.items())
        }
        try:
            self._file.save(document)
        except OSError as exc:
            BACKEND_ERRORS.labels(component="store").inc()
            logger.warning("match_store_unavailable", backend="file", op=op, error=str(exc))

    def _is_live(self, state: LiveMatchState) -> bool:
        return self._clock() - state.last_updated_at < FIXTURE_TTL

    async def set_match(self, state: LiveMatchState) -> None:
        await self.set_matches([state])

    async def set_matches(self, states: Iterable[LiveMatchState]) -> None:
        states = list(states)
        if not states:
            return
        async with self._lock:
            self._ensure_loaded()
            for state in states:
                self._matches[state.fixture_id] = state
            self._persist("set_matches")

    async def get_match(self, fixture_id: int) -> Optional[LiveMatchState]:
        self._ensure_loaded()
        state = self._matches.get(fixture_id)
        if state is None or not self._is_live(state):
            return None
        return state

    async def get_all_matches(self) -> list[LiveMatchState]:
        self._ensure_loaded()
        return [s for _, s in sorted(self._matches.items()) if self._is_live(s)]

    async def remove_match(self, fixture_id: int) -> None:
        await self.remove_matches([fixture_id])

    async def remove_matches(self, fixture_ids: Iterable[int]) -> None:
        fixture_ids = list(fixture_ids)
        if not fixture_ids:
            return
        async with self._lock:
            self._ensure_loaded()
            for fixture_id in fixture_ids:
                self._matches.pop(fixture_id, None)
            self._persist("remove_matches")


def create_match_store(
    redis: Optional[RedisManager],
    data_dir: Path,
    clock: Clock = utcnow,
) -> MatchStateStore:
    """Pick the backend once at startup: Redis when connected, file otherwise."""
    if redis is not None:
        return RedisMatchStateStore(redis)
    return FileMatchStateStore(Path(data_dir) / "liveMatches.json", clock=clock)
