"""
Usage ledger: how many metered API calls have been spent this hour, day and
month, plus the last-poll timestamp that gates the poll cycle.

Two interchangeable backends sit behind UsageLedger:
  - RedisUsageLedger: INCR counters per bucket with TTLs, atomic Lua gate.
  - FileUsageLedger:  hourly records in a local JSON file; writes and the gate
    run under an asyncio.Lock plus an flock shared with other processes.

Both fail open: backend errors are logged and read as zero usage and no
previous poll.
"""
from __future__ import annotations

import abc
import asyncio
import math
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, AsyncIterator, Callable, Optional

from redis.exceptions import RedisError

from shared.models.domain import DomainModel, utcnow
from shared.store.json_file import JsonSnapshotFile
from shared.utils.logging import get_logger
from shared.utils.metrics import BACKEND_ERRORS
from shared.utils.redis_manager import (
    USAGE_DAILY_KEY,
    USAGE_DAILY_TTL_S,
    USAGE_HOURLY_KEY,
    USAGE_HOURLY_TTL_S,
    USAGE_LAST_POLL_KEY,
    USAGE_MONTHLY_KEY,
    USAGE_MONTHLY_TTL_S,
    RedisManager,
    fmt_key,
)

logger = get_logger(__name__)

Clock = Callable[[], datetime]

FILE_RETENTION = timedelta(days=35)
BACKEND_ERRORS_CAUGHT = (RedisError, OSError)


def hour_bucket(now: datetime) -> str:
    return now.astimezone(timezone.utc).strftime("%Y-%m-%d-%H")


def day_bucket(now: datetime) -> str:
    return now.astimezone(timezone.utc).strftime("%Y-%m-%d")


def month_bucket(now: datetime) -> str:
    return now.astimezone(timezone.utc).strftime("%Y-%m")


def to_epoch_ms(ts: datetime) -> int:
    return int(ts.timestamp() * 1000)


def from_epoch_ms(ms: int) -> datetime:
    return datetime.fromtimestamp(ms / 1000, tz=timezone.utc)


class PollSlotClaim(DomainModel):
    """Result of the atomic interval gate."""
    won: bool
    claimed_at: datetime
    previous: Optional[datetime] = None
    # False when the backend was unreachable and the gate failed open.
    enforced: bool = True

    @property
    def elapsed_ms(self) -> Optional[int]:
        if self.previous is None:
            return None
        return to_epoch_ms(self.claimed_at) - to_epoch_ms(self.previous)


class UsageLedger(abc.ABC):
    """Durable counters of API calls consumed and the last-poll gate."""

    @abc.abstractmethod
    async def increment_api_usage(self) -> None:
        """Count one API call in the current hour/day/month and stamp last-poll time."""

    @abc.abstractmethod
    async def get_hourly_count(self) -> int: ...

    @abc.abstractmethod
    async def get_daily_count(self) -> int: ...

    @abc.abstractmethod
    async def get_monthly_count(self) -> int: ...

    @abc.abstractmethod
    async def get_last_poll_time(self) -> Optional[datetime]: ...

    @abc.abstractmethod
    async def set_last_poll_time(self, ts: datetime) -> None: ...

    @abc.abstractmethod
    async def try_claim_poll_slot(self, now: datetime, interval_ms: float) -> PollSlotClaim:
        """
        Check-and-set the last-poll time in one step.

        Wins (and records now as the last poll) only if there is no previous
        poll or at least interval_ms has elapsed since it.
        """

    @abc.abstractmethod
    async def release_poll_slot(self, claim: PollSlotClaim) -> None:
        """Undo a won claim so a failed tick does not delay the next attempt."""


def _lost_claim(now: datetime, previous: Optional[datetime]) -> PollSlotClaim:
    return PollSlotClaim(won=False, claimed_at=now, previous=previous)


# ── Redis backend ───────────────────────────────────────────────────────
class RedisUsageLedger(UsageLedger):

    def __init__(self, redis: RedisManager, clock: Clock = utcnow) -> None:
        self._redis = redis
        self._clock = clock

    def _backend_failed(self, op: str, exc: Exception) -> None:
        BACKEND_ERRORS.labels(component="ledger").inc()
        logger.warning("usage_ledger_unavailable", backend="redis", op=op, error=str(exc))

    async def increment_api_usage(self) -> None:
        now = self._clock()
        hourly = fmt_key(USAGE_HOURLY_KEY, bucket=hour_bucket(now))
        daily = fmt_key(USAGE_DAILY_KEY, bucket=day_bucket(now))
        monthly = fmt_key(USAGE_MONTHLY_KEY, bucket=month_bucket(now))
        try:
            pipe = self._redis.client.pipeline(transaction=True)
            pipe.incr(hourly)
            pipe.expire(hourly, USAGE_HOURLY_TTL_S)
            pipe.incr(daily)
            pipe.expire(daily, USAGE_DAILY_TTL_S)
            pipe.incr(monthly)
            pipe.expire(monthly, USAGE_MONTHLY_TTL_S)
            pipe.set(USAGE_LAST_POLL_KEY, str(to_epoch_ms(now)))
            await pipe.execute()
        except BACKEND_ERRORS_CAUGHT as exc:
            self._backend_failed("increment", exc)

    async def _get_count(self, key: str) -> int:
        try:
            raw = await self._redis.client.get(key)
        except BACKEND_ERRORS_CAUGHT as exc:
            self._backend_failed("get_count", exc)
            return 0
        return int(raw) if raw else 0

    async def get_hourly_count(self) -> int:
        return await self._get_count(fmt_key(USAGE_HOURLY_KEY, bucket=hour_bucket(self._clock())))

    async def get_daily_count(self) -> int:
        return await self._get_count(fmt_key(USAGE_DAILY_KEY, bucket=day_bucket(self._clock())))

    async def get_monthly_count(self) -> int:
        return await self._get_count(fmt_key(USAGE_MONTHLY_KEY, bucket=month_bucket(self._clock())))

    async def get_last_poll_time(self) -> Optional[datetime]:
        try:
            raw = await self._redis.client.get(USAGE_LAST_POLL_KEY)
        except BACKEND_ERRORS_CAUGHT as exc:
            self._backend_failed("get_last_poll", exc)
            return None
        if not raw:
            return None
        try:
            return from_epoch_ms(int(raw))
        except ValueError:
            # Older deployments stored an ISO string here.
            parsed = _parse_iso(raw)
            return None if parsed == _EPOCH else parsed

    async def set_last_poll_time(self, ts: datetime) -> None:
        try:
            await self._redis.client.set(USAGE_LAST_POLL_KEY, str(to_epoch_ms(ts)))
        except BACKEND_ERRORS_CAUGHT as exc:
            self._backend_failed("set_last_poll", exc)

    async def try_claim_poll_slot(self, now: datetime, interval_ms: float) -> PollSlotClaim:
        if math.isinf(interval_ms):
            return _lost_claim(now, await self.get_last_poll_time())
        try:
            won, previous_ms = await self._redis.claim_poll_slot(to_epoch_ms(now), int(interval_ms))
        except BACKEND_ERRORS_CAUGHT as exc:
            self._backend_failed("claim_poll_slot", exc)
            return PollSlotClaim(won=True, claimed_at=now, enforced=False)
        previous = from_epoch_ms(previous_ms) if previous_ms is not None else None
        return PollSlotClaim(won=won, claimed_at=now, previous=previous)

    async def release_poll_slot(self, claim: PollSlotClaim) -> None:
        if not claim.won or not claim.enforced:
            return
        previous_ms = to_epoch_ms(claim.previous) if claim.previous is not None else None
        try:
            await self._redis.release_poll_slot(to_epoch_ms(claim.claimed_at), previous_ms)
        except BACKEND_ERRORS_CAUGHT as exc:
            self._backend_failed("release_poll_slot", exc)


# ── File backend ────────────────────────────────────────────────────────
class FileUsageLedger(UsageLedger):
    """
    Hourly usage records in a JSON file. Daily and monthly totals are sums
    over the hourly records; records older than 35 days are pruned.
    """

    def __init__(self, path: Path, clock: Clock = utcnow) -> None:
        self._file = JsonSnapshotFile(path)
        self._clock = clock
        self._hours: list[dict[str, Any]] = []
        self._last_poll: Optional[str] = None
        self._loaded = False
        self._lock = asyncio.Lock()

    def _ensure_loaded(self, force: bool = False) -> None:
        # force: re-read even when the mtime looks unchanged. With no file on disk
        # (unwritable data dir) the in-memory counts are all there is.
        if self._loaded and not self._file.changed_on_disk() and not (force and self._file.exists()):
            return
        document = self._file.load(default={})
        if isinstance(document, list):
            # Bare list of hourly records, as written by the first file format.
            document = {"hours": document}
        hours = document.get("hours") if isinstance(document, dict) else None
        self._hours = [h for h in hours or [] if isinstance(h, dict) and "hour" in h]
        self._last_poll = document.get("last_poll") if isinstance(document, dict) else None
        self._loaded = True

    @asynccontextmanager
    async def _exclusive(self) -> AsyncIterator[None]:
        """Read-modify-write section: in-process lock, cross-process flock, fresh reload."""
        async with self._lock:
            with self._file.locked():
                self._ensure_loaded(force=True)
                yield

    def _persist(self, op: str) -> None:
        try:
            self._file.save({"hours": self._hours, "last_poll": self._last_poll})
        except OSError as exc:
            BACKEND_ERRORS.labels(component="ledger").inc()
            logger.warning("usage_ledger_unavailable", backend="file", op=op, error=str(exc))

    def _sum(self, prefix: str) -> int:
        self._ensure_loaded()
        return sum(int(h.get("count", 0)) for h in self._hours if str(h["hour"]).startswith(prefix))

    async def increment_api_usage(self) -> None:
        async with self._exclusive():
            now = self._clock()
            stamp = now.isoformat()
            key = hour_bucket(now)
            record = next((h for h in self._hours if h["hour"] == key), None)
            if record is None:
                self._hours.append({"hour": key, "count": 1, "last_updated": stamp})
            else:
                record["count"] = int(record.get("count", 0)) + 1
                record["last_updated"] = stamp
            cutoff = now - FILE_RETENTION
            self._hours = [h for h in self._hours if _parse_iso(h.get("last_updated")) > cutoff]
            self._last_poll = stamp
            self._persist("increment")

    async def get_hourly_count(self) -> int:
        return self._sum(hour_bucket(self._clock()))

    async def get_daily_count(self) -> int:
        return self._sum(day_bucket(self._clock()) + "-")

    async def get_monthly_count(self) -> int:
        return self._sum(month_bucket(self._clock()) + "-")

    async def get_last_poll_time(self) -> Optional[datetime]:
        self._ensure_loaded()
        return self._last_poll_time()

    def _last_poll_time(self) -> Optional[datetime]:
        if self._last_poll:
            return _parse_iso(self._last_poll)
        stamps = [_parse_iso(h.get("last_updated")) for h in self._hours]
        latest = max(stamps, default=None)
        if latest is None or latest == _EPOCH:
            return None
        return latest

    async def set_last_poll_time(self, ts: datetime) -> None:
        async with self._exclusive():
            self._last_poll = ts.isoformat()
            self._persist("set_last_poll")

    async def try_claim_poll_slot(self, now: datetime, interval_ms: float) -> PollSlotClaim:
        async with self._exclusive():
            previous = self._last_poll_time()
            if math.isinf(interval_ms):
                return _lost_claim(now, previous)
            if previous is not None and (now - previous).total_seconds() * 1000 < interval_ms:
                return _lost_claim(now, previous)
            self._last_poll = now.isoformat()
            self._persist("claim_poll_slot")
            return PollSlotClaim(won=True, claimed_at=now, previous=previous)

    async def release_poll_slot(self, claim: PollSlotClaim) -> None:
        if not claim.won:
            return
        async with self._exclusive():
            if self._last_poll != claim.claimed_at.isoformat():
                return
            self._last_poll = claim.previous.isoformat() if claim.previous is not None else None
            self._persist("release_poll_slot")


_EPOCH = datetime.fromtimestamp(0, tz=timezone.utc)


def _parse_iso(value: Optional[str]) -> datetime:
    if not value:
        return _EPOCH
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return _EPOCH
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def create_usage_ledger(
    redis: Optional[RedisManager],
    data_dir: Path,
    clock: Clock = utcnow,
) -> UsageLedger:
    """Pick the backend once at startup: Redis when connected, file otherwise."""
    if redis is not None:
        return RedisUsageLedger(redis, clock=clock)
    return FileUsageLedger(Path(data_dir) / "liveUsage.json", clock=clock)
