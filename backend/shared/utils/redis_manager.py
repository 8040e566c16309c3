"""
Redis connection manager for the live poller.
Provides the async connection pool, key namespace utilities and the atomic
poll-gate scripts shared by the usage ledger.
"""
from __future__ import annotations

from typing import Any, Optional

import redis.asyncio as aioredis
from redis.asyncio import Redis

from shared.config import Settings, get_settings
from shared.utils.logging import get_logger

logger = get_logger(__name__)

# ── Key namespaces ──────────────────────────────────────────────────────
USAGE_HOURLY_KEY = "live:usage:hourly:{bucket}"
USAGE_DAILY_KEY = "live:usage:daily:{bucket}"
USAGE_MONTHLY_KEY = "live:usage:monthly:{bucket}"
USAGE_LAST_POLL_KEY = "live:usage:last_poll"
FIXTURE_KEY = "live:fixture:{fixture_id}"
FIXTURE_INDEX_KEY = "live:fixture_ids"

# ── TTLs ────────────────────────────────────────────────────────────────
USAGE_HOURLY_TTL_S = 48 * 3600
USAGE_DAILY_TTL_S = 35 * 24 * 3600
USAGE_MONTHLY_TTL_S = 400 * 24 * 3600  # ~13 months, survives month rollover
FIXTURE_TTL_S = 24 * 3600


def fmt_key(template: str, **kwargs: Any) -> str:
    return template.format(**kwargs)


class RedisManager:
    """Manages the async Redis connection pool and the poll-gate scripts."""

    # Lua script: claim the poll slot only if last_poll is absent, non-numeric
    # or older than the interval. Returns {won, previous_ms or ""}.
    _CLAIM_POLL_SLOT_SCRIPT = """
local raw = redis.call("get", KEYS[1])
local prev = raw and tonumber(raw)
if prev and tonumber(ARGV[1]) - prev < tonumber(ARGV[2]) then
    return {0, raw}
end
redis.call("set", KEYS[1], ARGV[1])
if prev then
    return {1, raw}
end
return {1, ""}
"""

    # Lua script: put the previous value back only if the slot still holds our claim.
    _RELEASE_POLL_SLOT_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    if ARGV[2] == "" then
        redis.call("del", KEYS[1])
    else
        redis.call("set", KEYS[1], ARGV[2])
    end
    return 1
end
return 0
"""

    def __init__(self, settings: Settings | None = None) -> None:
        self._settings = settings or get_settings()
        self._pool: Optional[Redis] = None

    async def connect(self) -> None:
        """Initialize the connection pool."""
        self._pool = aioredis.from_url(
            self._settings.redis_url_str,
            max_connections=self._settings.redis_max_connections,
            decode_responses=True,
            socket_connect_timeout=5,
            socket_keepalive=True,
            retry_on_timeout=True,
        )
        await self._pool.ping()
        logger.info("redis_connected", url=self._settings.redis_url_safe_log)

    async def disconnect(self) -> None:
        """Graceful shutdown."""
        if self._pool:
            await self._pool.aclose()
            self._pool = None
            logger.info("redis_disconnected")

    @property
    def client(self) -> Redis:
        if self._pool is None:
            raise RuntimeError("RedisManager not connected. Call connect() first.")
        return self._pool

    async def ping(self) -> bool:
        try:
            return bool(await self.client.ping())
        except Exception:
            return False

    # ── Poll gate ───────────────────────────────────────────────────────
    async def claim_poll_slot(self, now_ms: int, interval_ms: int) -> tuple[bool, Optional[int]]:
        """Atomically claim the poll slot. Returns (won, previous last-poll ms)."""
        won, previous = await self.client.eval(
            self._CLAIM_POLL_SLOT_SCRIPT, 1, USAGE_LAST_POLL_KEY, str(now_ms), str(interval_ms)
        )
        return bool(int(won)), int(previous) if previous not in (None, "") else None

    async def release_poll_slot(self, claimed_ms: int, previous_ms: Optional[int]) -> bool:
        """Undo a claim, restoring the previous last-poll value if nobody re-claimed since."""
        result = await self.client.eval(
            self._RELEASE_POLL_SLOT_SCRIPT,
            1,
            USAGE_LAST_POLL_KEY,
            str(claimed_ms),
            "" if previous_ms is None else str(previous_ms),
        )
        return bool(result)
