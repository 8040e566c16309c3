"""
Runtime wiring for the live poller.
Builds Redis, the usage ledger, the match store, the sport adapters and the
poll cycle once, and hands them out by reference. Shared by the background
service, the one-shot runner and the API.
"""
from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Awaitable, Callable, Optional

from shared.config import Settings, get_settings
from shared.models.domain import utcnow
from shared.polling_config import LivePollingConfig
from shared.store.match_store import MatchStateStore, create_match_store
from shared.store.usage_ledger import UsageLedger, create_usage_ledger
from shared.utils.logging import bind_live_context, get_logger
from shared.utils.redis_manager import RedisManager

from ingest.providers.registry import AdapterRegistry
from scheduler.engine.poll_cycle import LivePollCycle

logger = get_logger(__name__)

CONNECT_RETRY_ATTEMPTS = 5
CONNECT_RETRY_BASE_DELAY_S = 1.0


async def connect_with_retry(connect_fn: Callable[[], Awaitable[None]], name: str) -> None:
    """Call async connect_fn(); retry with exponential backoff on failure."""
    for attempt in range(1, CONNECT_RETRY_ATTEMPTS + 1):
        try:
            await connect_fn()
            return
        except Exception as exc:
            if attempt == CONNECT_RETRY_ATTEMPTS:
                raise
            delay = CONNECT_RETRY_BASE_DELAY_S * (2 ** (attempt - 1))
            logger.warning(
                "connect_retry",
                name=name,
                attempt=attempt,
                max_attempts=CONNECT_RETRY_ATTEMPTS,
                delay_s=delay,
                error=str(exc),
            )
            await asyncio.sleep(delay)


class LiveRuntime:
    """Container for the long-lived collaborators of the poller."""

    def __init__(
        self,
        settings: Settings,
        config: LivePollingConfig,
        ledger: UsageLedger,
        store: MatchStateStore,
        adapters: AdapterRegistry,
        redis: Optional[RedisManager] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.settings = settings
        self.config = config
        self.ledger = ledger
        self.store = store
        self.adapters = adapters
        self.redis = redis
        self.cycle = LivePollCycle(config, ledger, store, adapters.adapters, clock=clock)

    @classmethod
    async def build(
        cls,
        settings: Settings | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> "LiveRuntime":
        settings = settings or get_settings()
        config = LivePollingConfig.from_settings(settings)

        redis: Optional[RedisManager] = None
        if settings.redis_url is not None:
            redis = RedisManager(settings)
            await connect_with_retry(redis.connect, "Redis")
        else:
            logger.info("live_store_file_backend", data_dir=str(settings.data_dir))

        ledger = create_usage_ledger(redis, settings.data_dir, clock=clock)
        store = create_match_store(redis, settings.data_dir, clock=clock)
        adapters = AdapterRegistry.from_settings(settings, config)
        await adapters.start()

        backend = "redis" if redis is not None else "file"
        bind_live_context(
            backend=backend,
            budget=config.monthly_budget,
            polling_disabled=config.polling_disabled,
        )
        logger.info(
            "live_runtime_ready",
            sports=[s.value for s in adapters.adapters],
        )
        return cls(settings, config, ledger, store, adapters, redis=redis, clock=clock)

    async def aclose(self) -> None:
        await self.adapters.close()
        if self.redis is not None:
            await self.redis.disconnect()
