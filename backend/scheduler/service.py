"""
Background live poller service.
Runs the poll cycle in a loop, sleeping between ticks according to the
budget tier of the last result.
"""
from __future__ import annotations

import asyncio
import contextlib
import signal

from shared.config import Settings, get_settings
from shared.models.domain import PollCycleResult
from shared.models.enums import UsageTier
from shared.utils.live_log import live_log
from shared.utils.logging import get_logger, setup_logging
from shared.utils.metrics import start_metrics_server

from scheduler.engine.poll_cycle import LivePollCycle
from scheduler.engine.polling import get_poll_interval_ms
from scheduler.runtime import LiveRuntime

logger = get_logger(__name__)


class LivePollerService:
    """
    Drives LivePollCycle until shutdown is requested.

    Next delay after a tick:
      tier95               -> max delay (1h)
      tick ran (not skip)  -> primary sport interval for the tier, capped at max delay
      anything else        -> default delay (30s)
    """

    def __init__(self, cycle: LivePollCycle, settings: Settings | None = None) -> None:
        self._cycle = cycle
        self._settings = settings or get_settings()
        self._shutdown = asyncio.Event()

    def next_delay_s(self, result: PollCycleResult) -> float:
        default_s = self._settings.scheduler_default_delay_s
        max_s = self._settings.scheduler_max_delay_s
        if result.tier == UsageTier.TIER95:
            return max_s
        if result.tier is not None and not result.skipped:
            config = self._cycle.config
            interval_ms = get_poll_interval_ms(config.primary_sport, result.tier, config)
            return min(interval_ms / 1000, max_s)
        return default_s

    async def run(self) -> None:
        while not self._shutdown.is_set():
            try:
                result = await self._cycle.run_poll_cycle()
                delay = self.next_delay_s(result)
            except asyncio.CancelledError:
                break
            except Exception as exc:
                live_log.poll_error(exc)
                delay = self._settings.scheduler_default_delay_s

            logger.debug("live_poller_sleep", delay_s=round(delay, 2))
            with contextlib.suppress(asyncio.TimeoutError):
                await asyncio.wait_for(self._shutdown.wait(), timeout=delay)

    def request_shutdown(self) -> None:
        self._shutdown.set()


async def main() -> None:
    """Live poller entrypoint."""
    settings = get_settings()
    setup_logging("scheduler", settings=settings)
    start_metrics_server()

    runtime = await LiveRuntime.build(settings)
    service = LivePollerService(runtime.cycle, settings)

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, service.request_shutdown)

    logger.info("live_poller_started", instance_id=settings.instance_id)

    try:
        await service.run()
    finally:
        await runtime.aclose()
        logger.info("live_poller_stopped")


def run() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    run()
