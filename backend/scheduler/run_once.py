"""
One-shot poll tick for cron-style deployments.
Exits with status 1 when the tick failed; skipped ticks are a success.
"""
from __future__ import annotations

import asyncio
import sys

from shared.config import get_settings
from shared.utils.logging import get_logger, setup_logging

from scheduler.runtime import LiveRuntime

logger = get_logger(__name__)


async def run_once() -> int:
    settings = get_settings()
    setup_logging("scheduler", extra_context={"mode": "run_once"}, settings=settings)

    runtime = await LiveRuntime.build(settings)
    try:
        result = await runtime.cycle.run_poll_cycle()
    finally:
        await runtime.aclose()

    logger.info("live_poll_once_done", **result.model_dump(mode="json"))
    return 1 if result.error else 0


def main() -> None:
    sys.exit(asyncio.run(run_once()))


if __name__ == "__main__":
    main()
