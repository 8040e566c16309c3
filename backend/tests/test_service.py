"""Background poller loop tests: next-delay policy and shutdown."""
from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest
from conftest import make_settings

from shared.models.domain import PollCycleResult
from shared.models.enums import SkipReason, UsageTier
from shared.polling_config import LivePollingConfig
from scheduler.service import LivePollerService


def _service(config: LivePollingConfig, **settings_overrides: float) -> tuple[LivePollerService, MagicMock]:
    cycle = MagicMock()
    cycle.config = config
    cycle.run_poll_cycle = AsyncMock(return_value=PollCycleResult(tier=UsageTier.NORMAL))
    return LivePollerService(cycle, make_settings(**settings_overrides)), cycle


@pytest.mark.parametrize(
    "result,expected",
    [
        (PollCycleResult(tier=UsageTier.NORMAL), 30.0),
        (PollCycleResult(tier=UsageTier.TIER70), 60.0),
        (PollCycleResult(tier=UsageTier.TIER85), 90.0),
        (PollCycleResult(tier=UsageTier.TIER95, skipped=True, reason=SkipReason.BUDGET_EXCEEDED), 3600.0),
        (PollCycleResult(tier=UsageTier.TIER70, skipped=True, reason=SkipReason.INTERVAL_NOT_ELAPSED), 30.0),
        (PollCycleResult(skipped=True, reason=SkipReason.KILL_SWITCH), 30.0),
        (PollCycleResult(tier=UsageTier.NORMAL, error="boom"), 30.0),
    ],
)
def test_next_delay(config: LivePollingConfig, result: PollCycleResult, expected: float) -> None:
    service, _ = _service(config)
    assert service.next_delay_s(result) == expected


def test_next_delay_is_capped(config: LivePollingConfig) -> None:
    service, _ = _service(config, scheduler_max_delay_s=45.0)
    assert service.next_delay_s(PollCycleResult(tier=UsageTier.TIER85)) == 45.0


@pytest.mark.asyncio
async def test_run_stops_on_shutdown(config: LivePollingConfig) -> None:
    service, cycle = _service(config, scheduler_default_delay_s=0.01)
    cycle.run_poll_cycle.return_value = PollCycleResult(skipped=True, reason=SkipReason.KILL_SWITCH)

    task = asyncio.create_task(service.run())
    await asyncio.sleep(0.05)
    service.request_shutdown()
    await asyncio.wait_for(task, timeout=1.0)

    assert cycle.run_poll_cycle.await_count >= 2


@pytest.mark.asyncio
async def test_run_survives_unexpected_errors(config: LivePollingConfig) -> None:
    service, cycle = _service(config, scheduler_default_delay_s=0.2)
    cycle.run_poll_cycle.side_effect = [RuntimeError("boom"), PollCycleResult(skipped=True)]

    async def stop_after_second() -> None:
        while cycle.run_poll_cycle.await_count < 2:
            await asyncio.sleep(0.005)
        service.request_shutdown()

    await asyncio.wait_for(asyncio.gather(service.run(), stop_after_second()), timeout=1.0)
    assert cycle.run_poll_cycle.await_count == 2


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "result,exit_code",
    [
        (PollCycleResult(tier=UsageTier.NORMAL, updated=2, api_calls=3), 0),
        (PollCycleResult(tier=UsageTier.TIER70, skipped=True, reason=SkipReason.INTERVAL_NOT_ELAPSED), 0),
        (PollCycleResult(tier=UsageTier.NORMAL, error="boom"), 1),
    ],
)
async def test_run_once_exit_code(
    monkeypatch: pytest.MonkeyPatch, result: PollCycleResult, exit_code: int
) -> None:
    from scheduler import run_once as run_once_module

    runtime = MagicMock()
    runtime.cycle.run_poll_cycle = AsyncMock(return_value=result)
    runtime.aclose = AsyncMock()
    monkeypatch.setattr(run_once_module, "get_settings", lambda: make_settings())
    monkeypatch.setattr(run_once_module.LiveRuntime, "build", AsyncMock(return_value=runtime))

    assert await run_once_module.run_once() == exit_code
    runtime.aclose.assert_awaited_once()
