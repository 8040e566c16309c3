"""
Poll cycle orchestrator tests.

File-backed ledger and store on tmp_path for end-to-end ticks, a mocked
ledger where the test needs to dictate usage, fakeredis for duplicate
triggers racing on the Lua gate.

Run: pytest backend/tests/test_poll_cycle.py -v
"""
from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest
from conftest import FrozenClock, basketball_record, fake_adapter, football_record, make_settings, rugby_record

from shared.models.enums import LiveSport, SkipReason, UsageTier
from shared.polling_config import LivePollingConfig
from shared.store.match_store import FileMatchStateStore, MatchStateStore, RedisMatchStateStore
from shared.store.usage_ledger import FileUsageLedger, PollSlotClaim, RedisUsageLedger, UsageLedger
from shared.utils.live_log import LiveEventLog
from shared.utils.redis_manager import RedisManager
from scheduler.engine.poll_cycle import LivePollCycle


def _adapters(
    football: list[dict[str, Any]] | None = None,
    basketball: list[dict[str, Any]] | None = None,
    rugby: list[dict[str, Any]] | None = None,
) -> dict[LiveSport, MagicMock]:
    return {
        LiveSport.FOOTBALL: fake_adapter(LiveSport.FOOTBALL, football),
        LiveSport.BASKETBALL: fake_adapter(LiveSport.BASKETBALL, basketball),
        LiveSport.RUGBY: fake_adapter(LiveSport.RUGBY, rugby),
    }


def _mock_ledger(monthly: int = 0) -> MagicMock:
    ledger = MagicMock(spec=UsageLedger)
    ledger.get_monthly_count = AsyncMock(return_value=monthly)
    ledger.get_hourly_count = AsyncMock(return_value=0)
    ledger.get_daily_count = AsyncMock(return_value=0)
    ledger.try_claim_poll_slot = AsyncMock(
        side_effect=lambda now, interval_ms: PollSlotClaim(won=True, claimed_at=now)
    )
    ledger.increment_api_usage = AsyncMock()
    ledger.set_last_poll_time = AsyncMock()
    ledger.release_poll_slot = AsyncMock()
    return ledger


@pytest.fixture
def log() -> MagicMock:
    return MagicMock(spec=LiveEventLog)


def _cycle(
    config: LivePollingConfig,
    ledger: UsageLedger,
    store: MatchStateStore,
    adapters: dict[LiveSport, MagicMock],
    clock: FrozenClock,
    log: MagicMock,
) -> LivePollCycle:
    return LivePollCycle(config, ledger, store, adapters, clock=clock, log=log)


# ── Skips ───────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_kill_switch_touches_nothing(file_store: FileMatchStateStore, clock: FrozenClock, log: MagicMock) -> None:
    config = LivePollingConfig.from_settings(make_settings(polling_disabled=True))
    ledger = _mock_ledger()
    adapters = _adapters(football=[football_record(1)])

    result = await _cycle(config, ledger, file_store, adapters, clock, log).run_poll_cycle()

    assert result.skipped and result.reason == SkipReason.KILL_SWITCH
    log.kill_switch_active.assert_called_once()
    ledger.get_monthly_count.assert_not_awaited()
    ledger.try_claim_poll_slot.assert_not_awaited()
    ledger.increment_api_usage.assert_not_awaited()
    for adapter in adapters.values():
        adapter.fetch_live.assert_not_awaited()
    assert await file_store.get_all_matches() == []


@pytest.mark.asyncio
async def test_budget_at_96_percent_skips_without_calls(
    config: LivePollingConfig, file_store: FileMatchStateStore, clock: FrozenClock, log: MagicMock
) -> None:
    ledger = _mock_ledger(monthly=2880)
    adapters = _adapters(football=[football_record(1)])

    result = await _cycle(config, ledger, file_store, adapters, clock, log).run_poll_cycle()

    assert result.skipped
    assert result.tier == UsageTier.TIER95
    assert result.reason == SkipReason.BUDGET_EXCEEDED
    assert log.poll_skip.call_args.args[0] == "budget_exceeded_95"
    ledger.try_claim_poll_slot.assert_not_awaited()
    ledger.increment_api_usage.assert_not_awaited()
    ledger.set_last_poll_time.assert_not_awaited()
    for adapter in adapters.values():
        adapter.fetch_live.assert_not_awaited()


@pytest.mark.asyncio
async def test_interval_gate_skips_until_interval_elapsed(
    config: LivePollingConfig,
    file_ledger: FileUsageLedger,
    file_store: FileMatchStateStore,
    clock: FrozenClock,
    log: MagicMock,
) -> None:
    adapters = _adapters(football=[football_record(1)])
    cycle = _cycle(config, file_ledger, file_store, adapters, clock, log)

    assert not (await cycle.run_poll_cycle()).skipped

    clock.advance(seconds=29)
    second = await cycle.run_poll_cycle()
    assert second.skipped and second.reason == SkipReason.INTERVAL_NOT_ELAPSED
    assert adapters[LiveSport.FOOTBALL].fetch_live.await_count == 1

    clock.advance(seconds=1)
    assert not (await cycle.run_poll_cycle()).skipped
    assert await file_ledger.get_monthly_count() == 6


@pytest.mark.asyncio
async def test_tier70_doubles_the_gate_interval(
    config: LivePollingConfig, file_store: FileMatchStateStore, clock: FrozenClock, log: MagicMock
) -> None:
    ledger = _mock_ledger(monthly=2100)
    cycle = _cycle(config, ledger, file_store, _adapters(), clock, log)

    result = await cycle.run_poll_cycle()

    assert result.tier == UsageTier.TIER70
    ledger.try_claim_poll_slot.assert_awaited_once_with(clock.now, 60_000)


# ── Successful ticks ────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_tick_writes_admitted_matches_and_counts_three_calls(
    config: LivePollingConfig,
    file_ledger: FileUsageLedger,
    file_store: FileMatchStateStore,
    clock: FrozenClock,
    log: MagicMock,
) -> None:
    adapters = _adapters(
        football=[football_record(100, league_id=39), football_record(101, league_id=9999)],
        basketball=[basketball_record(200, league_id=12)],
        rugby=[rugby_record(300, league_id=16)],
    )
    result = await _cycle(config, file_ledger, file_store, adapters, clock, log).run_poll_cycle()

    assert result.ok and not result.skipped
    assert result.updated == 3
    assert result.removed == 0
    assert result.api_calls == 3
    assert result.tier == UsageTier.NORMAL
    ids = [s.fixture_id for s in await file_store.get_all_matches()]
    assert ids == [100, 1_000_000_200, 2_000_000_300]
    assert await file_ledger.get_monthly_count() == 3
    assert await file_ledger.get_last_poll_time() == clock.now
    log.poll_start.assert_called_once_with("normal")
    log.poll_success.assert_called_once_with(3, 0, 3, "normal")
    log.usage_snapshot.assert_called_once_with(3, 3, 3, 3000)


@pytest.mark.asyncio
async def test_unchanged_snapshot_writes_nothing_and_stale_ids_are_removed(
    config: LivePollingConfig,
    file_ledger: FileUsageLedger,
    file_store: FileMatchStateStore,
    clock: FrozenClock,
    log: MagicMock,
) -> None:
    adapters = _adapters(football=[football_record(1), football_record(2)])
    cycle = _cycle(config, file_ledger, file_store, adapters, clock, log)
    first = await cycle.run_poll_cycle()
    assert first.updated == 2

    clock.advance(seconds=30)
    second = await cycle.run_poll_cycle()
    assert (second.updated, second.removed) == (0, 0)

    adapters[LiveSport.FOOTBALL].fetch_live.return_value = [football_record(1, home=2)]
    clock.advance(seconds=30)
    third = await cycle.run_poll_cycle()
    assert (third.updated, third.removed) == (1, 1)
    [state] = await file_store.get_all_matches()
    assert (state.fixture_id, state.score_home) == (1, 2)


@pytest.mark.asyncio
async def test_admission_cap_limits_snapshot(
    file_ledger: FileUsageLedger, file_store: FileMatchStateStore, clock: FrozenClock, log: MagicMock
) -> None:
    config = LivePollingConfig.from_settings(make_settings(football_max_live_matches=2))
    adapters = _adapters(football=[
        football_record(1, league_id=136),
        football_record(2, league_id=39),
        football_record(3, league_id=2),
    ])
    result = await _cycle(config, file_ledger, file_store, adapters, clock, log).run_poll_cycle()

    assert result.admitted == 2
    assert [s.fixture_id for s in await file_store.get_all_matches()] == [2, 3]


# ── Failures ────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_one_adapter_raising_does_not_block_others(
    config: LivePollingConfig,
    file_ledger: FileUsageLedger,
    file_store: FileMatchStateStore,
    clock: FrozenClock,
    log: MagicMock,
) -> None:
    adapters = _adapters(football=[football_record(1)], rugby=[rugby_record(3)])
    adapters[LiveSport.BASKETBALL].fetch_live.side_effect = RuntimeError("basketball down")

    result = await _cycle(config, file_ledger, file_store, adapters, clock, log).run_poll_cycle()

    assert result.ok
    assert result.updated == 2
    assert result.api_calls == 3
    assert await file_ledger.get_monthly_count() == 3
    log.adapter_failed.assert_called_once()
    assert log.adapter_failed.call_args.args[0] == "basketball"


@pytest.mark.asyncio
async def test_tick_failure_releases_gate_and_does_not_count(
    config: LivePollingConfig,
    file_ledger: FileUsageLedger,
    file_store: FileMatchStateStore,
    clock: FrozenClock,
    log: MagicMock,
) -> None:
    file_store.get_all_matches = AsyncMock(side_effect=RuntimeError("store exploded"))
    cycle = _cycle(config, file_ledger, file_store, _adapters(football=[football_record(1)]), clock, log)

    result = await cycle.run_poll_cycle()

    assert not result.ok
    assert result.error == "store exploded"
    assert not result.skipped
    assert await file_ledger.get_monthly_count() == 0
    assert await file_ledger.get_last_poll_time() is None
    log.poll_error.assert_called_once()
    log.poll_success.assert_not_called()

    # The released slot lets the next tick run immediately.
    file_store.get_all_matches = AsyncMock(return_value=[])
    assert not (await cycle.run_poll_cycle()).skipped


# ── Tier transitions ────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_tier_changes_are_logged_once(
    config: LivePollingConfig, file_store: FileMatchStateStore, clock: FrozenClock, log: MagicMock
) -> None:
    ledger = _mock_ledger(monthly=2100)
    cycle = _cycle(config, ledger, file_store, _adapters(), clock, log)

    await cycle.run_poll_cycle()
    log.threshold_crossed.assert_called_once_with("tier70", 2100, 3000, 70)
    log.downgrade.assert_not_called()

    await cycle.run_poll_cycle()
    assert log.threshold_crossed.call_count == 1

    ledger.get_monthly_count.return_value = 2600
    await cycle.run_poll_cycle()
    log.downgrade.assert_called_once_with("tier70", "tier85", 90_000)
    assert log.threshold_crossed.call_count == 2


# ── Duplicate triggers ──────────────────────────────────────────────────

def _slow_adapters(records: list[dict[str, Any]]) -> dict[LiveSport, MagicMock]:
    adapters = _adapters()

    async def slow_fetch() -> list[dict[str, Any]]:
        await asyncio.sleep(0.01)
        return records

    adapters[LiveSport.FOOTBALL].fetch_live = AsyncMock(side_effect=slow_fetch)
    return adapters


@pytest.mark.asyncio
async def test_concurrent_triggers_on_redis_run_one_tick(
    config: LivePollingConfig, fake_redis: RedisManager, clock: FrozenClock, log: MagicMock
) -> None:
    ledger = RedisUsageLedger(fake_redis, clock=clock)
    store = RedisMatchStateStore(fake_redis)
    cycles = [
        _cycle(config, ledger, store, _slow_adapters([football_record(1)]), clock, log)
        for _ in range(3)
    ]

    results = await asyncio.gather(*(c.run_poll_cycle() for c in cycles))

    ran = [r for r in results if not r.skipped]
    assert len(ran) == 1
    assert ran[0].api_calls == 3
    assert all(r.reason == SkipReason.INTERVAL_NOT_ELAPSED for r in results if r.skipped)
    assert await ledger.get_monthly_count() == 3
    assert [s.fixture_id for s in await store.get_all_matches()] == [1]


@pytest.mark.asyncio
async def test_concurrent_triggers_on_shared_data_dir_run_one_tick(
    tmp_path: Path, config: LivePollingConfig, clock: FrozenClock, log: MagicMock
) -> None:
    # One ledger and store per "process", all on the same files.
    cycles = [
        _cycle(
            config,
            FileUsageLedger(tmp_path / "liveUsage.json", clock=clock),
            FileMatchStateStore(tmp_path / "liveMatches.json", clock=clock),
            _slow_adapters([football_record(1)]),
            clock,
            log,
        )
        for _ in range(2)
    ]

    results = await asyncio.gather(*(c.run_poll_cycle() for c in cycles))

    assert sorted(r.skipped for r in results) == [False, True]
    assert await FileUsageLedger(tmp_path / "liveUsage.json", clock=clock).get_monthly_count() == 3
