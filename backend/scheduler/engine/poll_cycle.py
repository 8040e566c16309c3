"""
Live poll cycle orchestrator.

One tick: kill switch, budget tier, interval gate, concurrent fetch of every
sport, normalize, admit, diff against the stored snapshot, persist the delta
and account for the calls made. Within a tick this is the only writer of the
usage ledger and the match store.
"""
from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Callable, Mapping, Optional

from shared.models.domain import LiveMatchState, PollCycleResult, utcnow
from shared.models.enums import LiveSport, SkipReason, UsageTier
from shared.polling_config import LivePollingConfig
from shared.store.match_store import MatchStateStore
from shared.store.usage_ledger import UsageLedger
from shared.utils.live_log import LiveEventLog, live_log
from shared.utils.metrics import (
    ADAPTER_FAILURES,
    API_CALLS,
    LIVE_MATCHES,
    MONTHLY_USAGE,
    POLL_CYCLE_DURATION,
    POLL_CYCLES,
    STORE_REMOVALS,
    STORE_WRITES,
    USAGE_TIER,
    atrack_latency,
)

from ingest.normalization.normalizer import RawRecord, normalize_records
from ingest.providers.base import LiveFetchAdapter
from scheduler.engine.admission import admit
from scheduler.engine.diff import compute_delta
from scheduler.engine.polling import get_poll_interval_ms, get_usage_tier, usage_percent


class LivePollCycle:
    """
    Runs poll ticks against injected collaborators.

    The last tier seen is kept per instance so tier transitions are logged
    once, when they happen.
    """

    def __init__(
        self,
        config: LivePollingConfig,
        ledger: UsageLedger,
        store: MatchStateStore,
        adapters: Mapping[LiveSport, LiveFetchAdapter],
        clock: Callable[[], datetime] = utcnow,
        log: LiveEventLog = live_log,
    ) -> None:
        self._config = config
        self._ledger = ledger
        self._store = store
        self._adapters = dict(adapters)
        self._clock = clock
        self._log = log
        self._last_tier = UsageTier.NORMAL

    @property
    def config(self) -> LivePollingConfig:
        return self._config

    @property
    def ledger(self) -> UsageLedger:
        return self._ledger

    @property
    def store(self) -> MatchStateStore:
        return self._store

    async def run_poll_cycle(self) -> PollCycleResult:
        config = self._config
        if config.polling_disabled:
            self._log.kill_switch_active()
            return self._skipped(SkipReason.KILL_SWITCH)

        budget = config.monthly_budget
        monthly_used = await self._ledger.get_monthly_count()
        tier = get_usage_tier(monthly_used, budget)
        pct = usage_percent(monthly_used, budget)
        MONTHLY_USAGE.set(monthly_used)
        USAGE_TIER.set(tier.severity)

        if tier.is_suspended:
            self._log.poll_skip(
                SkipReason.BUDGET_EXCEEDED.value,
                tier=tier.value,
                monthly_used=monthly_used,
                budget=budget,
                pct=pct,
            )
            return self._skipped(SkipReason.BUDGET_EXCEEDED, tier)

        interval_ms = get_poll_interval_ms(config.primary_sport, tier, config)
        claim = await self._ledger.try_claim_poll_slot(self._clock(), interval_ms)
        if not claim.won:
            self._log.poll_skip(
                SkipReason.INTERVAL_NOT_ELAPSED.value,
                elapsed=claim.elapsed_ms,
                required=int(interval_ms),
                tier=tier.value,
            )
            return self._skipped(SkipReason.INTERVAL_NOT_ELAPSED, tier)

        self._note_tier(tier, monthly_used, budget, pct, interval_ms)
        self._log.poll_start(tier.value)

        try:
            async with atrack_latency(POLL_CYCLE_DURATION):
                result = await self._tick(tier, monthly_used)
        except Exception as exc:
            self._log.poll_error(exc)
            await self._ledger.release_poll_slot(claim)
            POLL_CYCLES.labels(outcome="error").inc()
            return PollCycleResult(tier=tier, error=str(exc))

        POLL_CYCLES.labels(outcome="success").inc()
        return result

    async def _tick(self, tier: UsageTier, monthly_used: int) -> PollCycleResult:
        raw_by_sport = await self._fetch_all()

        admitted: list[LiveMatchState] = []
        stamp = self._clock()
        for sport, records in raw_by_sport.items():
            states = normalize_records(sport, records, now=stamp)
            sport_admitted = admit(states, sport, self._config)
            LIVE_MATCHES.labels(sport=sport.value).set(len(sport_admitted))
            admitted.extend(sport_admitted)

        existing = await self._store.get_all_matches()
        to_write, to_remove = compute_delta(admitted, existing)
        if to_write:
            await self._store.set_matches(to_write)
            STORE_WRITES.inc(len(to_write))
        if to_remove:
            await self._store.remove_matches(to_remove)
            STORE_REMOVALS.inc(len(to_remove))

        # Every adapter invocation is a metered call, including the ones that came back empty.
        for sport in raw_by_sport:
            await self._ledger.increment_api_usage()
            API_CALLS.labels(sport=sport.value).inc()
        await self._ledger.set_last_poll_time(self._clock())

        api_calls = len(raw_by_sport)
        new_monthly = monthly_used + api_calls
        hourly = await self._ledger.get_hourly_count()
        daily = await self._ledger.get_daily_count()
        MONTHLY_USAGE.set(new_monthly)

        self._log.poll_success(len(to_write), len(to_remove), new_monthly, tier.value)
        self._log.usage_snapshot(hourly, daily, new_monthly, self._config.monthly_budget)
        return PollCycleResult(
            updated=len(to_write),
            removed=len(to_remove),
            admitted=len(admitted),
            api_calls=api_calls,
            tier=tier,
        )

    async def _fetch_all(self) -> dict[LiveSport, list[RawRecord]]:
        sports = list(self._adapters)
        results = await asyncio.gather(
            *(self._adapters[sport].fetch_live() for sport in sports),
            return_exceptions=True,
        )
        raw_by_sport: dict[LiveSport, list[RawRecord]] = {}
        for sport, result in zip(sports, results):
            if isinstance(result, Exception):
                ADAPTER_FAILURES.labels(sport=sport.value).inc()
                self._log.adapter_failed(sport.value, result)
                raw_by_sport[sport] = []
            elif isinstance(result, BaseException):
                raise result
            else:
                raw_by_sport[sport] = result
        return raw_by_sport

    def _note_tier(self, tier: UsageTier, used: int, budget: int, pct: int, interval_ms: float) -> None:
        previous = self._last_tier
        if tier != previous:
            if previous != UsageTier.NORMAL:
                self._log.downgrade(previous.value, tier.value, interval_ms)
            if pct >= 70:
                self._log.threshold_crossed(tier.value, used, budget, pct)
        self._last_tier = tier

    @staticmethod
    def _skipped(reason: SkipReason, tier: Optional[UsageTier] = None) -> PollCycleResult:
        POLL_CYCLES.labels(outcome="skipped").inc()
        return PollCycleResult(skipped=True, reason=reason, tier=tier)
