"""Shared fixtures for the live poller tests."""
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, AsyncIterator
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio
from fakeredis import FakeAsyncRedis

from shared.config import Settings
from shared.models.domain import LiveMatchState
from shared.models.enums import LiveSport
from shared.polling_config import LivePollingConfig
from shared.store.match_store import FileMatchStateStore
from shared.store.usage_ledger import FileUsageLedger
from shared.utils.redis_manager import RedisManager

T0 = datetime(2025, 3, 14, 19, 30, tzinfo=timezone.utc)


class FrozenClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime = T0) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


def make_settings(**overrides: Any) -> Settings:
    values: dict[str, Any] = {"api_sports_key": "test-key", "metrics_enabled": False}
    values.update(overrides)
    return Settings(_env_file=None, **values)


def make_state(
    fixture_id: int,
    league_id: int | None = 39,
    sport: LiveSport = LiveSport.FOOTBALL,
    status: str = "1H",
    minute: int | None = 10,
    score_home: int = 0,
    score_away: int = 0,
    last_updated_at: datetime = T0,
) -> LiveMatchState:
    return LiveMatchState(
        fixture_id=fixture_id,
        sport=sport,
        status=status,
        minute=minute,
        score_home=score_home,
        score_away=score_away,
        league_id=league_id,
        last_updated_at=last_updated_at,
    )


def football_record(native_id: int, league_id: int = 39, status: str = "1H",
                    elapsed: int | None = 23, home: int | None = 1, away: int | None = 0) -> dict[str, Any]:
    return {
        "fixture": {"id": native_id, "status": {"short": status, "elapsed": elapsed}},
        "league": {"id": league_id},
        "goals": {"home": home, "away": away},
    }


def basketball_record(native_id: int, league_id: int = 12, status: str = "Q3",
                      timer: str | None = "5:23", home: int | None = 70, away: int | None = 68) -> dict[str, Any]:
    return {
        "id": native_id,
        "status": {"short": status, "timer": timer},
        "league": {"id": league_id},
        "scores": {"home": {"total": home}, "away": {"total": away}},
    }


def rugby_record(native_id: int, league_id: int = 16, status: str = "2H",
                 home: int | None = 21, away: int | None = 17) -> dict[str, Any]:
    return {
        "id": native_id,
        "status": {"short": status},
        "league": {"id": league_id},
        "scores": {"home": home, "away": away},
    }


def fake_adapter(sport: LiveSport, records: list[dict[str, Any]] | None = None) -> MagicMock:
    adapter = MagicMock()
    adapter.sport = sport
    adapter.fetch_live = AsyncMock(return_value=records or [])
    return adapter


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def config(settings: Settings) -> LivePollingConfig:
    return LivePollingConfig.from_settings(settings)


@pytest.fixture
def file_ledger(tmp_path: Path, clock: FrozenClock) -> FileUsageLedger:
    return FileUsageLedger(tmp_path / "liveUsage.json", clock=clock)


@pytest.fixture
def file_store(tmp_path: Path, clock: FrozenClock) -> FileMatchStateStore:
    return FileMatchStateStore(tmp_path / "liveMatches.json", clock=clock)


@pytest_asyncio.fixture
async def fake_redis() -> AsyncIterator[RedisManager]:
    """RedisManager over an in-memory server that runs the Lua gate scripts."""
    manager = RedisManager(make_settings(redis_url="redis://localhost:6379/0"))
    manager._pool = FakeAsyncRedis(decode_responses=True)
    yield manager
    await manager.disconnect()
