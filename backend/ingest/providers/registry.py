"""
Adapter registry: one live fetch adapter per sport, built from settings and
the injected polling policy.
"""
from __future__ import annotations

from typing import Iterator, Mapping, Optional

from shared.config import Settings
from shared.models.enums import LiveSport
from shared.polling_config import LivePollingConfig
from shared.utils.logging import get_logger

from ingest.providers.api_basketball import ApiBasketballLiveAdapter
from ingest.providers.api_football import ApiFootballLiveAdapter
from ingest.providers.api_rugby import ApiRugbyLiveAdapter
from ingest.providers.base import LiveFetchAdapter

logger = get_logger(__name__)


class AdapterRegistry:
    """Owns adapter lifecycle; iteration order is the sport enum order."""

    def __init__(self, adapters: Mapping[LiveSport, LiveFetchAdapter]) -> None:
        self._adapters = {sport: adapters[sport] for sport in LiveSport if sport in adapters}

    @classmethod
    def from_settings(cls, settings: Settings, config: LivePollingConfig) -> "AdapterRegistry":
        key = settings.api_sports_key
        if not key:
            logger.warning("api_sports_key_missing")
        return cls({
            LiveSport.FOOTBALL: ApiFootballLiveAdapter(config.policy(LiveSport.FOOTBALL), key),
            LiveSport.BASKETBALL: ApiBasketballLiveAdapter(config.policy(LiveSport.BASKETBALL), key),
            LiveSport.RUGBY: ApiRugbyLiveAdapter(config.policy(LiveSport.RUGBY), key),
        })

    @property
    def adapters(self) -> dict[LiveSport, LiveFetchAdapter]:
        return dict(self._adapters)

    def get(self, sport: LiveSport) -> Optional[LiveFetchAdapter]:
        return self._adapters.get(sport)

    def __iter__(self) -> Iterator[LiveFetchAdapter]:
        return iter(self._adapters.values())

    def __len__(self) -> int:
        return len(self._adapters)

    async def start(self) -> None:
        for adapter in self._adapters.values():
            await adapter.start()

    async def close(self) -> None:
        for adapter in self._adapters.values():
            await adapter.close()
