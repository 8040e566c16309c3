"""
API-Basketball live adapter.

There is no live=all filter on this API: the adapter fetches today's games
(UTC date) and keeps those whose status is live (Q1..Q4, OT).
"""
from __future__ import annotations

from datetime import datetime
from typing import Callable, Optional

from shared.models.domain import utcnow
from shared.models.enums import LiveSport
from shared.polling_config import SportPolicy
from shared.utils.http_client import ProviderHTTPClient

from ingest.providers.base import LiveFetchAdapter, RawRecord

API_BASKETBALL_BASE_URL = "https://v1.basketball.api-sports.io"


class ApiBasketballLiveAdapter(LiveFetchAdapter):

    def __init__(
        self,
        policy: SportPolicy,
        api_key: str,
        http_client: ProviderHTTPClient | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        http_client = http_client or ProviderHTTPClient(
            provider_name="api_basketball",
            base_url=API_BASKETBALL_BASE_URL,
            headers={"x-apisports-key": api_key},
        )
        super().__init__(LiveSport.BASKETBALL, http_client, policy, api_key)
        self._clock = clock

    async def _fetch_raw(self) -> list[RawRecord]:
        today = self._clock().strftime("%Y-%m-%d")
        resp = await self._http.get("/games", params={"date": today}, sport=self._sport.value)
        return self._records_from_response(resp)

    @staticmethod
    def _status_of(record: RawRecord) -> Optional[str]:
        return (record.get("status") or {}).get("short")
