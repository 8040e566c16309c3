"""
API-Football live adapter.
One call to fixtures?live=all returns every in-play fixture worldwide.
"""
from __future__ import annotations

from typing import Optional

from shared.models.enums import LiveSport
from shared.polling_config import SportPolicy
from shared.utils.http_client import ProviderHTTPClient

from ingest.providers.base import LiveFetchAdapter, RawRecord

API_FOOTBALL_BASE_URL = "https://v3.football.api-sports.io"


class ApiFootballLiveAdapter(LiveFetchAdapter):

    def __init__(
        self,
        policy: SportPolicy,
        api_key: str,
        http_client: ProviderHTTPClient | None = None,
    ) -> None:
        http_client = http_client or ProviderHTTPClient(
            provider_name="api_football",
            base_url=API_FOOTBALL_BASE_URL,
            headers={"x-apisports-key": api_key},
        )
        super().__init__(LiveSport.FOOTBALL, http_client, policy, api_key)

    async def _fetch_raw(self) -> list[RawRecord]:
        resp = await self._http.get("/fixtures", params={"live": "all"}, sport=self._sport.value)
        return self._records_from_response(resp)

    @staticmethod
    def _status_of(record: RawRecord) -> Optional[str]:
        fixture = record.get("fixture") or {}
        return (fixture.get("status") or {}).get("short")
