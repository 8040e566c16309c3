"""
API-Rugby live adapter.
Same shape as basketball: today's games by UTC date, filtered to live statuses
(1H, HT, 2H, BT, ET, PT).
"""
from __future__ import annotations

from datetime import datetime
from typing import Callable, Optional

from shared.models.domain import utcnow
from shared.models.enums import LiveSport
from shared.polling_config import SportPolicy
from shared.utils.http_client import ProviderHTTPClient

from ingest.providers.base import LiveFetchAdapter, RawRecord

API_RUGBY_BASE_URL = "https://v1.rugby.api-sports.io"


class ApiRugbyLiveAdapter(LiveFetchAdapter):

    def __init__(
        self,
        policy: SportPolicy,
        api_key: str,
        http_client: ProviderHTTPClient | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        http_client = http_client or ProviderHTTPClient(
            provider_name="api_rugby",
            base_url=API_RUGBY_BASE_URL,
            headers={"x-apisports-key": api_key},
        )
        super().__init__(LiveSport.RUGBY, http_client, policy, api_key)
        self._clock = clock

    async def _fetch_raw(self) -> list[RawRecord]:
        today = self._clock().strftime("%Y-%m-%d")
        resp = await self._http.get("/games", params={"date": today}, sport=self._sport.value)
        return self._records_from_response(resp)

    @staticmethod
    def _status_of(record: RawRecord) -> Optional[str]:
        return (record.get("status") or {}).get("short")
