"""
Abstract base class for the per-sport live fetch adapters.
Defines the contract every adapter implements: one metered call, returning
provider-native records already filtered to the sport's live vocabulary.
"""
from __future__ import annotations

import abc
from typing import Any, Optional

import httpx

from shared.models.enums import LiveSport
from shared.polling_config import SportPolicy
from shared.utils.http_client import ProviderHTTPClient
from shared.utils.logging import get_logger
from shared.utils.metrics import ADAPTER_FAILURES

logger = get_logger(__name__)

RawRecord = dict[str, Any]


class LiveFetchAdapter(abc.ABC):
    """
    Base class for API-Sports live adapters.

    fetch_live() never raises for upstream trouble (missing key, HTTP error,
    transport error, malformed body): it logs a warning and returns [], so
    one sport's outage cannot block the others.
    """

    def __init__(
        self,
        sport: LiveSport,
        http_client: ProviderHTTPClient,
        policy: SportPolicy,
        api_key: str = "",
    ) -> None:
        self._sport = sport
        self._http = http_client
        self._policy = policy
        self._api_key = api_key

    @property
    def sport(self) -> LiveSport:
        return self._sport

    async def start(self) -> None:
        await self._http.start()

    async def close(self) -> None:
        await self._http.close()

    async def fetch_live(self) -> list[RawRecord]:
        """Fetch live records for this sport, filtered to its live statuses."""
        if not self._api_key:
            logger.warning("adapter_api_key_missing", sport=self._sport.value)
            return []
        try:
            records = await self._fetch_raw()
        except (httpx.HTTPError, ValueError) as exc:
            ADAPTER_FAILURES.labels(sport=self._sport.value).inc()
            logger.warning("adapter_fetch_failed", sport=self._sport.value, error=str(exc))
            return []

        live = [r for r in records if self._policy.is_live_status(self._status_of(r) or "")]
        logger.debug(
            "adapter_fetch_done",
            sport=self._sport.value,
            received=len(records),
            live=len(live),
        )
        return live

    def _records_from_response(self, resp: httpx.Response) -> list[RawRecord]:
        """Unwrap the API-Sports envelope: {"errors": ..., "response": [...]}."""
        data = resp.json()
        if not isinstance(data, dict):
            raise ValueError(f"unexpected body type {type(data).__name__}")
        errors = data.get("errors")
        if errors:
            logger.warning("adapter_provider_errors", sport=self._sport.value, errors=errors)
        response = data.get("response")
        if not isinstance(response, list):
            return []
        return [r for r in response if isinstance(r, dict)]

    # ── Adapter-specific ────────────────────────────────────────────────
    @abc.abstractmethod
    async def _fetch_raw(self) -> list[RawRecord]:
        """Issue the single upstream request and return every record it carried."""
        ...

    @staticmethod
    @abc.abstractmethod
    def _status_of(record: RawRecord) -> Optional[str]:
        """Extract the provider status short code from a raw record."""
        ...
