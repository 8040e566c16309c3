"""
Async HTTP client wrapper for metered provider requests.
Includes bounded retry, timeout management, and metrics collection.
"""
from __future__ import annotations

import asyncio
import time
from typing import Any, Optional

import httpx

from shared.config import get_settings
from shared.utils.logging import get_logger
from shared.utils.metrics import PROVIDER_LATENCY, PROVIDER_REQUESTS

logger = get_logger(__name__)


class ProviderHTTPClient:
    """
    Async HTTP client tailored for metered sports data APIs.

    Every attempt is billed by the provider, so retries default to the
    configured provider_max_retries (1 = no retry).
    """

    def __init__(
        self,
        provider_name: str,
        base_url: str,
        headers: dict[str, str] | None = None,
        timeout_s: float | None = None,
        max_retries: int | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        settings = get_settings()
        self._provider = provider_name
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout_s or settings.provider_request_timeout_s
        self._max_retries = max(1, max_retries or settings.provider_max_retries)
        self._default_headers = headers or {}
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def start(self) -> None:
        """Initialize the underlying httpx client."""
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            headers=self._default_headers,
            timeout=httpx.Timeout(self._timeout, connect=5.0),
            follow_redirects=True,
            transport=self._transport,
        )

    async def close(self) -> None:
        """Close the underlying httpx client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def get(
        self,
        path: str,
        params: dict[str, Any] | None = None,
        sport: str = "unknown",
    ) -> httpx.Response:
        """
        Perform a GET request with bounded retry, metrics, and structured logging.

        Raises:
            httpx.HTTPStatusError: On non-retryable HTTP errors.
            httpx.TransportError: If all attempts fail at the transport level.
        """
        if not self._client:
            raise RuntimeError("ProviderHTTPClient not started. Call start() first.")

        last_exc: Optional[Exception] = None

        for attempt in range(1, self._max_retries + 1):
            start_time = time.perf_counter()
            status = "unknown"
            try:
                resp = await self._client.get(path, params=params)
                status = str(resp.status_code)
                retryable = resp.status_code == 429 or resp.status_code >= 500

                if retryable and attempt < self._max_retries:
                    logger.warning(
                        "provider_retryable_status",
                        provider=self._provider,
                        path=path,
                        status=resp.status_code,
                        attempt=attempt,
                    )
                    delay = 1.0 * attempt
                    if resp.status_code == 429:
                        delay = min(float(resp.headers.get("Retry-After", "2")), 10.0)
                    await asyncio.sleep(delay)
                    continue

                resp.raise_for_status()
                logger.debug(
                    "provider_request_success",
                    provider=self._provider,
                    path=path,
                    status=resp.status_code,
                    latency_ms=round((time.perf_counter() - start_time) * 1000, 2),
                )
                return resp

            except httpx.TimeoutException as exc:
                status = "timeout"
                last_exc = exc
                logger.warning("provider_timeout", provider=self._provider, path=path, attempt=attempt)
                if attempt < self._max_retries:
                    await asyncio.sleep(1.0 * attempt)

            except httpx.TransportError as exc:
                status = "error"
                last_exc = exc
                logger.warning(
                    "provider_transport_error",
                    provider=self._provider,
                    path=path,
                    error=str(exc),
                    attempt=attempt,
                )
                if attempt < self._max_retries:
                    await asyncio.sleep(1.0 * attempt)

            finally:
                PROVIDER_LATENCY.labels(provider=self._provider).observe(
                    time.perf_counter() - start_time
                )
                PROVIDER_REQUESTS.labels(provider=self._provider, sport=sport, status=status).inc()

        if last_exc:
            raise last_exc
        raise RuntimeError(f"Provider request failed after {self._max_retries} attempts")
