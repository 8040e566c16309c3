"""
Lightweight metrics collection for the live poller.
Wraps prometheus_client with async-safe patterns.
"""
from __future__ import annotations

import time
from contextlib import asynccontextmanager
from typing import AsyncIterator

from prometheus_client import Counter, Gauge, Histogram, start_http_server

from shared.config import get_settings
from shared.utils.logging import get_logger

logger = get_logger(__name__)

# ── Counters ────────────────────────────────────────────────────────────
PROVIDER_REQUESTS = Counter(
    "live_provider_requests_total",
    "Total provider HTTP requests",
    ["provider", "sport", "status"],
)
POLL_CYCLES = Counter(
    "live_poll_cycles_total",
    "Poll cycle outcomes",
    ["outcome"],
)
API_CALLS = Counter(
    "live_api_calls_total",
    "Metered upstream API calls recorded in the usage ledger",
    ["sport"],
)
ADAPTER_FAILURES = Counter(
    "live_adapter_failures_total",
    "Sport adapter fetches that degraded to an empty result",
    ["sport"],
)
STORE_WRITES = Counter(
    "live_store_writes_total",
    "Live match records written after diffing",
)
STORE_REMOVALS = Counter(
    "live_store_removals_total",
    "Live match records removed as no longer admitted",
)
BACKEND_ERRORS = Counter(
    "live_backend_errors_total",
    "Ledger/store backend failures recovered by failing open",
    ["component"],
)

# ── Histograms ──────────────────────────────────────────────────────────
PROVIDER_LATENCY = Histogram(
    "live_provider_latency_seconds",
    "Provider request latency in seconds",
    ["provider"],
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)
POLL_CYCLE_DURATION = Histogram(
    "live_poll_cycle_seconds",
    "Wall time of poll cycles that reached the fetch stage",
    buckets=(0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
)

# ── Gauges ──────────────────────────────────────────────────────────────
LIVE_MATCHES = Gauge(
    "live_matches_admitted",
    "Live matches admitted to fast polling in the last tick",
    ["sport"],
)
MONTHLY_USAGE = Gauge(
    "live_usage_monthly_calls",
    "API calls consumed in the current month",
)
USAGE_TIER = Gauge(
    "live_usage_tier",
    "Current throttling tier (0=normal, 1=tier70, 2=tier85, 3=tier95)",
)


@asynccontextmanager
async def atrack_latency(histogram: Histogram, **labels: str) -> AsyncIterator[None]:
    """Async context manager to track operation latency."""
    start = time.perf_counter()
    try:
        yield
    finally:
        elapsed = time.perf_counter() - start
        if labels:
            histogram.labels(**labels).observe(elapsed)
        else:
            histogram.observe(elapsed)


def start_metrics_server(port: int | None = None) -> None:
    """Start the Prometheus metrics HTTP server."""
    settings = get_settings()
    if not settings.metrics_enabled:
        return
    metrics_port = port or settings.metrics_port
    try:
        start_http_server(metrics_port)
        logger.info("metrics_server_started", port=metrics_port)
    except OSError as exc:
        logger.warning("metrics_server_failed", error=str(exc), port=metrics_port)
