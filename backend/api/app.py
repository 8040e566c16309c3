"""
FastAPI application factory for the live-score API service.

Creates the app with:
- Live match read, status and poll-trigger routes
- Middleware stack
- Health and readiness endpoints
- Lifespan management (build the live runtime, optional embedded poller)
"""
from __future__ import annotations

import asyncio
import contextlib
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional, Union

from fastapi import FastAPI

from shared.config import get_settings
from shared.utils.logging import get_logger, setup_logging
from shared.utils.metrics import start_metrics_server

from api.dependencies import get_runtime, init_dependencies
from api.middleware import setup_middleware
from api.routes.live import router as live_router
from scheduler.runtime import LiveRuntime
from scheduler.service import LivePollerService

logger = get_logger(__name__)


@asynccontextmanager
async def _noop_lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """No-op lifespan for testing without Redis or provider clients."""
    yield


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application lifespan manager.
    Builds the shared live runtime on startup, optionally starts the
    background poll loop in-process, and tears both down on shutdown.
    """
    settings = get_settings()
    setup_logging("api", settings=settings)
    start_metrics_server()

    runtime = await LiveRuntime.build(settings)
    init_dependencies(runtime)

    poller: Optional[LivePollerService] = None
    poller_task: Optional[asyncio.Task[None]] = None
    if settings.api_embedded_poller:
        poller = LivePollerService(runtime.cycle, settings)
        poller_task = asyncio.create_task(poller.run())

    logger.info(
        "api_service_started",
        host=settings.api_host,
        port=settings.api_port,
        embedded_poller=settings.api_embedded_poller,
    )

    yield

    # Shutdown
    if poller is not None and poller_task is not None:
        poller.request_shutdown()
        poller_task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await poller_task

    init_dependencies(None)
    await runtime.aclose()
    logger.info("api_service_stopped")


def create_app(*, use_lifespan: bool = True) -> FastAPI:
    """Create and configure the FastAPI application. Set use_lifespan=False for testing."""
    app = FastAPI(
        title="Live Scores API",
        description="Budget-governed live match snapshot",
        version="1.0.0",
        lifespan=lifespan if use_lifespan else _noop_lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
    )

    setup_middleware(app)
    app.include_router(live_router)

    @app.get("/health", tags=["system"])
    async def health() -> dict[str, str]:
        return {"status": "ok", "service": "api"}

    @app.get("/ready", tags=["system"])
    async def readiness() -> dict[str, Union[str, bool]]:
        """Readiness check: the runtime is built and, with Redis, the server answers."""
        runtime = get_runtime()
        if runtime.redis is None:
            return {"status": "ok", "backend": "file", "redis": False}
        redis_ok = await runtime.redis.ping()
        return {"status": "ok" if redis_ok else "degraded", "backend": "redis", "redis": redis_ok}

    return app


app = create_app()
