"""
Structured logging for the live poller processes (api, scheduler, run_once).

Every line carries the process role, the instance id and, once the runtime
is built, the storage backend and budget, so a tick log can be read on its own.
"""
from __future__ import annotations

import logging
import sys
from typing import Any

import structlog
from shared.config import Environment, Settings, get_settings

QUIET_LOGGERS = ("uvicorn.access", "httpx", "httpcore", "asyncio")


def _drop_empty_context(_: Any, __: str, event_dict: structlog.types.EventDict) -> structlog.types.EventDict:
    # Unset instance_id / backend fields would otherwise show up as "" on every line.
    return {k: v for k, v in event_dict.items() if v is not None and v != ""}


def _processor_chain() -> list[structlog.types.Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
        _drop_empty_context,
    ]


def _renderer(settings: Settings) -> structlog.types.Processor:
    if settings.environment == Environment.DEV:
        return structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())
    return structlog.processors.JSONRenderer()


def setup_logging(
    service_name: str,
    extra_context: dict[str, Any] | None = None,
    settings: Settings | None = None,
) -> None:
    """
    Route structlog and stdlib logging through one stdout handler.

    Args:
        service_name: Process role bound as ``service`` (api, scheduler).
        extra_context: Static fields bound to every line, e.g. ``{"mode": "run_once"}``.
        settings: Defaults to get_settings().
    """
    settings = settings or get_settings()
    processors = _processor_chain()

    structlog.configure(
        processors=[*processors, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                _renderer(settings),
            ],
            foreign_pre_chain=processors,
        )
    )

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(getattr(logging, settings.log_level.upper(), logging.INFO))
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(
        service=service_name,
        instance_id=settings.instance_id,
        environment=settings.environment.value,
        **(extra_context or {}),
    )


def bind_live_context(*, backend: str, budget: int, polling_disabled: bool) -> None:
    """Bind the runtime's storage backend and budget to all subsequent log lines."""
    structlog.contextvars.bind_contextvars(
        backend=backend,
        budget=budget,
        polling_disabled=polling_disabled or None,
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)
