"""
Live match REST endpoints.

GET      /v1/live-matches          All admitted live matches (or ?id=N for one).
GET      /v1/live-matches/status   Usage counters and governor state.
GET|POST /v1/live-matches/poll     Run one poll tick (cron / scheduled HTTP trigger).

Reads never call upstream providers: they serve whatever the poll cycle last
wrote to the match store.
"""
from __future__ import annotations

import math
from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response
from fastapi.responses import JSONResponse

from shared.config import Settings, get_settings
from shared.models.domain import LiveMatchPayload, PollingStatusReport, UsageCounts
from shared.polling_config import LivePollingConfig
from shared.store.match_store import MatchStateStore
from shared.store.usage_ledger import UsageLedger
from shared.utils.logging import get_logger

from api.dependencies import get_match_store, get_poll_cycle, get_polling_config, get_usage_ledger
from scheduler.engine.poll_cycle import LivePollCycle
from scheduler.engine.polling import (
    get_poll_interval_ms,
    get_polling_status,
    get_usage_tier,
    usage_percent,
)

logger = get_logger(__name__)
router = APIRouter(prefix="/v1/live-matches", tags=["live"])

NO_STORE_HEADERS = {
    "Cache-Control": "no-store, no-cache, must-revalidate",
    "Pragma": "no-cache",
}


@router.get("")
async def list_live_matches(
    response: Response,
    id: Optional[int] = Query(default=None, description="Band-encoded fixture id"),
    store: MatchStateStore = Depends(get_match_store),
    ledger: UsageLedger = Depends(get_usage_ledger),
    config: LivePollingConfig = Depends(get_polling_config),
) -> dict[str, Any]:
    """
    Current live snapshot.

    Without id: {"polling_status", "matches": [...]}.
    With id:    {"polling_status", "match": {...} | null}.
    """
    response.headers.update(NO_STORE_HEADERS)
    monthly = await ledger.get_monthly_count()
    tier = get_usage_tier(monthly, config.monthly_budget)
    body: dict[str, Any] = {"polling_status": get_polling_status(config.polling_disabled, tier).value}

    if id is not None:
        state = await store.get_match(id)
        body["match"] = LiveMatchPayload.from_state(state).model_dump(mode="json") if state else None
        return body

    states = await store.get_all_matches()
    body["matches"] = [LiveMatchPayload.from_state(s).model_dump(mode="json") for s in states]
    return body


@router.get("/status")
async def live_status(
    ledger: UsageLedger = Depends(get_usage_ledger),
    config: LivePollingConfig = Depends(get_polling_config),
) -> dict[str, Any]:
    """Usage counters and governor state for monitoring. No upstream calls."""
    hourly = await ledger.get_hourly_count()
    daily = await ledger.get_daily_count()
    monthly = await ledger.get_monthly_count()
    last_poll = await ledger.get_last_poll_time()

    budget = config.monthly_budget
    tier = get_usage_tier(monthly, budget)
    interval_ms = get_poll_interval_ms(config.primary_sport, tier, config)
    report = PollingStatusReport(
        polling_disabled=config.polling_disabled,
        polling_status=get_polling_status(config.polling_disabled, tier),
        tier=tier,
        interval_ms=None if math.isinf(interval_ms) else int(interval_ms),
        usage=UsageCounts(
            hourly=hourly,
            daily=daily,
            monthly=monthly,
            budget=budget,
            pct=usage_percent(monthly, budget),
        ),
        last_poll_at=last_poll,
    )
    return report.model_dump(mode="json")


def require_cron_secret(request: Request, settings: Settings = Depends(get_settings)) -> None:
    """Enforce Authorization: Bearer <cron_secret> when a secret is configured."""
    secret = settings.cron_secret
    if secret and request.headers.get("authorization") != f"Bearer {secret}":
        raise HTTPException(status_code=401, detail="Unauthorized")


@router.api_route("/poll", methods=["GET", "POST"], dependencies=[Depends(require_cron_secret)])
async def trigger_poll(cycle: LivePollCycle = Depends(get_poll_cycle)) -> JSONResponse:
    """Run one poll tick and report its outcome."""
    result = await cycle.run_poll_cycle()
    body = {"ok": result.ok, **result.model_dump(mode="json")}
    if not result.ok:
        logger.error("live_poll_trigger_failed", error=result.error)
        return JSONResponse(status_code=500, content=body)
    return JSONResponse(content=body)
