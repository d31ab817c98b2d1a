"""Cache routes - status, AI enrichment summary, manual enrichment and invalidation."""

from datetime import datetime, timezone
from typing import Literal

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse

from app.api.deps import get_service
from app.core.config import settings
from app.core.logging import get_logger
from app.schemas.api import (
    AIState,
    AIStatusResponse,
    CacheDurations,
    CacheStatusResponse,
    ClearCacheResponse,
    EnhanceResponse,
    ErrorResponse,
)
from app.services.enhancement import EnhancementService

router = APIRouter(prefix="/api", tags=["cache"])
log = get_logger("cache_routes")


@router.get("/cache-status", response_model=CacheStatusResponse)
def cache_status(service: EnhancementService = Depends(get_service)):
    """
    Point-in-time cache state for both datasets.

    Includes snapshot age and validity, AI processing flags, last enrichment
    error, enhanced/total counts, circuit breaker state and cache durations.
    Clients reconnecting to the SSE stream use this to catch up.
    """
    store = service.store
    breaker = store.breaker.snapshot(store.now())
    cex_seconds = store.cache_durations["cex"]
    dex_seconds = store.cache_durations["dex"]

    return CacheStatusResponse(
        timestamp=datetime.now(timezone.utc),
        environment=settings.ENV,
        cex=service.get_status("cex"),
        dex=service.get_status("dex"),
        ai=AIState(
            circuit_breaker_active=breaker["circuitBreakerActive"],
            circuit_breaker_until=breaker["circuitBreakerUntil"],
            gemini_configured=service.enricher.enabled,
        ),
        cache_durations=CacheDurations(
            cex_ms=int(cex_seconds * 1000),
            dex_ms=int(dex_seconds * 1000),
            cex_hours=cex_seconds / 3600,
            dex_hours=dex_seconds / 3600,
        ),
    )


@router.get("/ai-status", response_model=AIStatusResponse)
def ai_status(service: EnhancementService = Depends(get_service)):
    """How much of the CEX dataset has been filled in by the AI so far."""
    status = service.get_status("cex")
    rate = f"{status.enhanced_count / status.total_count * 100:.1f}%" if status.total_count else "0%"

    return AIStatusResponse(
        gemini_configured=service.enricher.enabled,
        cmc_configured=settings.coinmarketcap_configured,
        cache_exists=status.exists,
        total_exchanges=status.total_count,
        enhanced_exchanges=status.enhanced_count,
        enhancement_rate=rate,
        last_cache_update=status.cached_at,
    )


@router.post("/clear-cache", response_model=ClearCacheResponse)
async def clear_cache(
    type: Literal["all", "cex", "dex", "ai", "circuit-breaker"] = Query("all", description="What to clear"),
    service: EnhancementService = Depends(get_service),
):
    """
    Clear cached state.

    - all: both snapshots, AI state and circuit breaker
    - cex / dex: that snapshot with its AI state, plus the circuit breaker
    - ai: processing flags, errors and circuit breaker; snapshots are kept
    - circuit-breaker: only the circuit breaker

    The next fee request after a snapshot clear rebuilds it from scratch.
    """
    cleared = service.store.clear(type)
    message = f"Cleared: {', '.join(cleared)}" if cleared else "No cache data found to clear"

    return ClearCacheResponse(
        success=True,
        message=message,
        cleared_items=cleared,
        type=type,
        timestamp=datetime.now(timezone.utc),
    )


@router.post(
    "/enhance-fees",
    response_model=EnhanceResponse,
    status_code=202,
    responses={400: {"model": ErrorResponse}},
)
async def enhance_fees(
    type: Literal["cex", "dex"] = Query("cex", description="Dataset to enrich"),
    service: EnhancementService = Depends(get_service),
):
    """
    Start AI enrichment of the cached dataset by hand.

    Useful when the snapshot was built by a request for a later page, which
    never starts a run. Returns 400 without a Gemini key, with no cached data,
    while the circuit breaker is open or while a run is already in progress.
    Progress is reported over ``/api/sse-updates``.
    """
    blocker = service.enrichment_blocker(type)
    if blocker is not None or not service.start_enrichment(type):
        reason = blocker or f"{type.upper()} AI enhancement already in progress"
        log.info(f"Manual {type.upper()} enhancement rejected: {reason}")
        return JSONResponse(status_code=400, content={"error": "Enhancement Not Started", "message": reason})

    status = service.get_status(type)
    return EnhanceResponse(
        success=True,
        message=f"{type.upper()} AI enhancement started for {status.total_count} entries",
        type=type,
        total=status.total_count,
        timestamp=datetime.now(timezone.utc),
    )
