"""Fee routes - paginated CEX/DEX fee data served from the enhancement cache."""

from typing import Dict

from fastapi import APIRouter, Depends, Query, Response
from fastapi.responses import JSONResponse

from app.api.deps import get_service
from app.core.config import DatasetKind, settings
from app.core.errors import handle_api_error
from app.core.logging import get_logger
from app.schemas.api import CEXFeesResponse, DEXFeesResponse, ErrorResponse
from app.services.enhancement import EnhancementService, FeePage

router = APIRouter(prefix="/api", tags=["fees"])
log = get_logger("fee_routes")

NO_STORE = {
    "Cache-Control": "private, no-cache, no-store, must-revalidate",
    "Pragma": "no-cache",
    "Expires": "0",
}


def cache_headers(kind: DatasetKind, cached: bool) -> Dict[str, str]:
    """CDN headers for a page; freshly rebuilt (placeholder) pages are never cached."""
    if not cached:
        return NO_STORE
    seconds = int(settings.cache_duration_seconds(kind))
    return {
        "Cache-Control": f"public, max-age=300, s-maxage={seconds}, stale-while-revalidate={seconds * 2}",
        "Vary": "Accept-Encoding",
    }


async def _load_page(service: EnhancementService, kind: DatasetKind, batch: int, batch_size: int):
    try:
        return await service.get_page(kind, batch, batch_size)
    except Exception as exc:  # noqa: BLE001
        log.error(f"{kind.upper()} fees request failed: {exc}")
        return JSONResponse(status_code=500, content=handle_api_error(exc))


def _page_fields(page: FeePage) -> dict:
    return {
        "data": page.data,
        "cached": page.cached,
        "cached_at": page.cached_at,
        "batch": page.batch,
        "total_batches": page.total_batches,
        "has_more": page.has_more,
        "background_processing": page.background_processing,
    }


@router.get(
    "/cex-fees",
    response_model=CEXFeesResponse,
    responses={500: {"model": ErrorResponse}},
)
async def get_cex_fees(
    response: Response,
    batch: int = Query(1, ge=1, description="1-based page number"),
    batch_size: int = Query(10, ge=1, le=100, alias="batchSize", description="Exchanges per page"),
    service: EnhancementService = Depends(get_service),
):
    """
    Centralized exchange fees, one page at a time.

    A cold cache fetches exchange metadata, answers with placeholder fees and
    starts AI enrichment in the background. Later pages and repeat calls read
    whatever the enrichment has filled in so far.
    """
    page = await _load_page(service, "cex", batch, batch_size)
    if isinstance(page, JSONResponse):
        return page

    response.headers.update(cache_headers("cex", page.cached))
    return CEXFeesResponse(**_page_fields(page), total_exchanges=page.total)


@router.get(
    "/dex-fees",
    response_model=DEXFeesResponse,
    responses={500: {"model": ErrorResponse}},
)
async def get_dex_fees(
    response: Response,
    batch: int = Query(1, ge=1, description="1-based page number"),
    batch_size: int = Query(10, ge=1, le=100, alias="batchSize", description="DEXes per page"),
    service: EnhancementService = Depends(get_service),
):
    """Decentralized exchange swap fees and gas estimates, one page at a time."""
    page = await _load_page(service, "dex", batch, batch_size)
    if isinstance(page, JSONResponse):
        return page

    response.headers.update(cache_headers("dex", page.cached))
    return DEXFeesResponse(**_page_fields(page), total_dexes=page.total)
