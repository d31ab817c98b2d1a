from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from app.api.routes import cache, events, fees, health
from app.core.config import settings
from app.core.logging import get_logger
from app.ingestion.gemini import GeminiFeeClient
from app.ingestion.runner import build_metadata_sources
from app.services.broadcast import ProgressBroadcaster
from app.services.cache_store import CacheStore
from app.services.enhancement import EnhancementService


log = get_logger("app")


def build_service() -> EnhancementService:
    """Wire the process-wide cache store to the real upstream clients."""
    return EnhancementService(
        store=CacheStore(),
        sources=build_metadata_sources(),
        enricher=GeminiFeeClient(),
    )


def create_app(service: Optional[EnhancementService] = None) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        log.info(f"Starting application in {settings.ENV.upper()} mode")
        if settings.is_production:
            log.info("Production mode: Debug disabled, docs disabled, stricter logging")
        else:
            log.info("Development mode: Debug enabled, docs available")

        app.state.service = service or build_service()
        app.state.broadcaster = ProgressBroadcaster(app.state.service.store)
        app.state.broadcaster.start()

        if not app.state.service.enricher.enabled:
            log.warning("GEMINI_API_KEY is not set - fee data will stay at placeholder values")
        if not settings.coinmarketcap_configured:
            log.warning("COINMARKETCAP_API_KEY is not set - CEX fee requests will fail")

        yield

        log.info("Shutting down services...")
        await app.state.service.jobs.shutdown()
        await app.state.broadcaster.stop()
        log.info("Application shutdown complete")

    app = FastAPI(
        title="Crypto Fee Aggregator",
        description="CEX and DEX fee data with background AI enrichment",
        version="1.0.0",
        lifespan=lifespan,
        docs_url="/docs" if settings.docs_enabled else None,
        redoc_url="/redoc" if settings.docs_enabled else None,
        openapi_url="/openapi.json" if settings.docs_enabled else None,
        debug=settings.debug_enabled,
    )

    app.include_router(fees.router)
    app.include_router(cache.router)
    app.include_router(events.router)
    app.include_router(health.router)
    return app


app = create_app()
