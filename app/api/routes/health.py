"""Health routes - liveness and readiness checks."""

from datetime import datetime, timezone

from fastapi import APIRouter, Depends

from app.api.deps import get_service
from app.schemas.api import HealthResponse
from app.services.enhancement import EnhancementService

router = APIRouter(prefix="/health", tags=["health"])


@router.get("", response_model=HealthResponse)
def health(service: EnhancementService = Depends(get_service)):
    """
    Health check endpoint for load balancer and Docker health checks.

    The cache is in-memory, so the process being up is enough to be healthy;
    the per-dataset summary is included for quick inspection.
    """
    return HealthResponse(
        status="healthy",
        cex=service.get_status("cex"),
        dex=service.get_status("dex"),
    )


@router.get("/ready")
def readiness(service: EnhancementService = Depends(get_service)):
    """Readiness probe. Reports which upstream credentials are present."""
    return {
        "status": "ready",
        "gemini_configured": service.enricher.enabled,
        "background_jobs": service.jobs.running,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
