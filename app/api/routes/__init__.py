from app.api.routes.cache import router as cache_router
from app.api.routes.events import router as events_router
from app.api.routes.fees import router as fees_router
from app.api.routes.health import router as health_router

__all__ = ["cache_router", "events_router", "fees_router", "health_router"]
