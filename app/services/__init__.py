# Services package
from app.services.broadcast import ProgressBroadcaster
from app.services.cache_store import CacheStore
from app.services.enhancement import EnhancementService, FeePage
from app.services.jobs import BackgroundJobs

__all__ = [
    "BackgroundJobs",
    "CacheStore",
    "EnhancementService",
    "FeePage",
    "ProgressBroadcaster",
]
