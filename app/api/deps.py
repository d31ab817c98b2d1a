"""API dependencies"""

from fastapi import Request

from app.services.broadcast import ProgressBroadcaster
from app.services.cache_store import CacheStore
from app.services.enhancement import EnhancementService


def get_service(request: Request) -> EnhancementService:
    return request.app.state.service


def get_store(request: Request) -> CacheStore:
    return request.app.state.service.store


def get_broadcaster(request: Request) -> ProgressBroadcaster:
    return request.app.state.broadcaster
