from datetime import datetime
from typing import List, Optional

from pydantic import Field, computed_field

from app.schemas.fees import CEXFees, DEXFees, FeeModel


class FeePageResponse(FeeModel):
    cached: bool
    cached_at: datetime
    batch: int
    total_batches: int
    has_more: bool
    background_processing: bool = False


class CEXFeesResponse(FeePageResponse):
    data: List[CEXFees]
    total_exchanges: int


class DEXFeesResponse(FeePageResponse):
    data: List[DEXFees]
    total_dexes: int = Field(alias="totalDEXes")


class ErrorResponse(FeeModel):
    error: str
    message: str


class DatasetStatus(FeeModel):
    """Point-in-time view of one dataset kind."""

    exists: bool
    data_length: int = 0
    cached_at: Optional[datetime] = None
    age_ms: int = 0
    is_valid: bool = False
    expires_at: Optional[datetime] = None
    is_processing: bool = False
    last_error: Optional[str] = None
    enhanced_count: int = 0
    total_count: int = 0

    @computed_field  # type: ignore[misc]
    @property
    def age_hours(self) -> int:
        return self.age_ms // (1000 * 60 * 60)

    @computed_field  # type: ignore[misc]
    @property
    def ai_processing(self) -> bool:
        return self.is_processing

    @computed_field  # type: ignore[misc]
    @property
    def progress(self) -> int:
        if not self.total_count:
            return 0
        return round(self.enhanced_count / self.total_count * 100)


class AIState(FeeModel):
    circuit_breaker_active: bool
    circuit_breaker_until: Optional[str] = None
    gemini_configured: bool


class CacheDurations(FeeModel):
    cex_ms: int
    dex_ms: int
    cex_hours: float
    dex_hours: float


class CacheStatusResponse(FeeModel):
    timestamp: datetime
    environment: str
    cex: DatasetStatus
    dex: DatasetStatus
    ai: AIState
    cache_durations: CacheDurations


class AIStatusResponse(FeeModel):
    gemini_configured: bool
    cmc_configured: bool
    cache_exists: bool
    total_exchanges: int
    enhanced_exchanges: int
    enhancement_rate: str
    last_cache_update: Optional[datetime] = None


class ClearCacheResponse(FeeModel):
    success: bool
    message: str
    cleared_items: List[str]
    type: str
    timestamp: datetime


class HealthResponse(FeeModel):
    status: str
    cex: DatasetStatus
    dex: DatasetStatus


class EnhanceResponse(FeeModel):
    success: bool
    message: str
    type: str
    total: int
    timestamp: datetime
