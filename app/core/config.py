from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


DatasetKind = Literal["cex", "dex"]


class Settings(BaseSettings):
    # Environment mode: dev or prod
    ENV: Literal["dev", "prod"] = "dev"

    # API Keys
    COINMARKETCAP_API_KEY: str | None = None
    GEMINI_API_KEY: str | None = None
    GEMINI_MODEL: str = "gemini-2.5-flash"

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_DIR: str = "logs"
    SLACK_WEBHOOK_URL: str | None = None

    # Cache lifetime per dataset
    CEX_CACHE_HOURS: float = 72
    DEX_CACHE_HOURS: float = 72

    # AI enrichment
    AI_BATCH_SIZE: int = 10
    AI_BATCH_DELAY_SECONDS: float = 15.0  # stays under Gemini free-tier quota

    # Outbound HTTP
    COINGECKO_RATE_LIMIT: int = 50  # requests per window
    COINGECKO_RATE_WINDOW_MS: int = 60_000
    HTTP_RETRIES: int = 3
    HTTP_TIMEOUT_SECONDS: float = 30.0
    METADATA_LIMIT: int = 100

    # Circuit breaker for the AI client
    CIRCUIT_BREAKER_THRESHOLD: int = 3  # consecutive overload responses
    CIRCUIT_BREAKER_COOLDOWN_SECONDS: float = 600.0

    # Server-sent events
    SSE_HEARTBEAT_SECONDS: float = 10.0

    # Docs Configuration
    DOCS_ENABLED: bool | None = None  # Override docs setting (None = auto based on ENV)

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",  # ignore unrelated keys in local .env
    )

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.ENV == "prod"

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.ENV == "dev"

    @property
    def debug_enabled(self) -> bool:
        """Debug mode is only enabled in development."""
        return self.is_development

    @property
    def docs_enabled(self) -> bool:
        """Swagger/ReDoc docs enabled based on environment or override."""
        if self.DOCS_ENABLED is not None:
            return self.DOCS_ENABLED
        return self.is_development

    @property
    def gemini_configured(self) -> bool:
        return bool(self.GEMINI_API_KEY)

    @property
    def coinmarketcap_configured(self) -> bool:
        return bool(self.COINMARKETCAP_API_KEY)

    def cache_duration_seconds(self, kind: DatasetKind) -> float:
        """Snapshot lifetime for a dataset kind, in seconds."""
        hours = self.CEX_CACHE_HOURS if kind == "cex" else self.DEX_CACHE_HOURS
        return hours * 60 * 60


settings = Settings()
