"""CoinGecko source implementation (exchange trust scores)."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

import httpx

from app.core.config import settings
from app.core.http import fetch_with_rate_limit
from app.core.logging import get_logger
from app.core.rate_limiter import RateLimiter, coingecko_limiter
from .base import BaseSource

log = get_logger("ingestion.coingecko")

BASE_URL = "https://api.coingecko.com/api/v3"


class CoinGeckoSource(BaseSource):
    """Fetches exchanges with trust score, country and establishment year."""

    name = "coingecko"

    def __init__(
        self,
        limit: Optional[int] = None,
        client: Optional[httpx.AsyncClient] = None,
        limiter: RateLimiter = coingecko_limiter,
    ):
        super().__init__(client)
        self.limit = limit or settings.METADATA_LIMIT
        self.limiter = limiter

    async def fetch(self) -> List[Dict[str, Any]]:
        async with self.session() as client:
            resp = await fetch_with_rate_limit(
                client,
                f"{BASE_URL}/exchanges",
                limiter=self.limiter,
                params={"per_page": self.limit, "page": 1},
            )
            data = resp.json()

        results = [item for item in data if isinstance(item, dict) and item.get("id")]
        log.info(f"Fetched {len(results)} exchanges from CoinGecko")
        return results
