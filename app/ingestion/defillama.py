"""DeFiLlama source implementation (DEX volumes and chains)."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

import httpx

from app.core.config import settings
from app.core.http import fetch_with_retry
from app.core.logging import get_logger
from .base import BaseSource

log = get_logger("ingestion.defillama")

OVERVIEW_URL = "https://api.llama.fi/overview/dexs"


class DefiLlamaSource(BaseSource):
    """Fetches DEX protocols ranked by 24h volume. No API key required."""

    name = "defillama"

    def __init__(self, limit: Optional[int] = None, client: Optional[httpx.AsyncClient] = None):
        super().__init__(client)
        self.limit = limit or settings.METADATA_LIMIT

    async def fetch(self) -> List[Dict[str, Any]]:
        params = {
            "excludeTotalDataChart": "true",
            "excludeTotalDataChartBreakdown": "true",
        }
        async with self.session() as client:
            resp = await fetch_with_retry(client, OVERVIEW_URL, params=params)
            data = resp.json()

        protocols = [p for p in data.get("protocols", []) if isinstance(p, dict) and p.get("name")]
        protocols.sort(key=lambda p: p.get("total24h") or 0, reverse=True)

        results: List[Dict[str, Any]] = []
        for item in protocols[: self.limit]:
            results.append(
                {
                    "payload": item,
                    "id": item.get("slug") or item.get("module"),
                    "name": item.get("displayName") or item.get("name"),
                    "image": item.get("logo"),
                    "chains": item.get("chains") or [],
                    "volume24h": item.get("total24h") or 0,
                    "category": item.get("category"),
                    "url": item.get("url") or "",
                }
            )
        log.info(f"Fetched {len(results)} DEXes from DeFiLlama")
        return results
