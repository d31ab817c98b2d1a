"""CoinMarketCap source: exchange ranking by 24h volume plus exchange details."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

import httpx

from app.core.config import settings
from app.core.errors import APIError, ConfigurationError
from app.core.http import fetch_with_retry
from app.core.logging import get_logger
from .base import BaseSource

log = get_logger("ingestion.coinmarketcap")

BASE_URL = "https://pro-api.coinmarketcap.com"


class CoinMarketCapSource(BaseSource):
    """Fetches the top exchanges by volume with logo, launch date and URLs."""

    name = "coinmarketcap"

    def __init__(
        self,
        api_key: Optional[str] = None,
        limit: Optional[int] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        super().__init__(client)
        self.api_key = api_key if api_key is not None else settings.COINMARKETCAP_API_KEY
        self.limit = limit or settings.METADATA_LIMIT

    async def fetch(self) -> List[Dict[str, Any]]:
        if not self.api_key:
            raise ConfigurationError(
                "CoinMarketCap API key is not configured",
                hint="Set COINMARKETCAP_API_KEY in the environment or .env file",
            )

        headers = {"X-CMC_PRO_API_KEY": self.api_key, "Accept": "application/json"}

        async with self.session() as client:
            resp = await fetch_with_retry(
                client,
                f"{BASE_URL}/v1/exchange/map",
                params={"start": 1, "limit": self.limit, "sort": "volume_24h"},
                headers=headers,
            )
            exchange_map: List[Dict[str, Any]] = self._unwrap(resp.json()) or []

            ids = [str(item["id"]) for item in exchange_map if item.get("id") is not None]
            info: Dict[str, Dict[str, Any]] = {}
            if ids:
                resp = await fetch_with_retry(
                    client,
                    f"{BASE_URL}/v1/exchange/info",
                    params={"id": ",".join(ids)},
                    headers=headers,
                )
                info = self._unwrap(resp.json()) or {}

        results = [{**item, **info.get(str(item.get("id")), {})} for item in exchange_map]
        log.info(f"Fetched {len(results)} exchanges from CoinMarketCap")
        return results

    @staticmethod
    def _unwrap(body: Dict[str, Any]) -> Any:
        status = body.get("status") or {}
        if status.get("error_code", 0) != 0:
            raise APIError(
                f"CoinMarketCap API error: {status.get('error_message')}",
                None,
                "coinmarketcap",
            )
        return body.get("data")
