"""Orchestration logic for metadata ingestion."""

from __future__ import annotations

import re
from typing import Any, Dict, List, Optional

import httpx

from app.core.errors import APIError
from app.core.logging import get_logger
from .base import BaseSource
from .coingecko import CoinGeckoSource
from .coinmarketcap import CoinMarketCapSource
from .defillama import DefiLlamaSource

log = get_logger("ingestion.runner")


def _key(value: Any) -> str:
    return re.sub(r"[^a-z0-9]", "", str(value or "").lower())


class CexMetadataSource(BaseSource):
    """CoinMarketCap ranking enriched with CoinGecko trust scores.

    CoinMarketCap is required and decides the order. CoinGecko is
    best-effort: when it fails the CMC records are returned as they are.
    """

    name = "cex"

    def __init__(self, primary: CoinMarketCapSource, secondary: Optional[CoinGeckoSource] = None):
        super().__init__()
        self.primary = primary
        self.secondary = secondary

    async def fetch(self) -> List[Dict[str, Any]]:
        records = await self.primary.fetch()
        if not records or self.secondary is None:
            return records

        try:
            gecko = await self.secondary.fetch()
        except (APIError, httpx.HTTPError, ValueError) as exc:
            log.warning(f"CoinGecko lookup failed, continuing without trust scores: {exc}")
            return records

        lookup: Dict[str, Dict[str, Any]] = {}
        for item in gecko:
            for candidate in (item.get("id"), item.get("name")):
                key = _key(candidate)
                if key and key not in lookup:
                    lookup[key] = item

        matched = 0
        combined: List[Dict[str, Any]] = []
        for record in records:
            extra = lookup.get(_key(record.get("slug"))) or lookup.get(_key(record.get("name")))
            if extra:
                matched += 1
                record = {
                    **record,
                    "trust_score": extra.get("trust_score"),
                    "image": extra.get("image"),
                    "year_established": extra.get("year_established"),
                    "country": extra.get("country"),
                }
            combined.append(record)

        log.info(f"Matched {matched}/{len(records)} exchanges with CoinGecko trust scores")
        return combined


def build_metadata_sources(client: Optional[httpx.AsyncClient] = None) -> Dict[str, BaseSource]:
    """Default source per dataset kind."""
    return {
        "cex": CexMetadataSource(CoinMarketCapSource(client=client), CoinGeckoSource(client=client)),
        "dex": DefiLlamaSource(client=client),
    }
