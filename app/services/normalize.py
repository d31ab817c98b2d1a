"""Turn raw metadata records into placeholder entities (all fees null)."""

from __future__ import annotations

import re
from datetime import datetime
from typing import Any, Dict, List, Optional

from app.core.config import DatasetKind
from app.core.logging import get_logger
from app.ingestion.base import FeeEntity
from app.schemas.fees import CEXFees, DEXFees

log = get_logger("normalize")

DEFAULT_LOGO = "/logos/default.svg"


def _slugify(name: Any) -> str:
    return re.sub(r"\s+", "-", str(name or "").strip().lower())


def _to_float(val: Any) -> float:
    try:
        return float(val) if val is not None else 0.0
    except (TypeError, ValueError):
        return 0.0


def _year(raw: Dict[str, Any]) -> Optional[int]:
    launched = raw.get("date_launched")
    if launched:
        try:
            return datetime.fromisoformat(str(launched).replace("Z", "+00:00")).year
        except ValueError:
            pass
    year = raw.get("year_established")
    try:
        return int(year) if year not in (None, "") else None
    except (TypeError, ValueError):
        return None


def normalize_cex(raw: Dict[str, Any]) -> CEXFees:
    """CoinMarketCap (+ CoinGecko) record -> placeholder ``CEXFees``.

    CMC's own maker/taker fields are unreliable and deliberately ignored.
    """
    exchange_id = raw.get("slug") or (str(raw["id"]) if raw.get("id") is not None else _slugify(raw.get("name")))
    countries = raw.get("countries") or []
    website = ((raw.get("urls") or {}).get("website") or [None])[0]

    return CEXFees(
        exchange_id=exchange_id,
        exchange_name=raw.get("name") or exchange_id,
        logo=raw.get("logo") or raw.get("image") or DEFAULT_LOGO,
        trust_score=_to_float(raw.get("trust_score")),
        volume24h=_to_float(raw.get("spot_volume_usd")),
        year_established=_year(raw),
        country=(countries[0] if countries else None) or raw.get("country") or "Unknown",
        url=website or raw.get("url") or "",
    )


def normalize_dex(raw: Dict[str, Any]) -> DEXFees:
    """DeFiLlama record -> placeholder ``DEXFees``."""
    category = str(raw.get("category") or "").lower()
    protocol = "Aggregator" if "aggregator" in category else "AMM"

    return DEXFees(
        dex_id=raw.get("id") or _slugify(raw.get("name")),
        dex_name=raw.get("name") or "Unknown DEX",
        logo=raw.get("image") or DEFAULT_LOGO,
        protocol=protocol,
        blockchain=list(raw.get("chains") or []),
        liquidity_usd=_to_float(raw.get("liquidityUSD")),
        volume24h=_to_float(raw.get("volume24h") or raw.get("total24h")),
        url=raw.get("url") or "",
    )


def normalize_records(kind: DatasetKind, records: List[Dict[str, Any]]) -> List[FeeEntity]:
    """Normalize in order, dropping malformed records and duplicate ids."""
    normalizer = normalize_cex if kind == "cex" else normalize_dex
    seen: set = set()
    entities: List[FeeEntity] = []
    for raw in records:
        try:
            entity = normalizer(raw)
        except (KeyError, TypeError, ValueError) as exc:
            log.warning(f"Skipping malformed {kind} record {raw.get('name')!r}: {exc}")
            continue
        if entity.entity_id in seen:
            continue
        seen.add(entity.entity_id)
        entities.append(entity)
    return entities
