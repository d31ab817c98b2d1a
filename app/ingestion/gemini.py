"""Gemini client that asks the model for exchange fee data.

Prompts list a small batch of exchanges and ask for a bare JSON array.
Responses are cleaned of markdown fences, parsed, and validated into
``CEXFeeResult`` / ``DEXFeeResult`` records. Overload responses (HTTP 429/503
or an "overloaded" message) are flagged on the raised ``EnrichmentError`` so
the circuit breaker can count them.
"""

from __future__ import annotations

import json
import re
from typing import Any, Dict, List, Optional, Sequence

import httpx
from pydantic import ValidationError

from app.core.config import DatasetKind, settings
from app.core.errors import APIError, EnrichmentError
from app.core.http import fetch_with_retry
from app.core.logging import get_logger
from app.schemas.fees import CEXFeeResult, CEXFees, DEXFeeResult, DEXFees
from .base import FeeEnricher, FeeEntity, FeeResult, HTTPSource

log = get_logger("ingestion.gemini")

BASE_URL = "https://generativelanguage.googleapis.com/v1beta"

OVERLOAD_STATUS_CODES = {429, 503}
OVERLOAD_MARKERS = ("overloaded", "unavailable", "resource_exhausted", "rate limit")

_FENCE = re.compile(r"```(?:json)?\s*|```")


def build_cex_prompt(exchanges: Sequence[CEXFees]) -> str:
    rows = "\n".join(f"| {ex.exchange_id} | **{ex.exchange_name}** |" for ex in exchanges)
    return f"""**Find and Retrieve** the current lowest-tier SPOT TRADING maker and taker fees \
(as a percentage, e.g., 0.1 for 0.1%) from the official spot trading fee page of each exchange \
listed below. Search only by the identical "Exchange Name" provided.
Return only the JSON array, no additional text or explanation. Use null for any fee you are not certain about.

**List of Exchanges to Check:**
| Exchange ID | Exchange Name |
{rows}

**Required Output Schema (JSON array):**
[
  {{
    "exchangeId": "string (use the ID provided above)",
    "makerFee": number | null,
    "takerFee": number | null,
    "withdrawalFees": {{"BTC": number | null, "ETH": number | null, "USDT": number | null}},
    "depositFees": {{"BTC": number | null, "ETH": number | null, "USDT": number | null}}
  }}
]
"""


def build_dex_prompt(dexes: Sequence[DEXFees]) -> str:
    rows = "\n".join(
        f"- {dex.dex_name} (ID: {dex.dex_id}) on {', '.join(dex.blockchain) or 'unknown chains'}" for dex in dexes
    )
    return f"""You are a decentralized exchange (DEX) fee data expert. Provide REAL, CURRENT swap fees \
and gas estimates for the following DEXes.

IMPORTANT INSTRUCTIONS:
- Only provide fee data you are confident about; use null otherwise
- Swap fees are percentages (0.3 for 0.3%)
- Gas estimates are in USD, only for blockchains the DEX actually operates on
- Return only the JSON array, no additional text or explanation

DEXES TO ANALYZE:
{rows}

Output schema for each DEX:
{{
  "dexId": "string (use the ID provided above)",
  "swapFee": number | null,
  "gasFeeEstimate": {{"<Blockchain>": {{"low": number | null, "average": number | null, "high": number | null}}}}
}}
"""


def parse_json_array(text: str) -> List[Dict[str, Any]]:
    """Parse the model's reply, tolerating code fences and surrounding prose."""
    cleaned = _FENCE.sub("", text).strip()
    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError:
        start, end = cleaned.find("["), cleaned.rfind("]")
        if start == -1 or end <= start:
            raise EnrichmentError(f"Failed to parse AI response as JSON: {cleaned[:120]!r}")
        try:
            data = json.loads(cleaned[start : end + 1])
        except json.JSONDecodeError as exc:
            raise EnrichmentError(f"Failed to parse AI response as JSON: {exc}") from exc

    if isinstance(data, dict):
        data = [data]
    if not isinstance(data, list):
        raise EnrichmentError("AI response is not a JSON array")
    return [item for item in data if isinstance(item, dict)]


def _is_overload(status_code: Optional[int], message: str) -> bool:
    if status_code in OVERLOAD_STATUS_CODES:
        return True
    lowered = message.lower()
    return any(marker in lowered for marker in OVERLOAD_MARKERS)


class GeminiFeeClient(HTTPSource, FeeEnricher):
    """Best-effort fee lookup through the Gemini ``generateContent`` endpoint."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
        retries: Optional[int] = None,
    ):
        super().__init__(client)
        self.api_key = api_key if api_key is not None else settings.GEMINI_API_KEY
        self.model = model or settings.GEMINI_MODEL
        self.retries = retries

    @property
    def enabled(self) -> bool:
        return bool(self.api_key)

    async def fetch_fees(self, kind: DatasetKind, entities: Sequence[FeeEntity]) -> List[FeeResult]:
        if not entities:
            return []
        if kind == "cex":
            return await self.fetch_cex_fees(entities)  # type: ignore[arg-type]
        return await self.fetch_dex_fees(entities)  # type: ignore[arg-type]

    async def fetch_cex_fees(self, exchanges: Sequence[CEXFees]) -> List[CEXFeeResult]:
        items = parse_json_array(await self.generate(build_cex_prompt(exchanges)))
        results = self._validate(items, CEXFeeResult, "exchangeId")
        log.info(f"AI returned fee data for {len(results)}/{len(exchanges)} CEX exchanges")
        return results

    async def fetch_dex_fees(self, dexes: Sequence[DEXFees]) -> List[DEXFeeResult]:
        items = parse_json_array(await self.generate(build_dex_prompt(dexes)))
        results = self._validate(items, DEXFeeResult, "dexId")
        log.info(f"AI returned fee data for {len(results)}/{len(dexes)} DEXes")
        return results

    async def generate(self, prompt: str) -> str:
        if not self.api_key:
            raise EnrichmentError("GEMINI_API_KEY environment variable is required")

        body = {"contents": [{"role": "user", "parts": [{"text": prompt}]}]}
        url = f"{BASE_URL}/models/{self.model}:generateContent"

        try:
            async with self.session() as client:
                resp = await fetch_with_retry(
                    client,
                    url,
                    method="POST",
                    retries=self.retries,
                    json=body,
                    headers={"x-goog-api-key": self.api_key},
                )
                payload = resp.json()
        except APIError as exc:
            raise EnrichmentError(
                f"Gemini API error: {exc.message}",
                overloaded=_is_overload(exc.status_code, exc.message),
                status_code=exc.status_code,
            ) from exc
        except ValueError as exc:
            raise EnrichmentError(f"Gemini API returned invalid JSON: {exc}") from exc

        text = self._extract_text(payload)
        if not text:
            error = (payload.get("error") or {}).get("message", "") if isinstance(payload, dict) else ""
            raise EnrichmentError(
                f"No response from Gemini API{': ' + error if error else ''}",
                overloaded=_is_overload(None, error),
            )
        return text

    @staticmethod
    def _extract_text(payload: Any) -> str:
        if not isinstance(payload, dict):
            return ""
        for candidate in payload.get("candidates") or []:
            parts = (candidate.get("content") or {}).get("parts") or []
            text = "".join(part.get("text", "") for part in parts if isinstance(part, dict))
            if text:
                return text
        return ""

    @staticmethod
    def _validate(items: List[Dict[str, Any]], model: Any, id_field: str) -> List[Any]:
        results = []
        for item in items:
            if item.get(id_field) in (None, ""):
                continue
            try:
                results.append(model.model_validate(item))
            except ValidationError as exc:
                log.warning(f"Skipping malformed AI record {item.get(id_field)!r}: {exc.error_count()} errors")
        return results
