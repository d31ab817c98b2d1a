"""Test doubles for upstream sources and the AI enricher"""

import asyncio
from typing import Any, Dict, List, Optional, Set

from app.core.errors import EnrichmentError
from app.ingestion.base import BaseSource, FeeEnricher
from app.schemas.fees import CEXFeeResult, DEXFeeResult

HOUR = 60 * 60


def cex_records(count: int) -> List[Dict[str, Any]]:
    return [{"slug": f"ex{i}", "name": f"Exchange {i}", "spot_volume_usd": 1000 - i} for i in range(count)]


def dex_records(count: int) -> List[Dict[str, Any]]:
    return [{"id": f"dex{i}", "name": f"Dex {i}", "chains": ["Ethereum"], "category": "Dexs"} for i in range(count)]


class FakeClock:
    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeSource(BaseSource):
    """Metadata source returning canned records"""

    name = "fake"

    def __init__(self, records: List[Dict[str, Any]], error: Optional[Exception] = None):
        super().__init__()
        self.records = records
        self.error = error
        self.calls = 0
        self.gate: Optional[asyncio.Event] = None

    async def fetch(self) -> List[Dict[str, Any]]:
        self.calls += 1
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        return [dict(record) for record in self.records]


class FakeEnricher(FeeEnricher):
    """AI enricher returning fixed fees, with optional failures and a pause gate"""

    def __init__(
        self,
        enabled: bool = True,
        fail_calls: Optional[Set[int]] = None,
        overloaded: bool = False,
        maker_fee: float = 0.1,
    ):
        self._enabled = enabled
        self.fail_calls = fail_calls or set()
        self.overloaded = overloaded
        self.maker_fee = maker_fee
        self.calls: List[List[str]] = []
        self.started = asyncio.Event()
        self.gate: Optional[asyncio.Event] = None

    @property
    def enabled(self) -> bool:
        return self._enabled

    async def fetch_fees(self, kind, entities):
        call = len(self.calls) + 1
        self.calls.append([entity.entity_id for entity in entities])
        self.started.set()
        if self.gate is not None:
            await self.gate.wait()
        if call in self.fail_calls:
            raise EnrichmentError(f"batch {call} failed", overloaded=self.overloaded)
        if kind == "cex":
            return [
                CEXFeeResult(exchange_id=e.entity_id, maker_fee=self.maker_fee, taker_fee=self.maker_fee * 2)
                for e in entities
            ]
        return [DEXFeeResult(dex_id=e.entity_id, swap_fee=0.3) for e in entities]
