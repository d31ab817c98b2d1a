"""Abstract upstream interfaces: metadata sources and the AI fee enricher."""

from __future__ import annotations

from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence, Union

import httpx

from app.core.config import DatasetKind
from app.core.http import build_client
from app.schemas.fees import CEXFeeResult, CEXFees, DEXFeeResult, DEXFees

FeeEntity = Union[CEXFees, DEXFees]
FeeResult = Union[CEXFeeResult, DEXFeeResult]


class HTTPSource:
    """Mixin giving sources a shared client in tests and a fresh one otherwise."""

    def __init__(self, client: Optional[httpx.AsyncClient] = None):
        self._client = client

    @asynccontextmanager
    async def session(self) -> AsyncIterator[httpx.AsyncClient]:
        if self._client is not None:
            yield self._client
            return
        async with build_client() as client:
            yield client


class BaseSource(HTTPSource, ABC):
    """Abstract base class for metadata sources."""

    name: str

    @abstractmethod
    async def fetch(self) -> List[Dict[str, Any]]:
        """Fetch raw records in ranking order."""


class FeeEnricher(ABC):
    """Returns best-effort fee values for a small batch of entities."""

    @property
    @abstractmethod
    def enabled(self) -> bool:
        """False when the enricher cannot run (e.g. no credential)."""

    @abstractmethod
    async def fetch_fees(self, kind: DatasetKind, entities: Sequence[FeeEntity]) -> List[FeeResult]:
        """Raise ``EnrichmentError`` on failure."""
