"""Enhancement cache core: serve pages now, enrich fees in the background.

Read path (``get_page``):
1. Fresh snapshot -> slice it, ``cached=True``.
2. Miss -> fetch metadata, store placeholder entities as the new snapshot and,
   for page 1 only, start one background enrichment run before answering.

Background run (``_enrich``): walks the snapshot in fixed-size batches, in
index order, pausing between batches to respect the AI quota. Each successful
batch is merged into the *current* snapshot by index range. A failed batch is
logged and skipped; the run itself only ends early when its lease goes stale
(the dataset was invalidated, replaced or cleared).
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Awaitable, Callable, Dict, List, Optional

from app.core.config import DatasetKind, settings
from app.core.logging import get_logger
from app.ingestion.base import BaseSource, FeeEnricher, FeeEntity
from app.schemas.api import DatasetStatus
from app.services.cache_store import CacheStore, ProcessingLease, Snapshot
from app.services.jobs import BackgroundJobs
from app.services.normalize import normalize_records

log = get_logger("enhancement")


def total_batches(length: int, size: int) -> int:
    return -(-length // size) if size > 0 else 0


@dataclass
class FeePage:
    kind: DatasetKind
    data: List[FeeEntity]
    cached: bool
    cached_at: datetime
    batch: int
    batch_size: int
    total: int
    background_processing: bool

    @property
    def total_batches(self) -> int:
        return total_batches(self.total, self.batch_size)

    @property
    def has_more(self) -> bool:
        return self.batch * self.batch_size < self.total


class EnhancementService:
    def __init__(
        self,
        store: CacheStore,
        sources: Dict[str, BaseSource],
        enricher: FeeEnricher,
        jobs: Optional[BackgroundJobs] = None,
        batch_size: Optional[int] = None,
        batch_delay: Optional[float] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.store = store
        self.sources = sources
        self.enricher = enricher
        self.jobs = jobs or BackgroundJobs()
        self.batch_size = batch_size or settings.AI_BATCH_SIZE
        self.batch_delay = settings.AI_BATCH_DELAY_SECONDS if batch_delay is None else batch_delay
        self._sleep = sleep
        self._miss_locks: Dict[str, asyncio.Lock] = {kind: asyncio.Lock() for kind in sources}

    # -------------------------------------------------------------------------
    # Read path
    # -------------------------------------------------------------------------
    async def get_page(self, kind: DatasetKind, batch: int = 1, batch_size: int = 10) -> FeePage:
        """Return one page of ``kind``; rebuilds the snapshot on a miss.

        Metadata failures propagate to the caller and leave no snapshot behind.
        """
        if batch < 1 or batch_size < 1:
            raise ValueError("batch and batch_size must be >= 1")

        snapshot = self.store.fresh_snapshot(kind)
        if snapshot is not None:
            return self._page(kind, snapshot, batch, batch_size, cached=True)

        async with self._miss_locks[kind]:
            # Another request may have rebuilt it while we waited
            snapshot = self.store.fresh_snapshot(kind)
            if snapshot is not None:
                return self._page(kind, snapshot, batch, batch_size, cached=True)

            log.info(f"{kind.upper()} cache miss - fetching metadata (batch {batch})")
            records = await self.sources[kind].fetch()
            entities = normalize_records(kind, records)
            snapshot = self.store.replace_snapshot(kind, entities)

            if batch == 1:
                self.start_enrichment(kind)

            return self._page(kind, snapshot, batch, batch_size, cached=False)

    def _page(
        self,
        kind: DatasetKind,
        snapshot: Snapshot,
        batch: int,
        batch_size: int,
        cached: bool,
    ) -> FeePage:
        start = (batch - 1) * batch_size
        data = snapshot.entities[start : start + batch_size]
        if cached:
            log.debug(f"{kind.upper()} cache hit - batch {batch}: {len(data)} of {len(snapshot.entities)}")
        return FeePage(
            kind=kind,
            data=data,
            cached=cached,
            cached_at=datetime.fromtimestamp(snapshot.captured_at, tz=timezone.utc),
            batch=batch,
            batch_size=batch_size,
            total=len(snapshot.entities),
            background_processing=self.store.state(kind).is_processing,
        )

    # -------------------------------------------------------------------------
    # Background enrichment
    # -------------------------------------------------------------------------
    def enrichment_blocker(self, kind: DatasetKind) -> Optional[str]:
        """Why a run for ``kind`` cannot start right now, or None if it can."""
        label = "exchange" if kind == "cex" else "DEX"
        if not self.enricher.enabled:
            return "GEMINI_API_KEY not configured"

        if self.store.breaker_active():
            return "AI circuit breaker active, try again after the cool-down"

        snapshot = self.store.snapshot(kind)
        if snapshot is None or not snapshot.entities:
            return f"No {label} data in cache. Load the {kind.upper()} fees first."

        if self.store.state(kind).is_processing:
            return f"{kind.upper()} AI enhancement already in progress"
        return None

    def start_enrichment(self, kind: DatasetKind) -> bool:
        """Launch a background run unless one is running or the AI is gated off."""
        blocker = self.enrichment_blocker(kind)
        if blocker is not None:
            log.info(f"{kind.upper()} AI enrichment not started: {blocker}")
            return False

        lease = self.store.acquire(kind)
        if lease is None:
            return False

        total = len(self.store.snapshot(kind).entities)
        log.info(f"Starting background {kind.upper()} AI enrichment for {total} entities")
        self.jobs.spawn(self._enrich(lease), name=f"{kind}-enrichment-{lease.run_id}", on_done=lease.release)
        return True

    async def _enrich(self, lease: ProcessingLease) -> None:
        kind = lease.kind
        async with lease:
            snapshot = self.store.snapshot(kind)
            if snapshot is None:
                return
            total = len(snapshot.entities)
            batches = total_batches(total, self.batch_size)
            failures = 0

            for index, start in enumerate(range(0, total, self.batch_size)):
                label = f"{kind.upper()} batch {index + 1}/{batches}"

                if index > 0 and self.batch_delay > 0:
                    await self._sleep(self.batch_delay)

                current = self.store.snapshot(kind)
                if current is None or not lease.is_current:
                    log.info(f"{label}: dataset changed since run started, stopping")
                    return

                entities = current.entities[start : start + self.batch_size]

                try:
                    results = await self.enricher.fetch_fees(kind, entities)
                except Exception as exc:  # noqa: BLE001
                    failures += 1
                    message = getattr(exc, "message", None) or str(exc) or exc.__class__.__name__
                    log.warning(f"{label} failed, keeping placeholders: {message}")
                    self.store.record_error(lease, f"{label}: {message}")
                    if self.store.record_enrichment_failure(bool(getattr(exc, "overloaded", False))):
                        log.error("AI upstream overloaded - circuit breaker tripped for new runs")
                    continue

                self.store.record_enrichment_success()
                if not results:
                    log.info(f"{label}: AI returned no fee data")
                    continue

                merged = self.store.merge_results(lease, start, len(entities), results)
                if merged is None:
                    return
                matched = sum(1 for entity in merged if entity.is_enhanced)
                log.info(f"✓ {label}: merged AI fees, {matched}/{len(merged)} enhanced")

            final = self.store.snapshot(kind)
            enhanced = final.enhanced_count if final else 0
            log.info(
                f"{kind.upper()} AI enrichment complete: {enhanced}/{total} enhanced, {failures} failed batch(es)"
            )

    # -------------------------------------------------------------------------
    # Status / invalidation
    # -------------------------------------------------------------------------
    def get_status(self, kind: DatasetKind) -> DatasetStatus:
        return self.store.status(kind)

    def invalidate(self, kind: DatasetKind) -> List[str]:
        cleared = self.store.invalidate(kind)
        log.info(f"{kind.upper()} cache invalidated: {', '.join(cleared) or 'nothing cached'}")
        return cleared
