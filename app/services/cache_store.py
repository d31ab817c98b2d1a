"""Process-wide store for the CEX/DEX snapshots and their enrichment state.

One ``CacheStore`` lives on ``app.state`` and is handed to every component that
reads or mutates cached data. All writes go through its methods:

* a metadata fetch replaces a snapshot wholesale and bumps its generation;
* enrichment merges into an index range of the current snapshot, guarded by
  the generation and run id captured when the run started;
* at most one enrichment run per kind holds a ``ProcessingLease``.

Listeners registered with ``add_listener`` are told about processing changes
and merged batches, which is how the SSE broadcaster learns about progress.
"""

from __future__ import annotations

import asyncio
import itertools
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Literal, Optional, Sequence

from app.core.circuit_breaker import CircuitBreaker
from app.core.config import DatasetKind, settings
from app.core.logging import get_logger
from app.ingestion.base import FeeEntity, FeeResult
from app.schemas.api import DatasetStatus
from app.services.merge import count_enhanced, merge_batch

log = get_logger("cache_store")

KINDS: tuple = ("cex", "dex")
ClearType = Literal["all", "cex", "dex", "ai", "circuit-breaker"]
Listener = Callable[[str, DatasetKind, Dict[str, Any]], None]


def _iso(ts: float) -> datetime:
    return datetime.fromtimestamp(ts, tz=timezone.utc)


@dataclass
class Snapshot:
    entities: List[FeeEntity]
    captured_at: float
    generation: int

    @property
    def enhanced_count(self) -> int:
        return count_enhanced(self.entities)


@dataclass
class DatasetState:
    snapshot: Optional[Snapshot] = None
    is_processing: bool = False
    last_error: Optional[str] = None
    generation: int = 0
    active_run: Optional[int] = None


@dataclass
class ProcessingLease:
    """Ownership of the per-kind processing flag for one enrichment run."""

    store: "CacheStore"
    kind: DatasetKind
    generation: int
    run_id: int
    released: bool = field(default=False, init=False)

    @property
    def is_current(self) -> bool:
        return self.store.owns(self)

    def release(self, error: Optional[str] = None) -> None:
        if self.released:
            return
        self.released = True
        self.store._release(self, error)

    async def __aenter__(self) -> "ProcessingLease":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> bool:
        error = None
        if exc is not None and not isinstance(exc, asyncio.CancelledError):
            error = str(exc) or exc_type.__name__
        self.release(error)
        return False


class CacheStore:
    def __init__(
        self,
        breaker: Optional[CircuitBreaker] = None,
        cache_durations: Optional[Dict[str, float]] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.breaker = breaker or CircuitBreaker(
            settings.CIRCUIT_BREAKER_THRESHOLD,
            settings.CIRCUIT_BREAKER_COOLDOWN_SECONDS,
        )
        self.cache_durations = cache_durations or {kind: settings.cache_duration_seconds(kind) for kind in KINDS}
        self.clock = clock
        self.datasets: Dict[str, DatasetState] = {kind: DatasetState() for kind in KINDS}
        self._run_ids = itertools.count(1)
        self._listeners: List[Listener] = []

    # -------------------------------------------------------------------------
    # Listeners
    # -------------------------------------------------------------------------
    def add_listener(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: Listener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _notify(self, event: str, kind: DatasetKind, data: Dict[str, Any]) -> None:
        for listener in list(self._listeners):
            try:
                listener(event, kind, data)
            except Exception as exc:  # noqa: BLE001
                log.warning(f"Cache listener failed on {event}: {exc}")

    # -------------------------------------------------------------------------
    # Snapshots
    # -------------------------------------------------------------------------
    def now(self) -> float:
        return self.clock()

    def state(self, kind: DatasetKind) -> DatasetState:
        return self.datasets[kind]

    def snapshot(self, kind: DatasetKind) -> Optional[Snapshot]:
        return self.datasets[kind].snapshot

    def fresh_snapshot(self, kind: DatasetKind) -> Optional[Snapshot]:
        """The current snapshot if it is still within its cache duration."""
        snap = self.datasets[kind].snapshot
        if snap is None or self.now() - snap.captured_at >= self.cache_durations[kind]:
            return None
        return snap

    def is_fresh(self, kind: DatasetKind) -> bool:
        return self.fresh_snapshot(kind) is not None

    def replace_snapshot(self, kind: DatasetKind, entities: Sequence[FeeEntity]) -> Snapshot:
        """Install a freshly fetched snapshot; any run on the old one is superseded."""
        state = self.datasets[kind]
        state.generation += 1
        superseded = state.is_processing
        state.is_processing = False
        state.active_run = None
        if superseded:
            log.info(f"{kind.upper()} snapshot replaced while enrichment running; old run superseded")
            self._notify("ai-processing", kind, {"processing": False})
        state.snapshot = Snapshot(entities=list(entities), captured_at=self.now(), generation=state.generation)
        log.info(f"{kind.upper()} snapshot stored: {len(entities)} entities (generation {state.generation})")
        return state.snapshot

    def merge_results(
        self,
        lease: ProcessingLease,
        start: int,
        size: int,
        results: Sequence[FeeResult],
    ) -> Optional[List[FeeEntity]]:
        """Merge one batch into ``[start, start + size)`` of the current snapshot.

        Returns the merged slice, or None when the lease no longer owns the
        dataset (invalidated, replaced or cleared since the run started).
        """
        snap = self.datasets[lease.kind].snapshot
        if snap is None or not self.owns(lease):
            log.info(f"Dropping stale {lease.kind.upper()} merge from run {lease.run_id}")
            return None

        end = min(start + size, len(snap.entities))
        merged = merge_batch(snap.entities[start:end], results)
        snap.entities[start:end] = merged

        self._notify(
            "fee-update",
            lease.kind,
            {
                "start": start,
                "data": merged,
                "enhanced": snap.enhanced_count,
                "total": len(snap.entities),
            },
        )
        return merged

    # -------------------------------------------------------------------------
    # Processing flag
    # -------------------------------------------------------------------------
    def acquire(self, kind: DatasetKind) -> Optional[ProcessingLease]:
        """Take the processing flag for ``kind``; None if a run already holds it."""
        state = self.datasets[kind]
        if state.is_processing or state.snapshot is None:
            return None

        run_id = next(self._run_ids)
        state.is_processing = True
        state.active_run = run_id
        state.last_error = None
        self._notify("ai-processing", kind, {"processing": True})
        return ProcessingLease(self, kind, state.generation, run_id)

    def owns(self, lease: ProcessingLease) -> bool:
        state = self.datasets[lease.kind]
        return (
            not lease.released
            and state.active_run == lease.run_id
            and state.generation == lease.generation
            and state.snapshot is not None
        )

    def _release(self, lease: ProcessingLease, error: Optional[str]) -> None:
        state = self.datasets[lease.kind]
        if state.active_run != lease.run_id:
            return
        state.is_processing = False
        state.active_run = None
        if error:
            state.last_error = error
        self._notify("ai-processing", lease.kind, {"processing": False})

    def record_error(self, lease: ProcessingLease, message: str) -> None:
        if self.owns(lease):
            self.datasets[lease.kind].last_error = message

    # -------------------------------------------------------------------------
    # Circuit breaker
    # -------------------------------------------------------------------------
    def breaker_active(self) -> bool:
        return self.breaker.is_blocked(self.now())

    def record_enrichment_failure(self, overloaded: bool) -> Optional[float]:
        return self.breaker.should_block(overloaded, self.now())

    def record_enrichment_success(self) -> None:
        self.breaker.record_success()

    # -------------------------------------------------------------------------
    # Invalidation
    # -------------------------------------------------------------------------
    def invalidate(self, kind: DatasetKind) -> List[str]:
        """Drop the snapshot and reset processing/error state for ``kind``."""
        state = self.datasets[kind]
        cleared: List[str] = []
        if state.snapshot is not None:
            cleared.append(f"{kind.upper()} cache")

        state.snapshot = None
        state.generation += 1
        cleared.extend(self._reset_processing(kind))
        return cleared

    def _reset_processing(self, kind: DatasetKind) -> List[str]:
        """Supersede any active run; clients are told processing stopped."""
        state = self.datasets[kind]
        label = kind.upper()
        cleared: List[str] = []
        was_processing = state.is_processing
        if was_processing:
            cleared.append(f"{label} AI processing state")
        if state.last_error:
            cleared.append(f"{label} AI error state")
        state.is_processing = False
        state.active_run = None
        state.last_error = None
        if was_processing:
            self._notify("ai-processing", kind, {"processing": False})
        return cleared

    def clear(self, clear_type: ClearType = "all") -> List[str]:
        """Clear cached state; returns human-readable names of what was cleared."""
        cleared: List[str] = []

        if clear_type in ("all", "cex", "dex"):
            kinds = KINDS if clear_type == "all" else (clear_type,)
            for kind in kinds:
                cleared.extend(self.invalidate(kind))
        elif clear_type == "ai":
            for kind in KINDS:
                cleared.extend(self._reset_processing(kind))

        if self.breaker.clear(self.now()):
            cleared.append("Gemini circuit breaker")

        log.info(f"Cache clear ({clear_type}): {', '.join(cleared) or 'nothing to clear'}")
        return cleared

    # -------------------------------------------------------------------------
    # Status
    # -------------------------------------------------------------------------
    def status(self, kind: DatasetKind) -> DatasetStatus:
        state = self.datasets[kind]
        snap = state.snapshot
        if snap is None:
            return DatasetStatus(exists=False, is_processing=state.is_processing, last_error=state.last_error)

        now = self.now()
        duration = self.cache_durations[kind]
        total = len(snap.entities)
        return DatasetStatus(
            exists=True,
            data_length=total,
            cached_at=_iso(snap.captured_at),
            age_ms=int((now - snap.captured_at) * 1000),
            is_valid=now - snap.captured_at < duration,
            expires_at=_iso(snap.captured_at + duration),
            is_processing=state.is_processing,
            last_error=state.last_error,
            enhanced_count=snap.enhanced_count,
            total_count=total,
        )
