"""Merge AI fee results into entities without touching identity fields."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Sequence

from app.ingestion.base import FeeEntity, FeeResult


def _present(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, Mapping) and not value:
        return False
    return True


def merge_entity(entity: FeeEntity, result: FeeResult, now: Optional[datetime] = None) -> FeeEntity:
    """Overwrite enrichment fields that ``result`` actually carries.

    ``last_updated`` moves only when a value changes, so merging the same
    result twice leaves the entity as it was after the first merge.
    """
    updates: Dict[str, Any] = {}
    for field in entity.ENRICHMENT_FIELDS:
        value = getattr(result, field, None)
        if _present(value) and value != getattr(entity, field):
            updates[field] = value

    if not updates:
        return entity

    updates["last_updated"] = now or datetime.now(timezone.utc)
    return entity.model_copy(update=updates)


def merge_batch(
    entities: Sequence[FeeEntity],
    results: Sequence[FeeResult],
    now: Optional[datetime] = None,
) -> List[FeeEntity]:
    """Merge results matched by id; entities without a result pass through."""
    by_id = {result.entity_id: result for result in results}
    merged: List[FeeEntity] = []
    for entity in entities:
        result = by_id.get(entity.entity_id)
        merged.append(merge_entity(entity, result, now) if result is not None else entity)
    return merged


def count_enhanced(entities: Sequence[FeeEntity]) -> int:
    return sum(1 for entity in entities if entity.is_enhanced)
