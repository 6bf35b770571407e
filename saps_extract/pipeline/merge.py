from __future__ import annotations

from dataclasses import replace
from typing import Callable, Hashable, Iterable, TypeVar

from saps_extract.pipeline.types import SCALAR_FIELDS, ExtractionFieldSet, is_populated

T = TypeVar("T")


def merge_field_sets(
    combined: ExtractionFieldSet,
    incoming: ExtractionFieldSet,
) -> ExtractionFieldSet:
    """Fold ``incoming`` into ``combined`` without overwriting populated fields.

    Scalars are filled only while still empty. Lists are unioned by identity
    key in first-seen order.
    """
    updates: dict[str, object] = {}
    for name in SCALAR_FIELDS:
        current = getattr(combined, name)
        candidate = getattr(incoming, name)
        if not is_populated(current) and is_populated(candidate):
            updates[name] = candidate

    return replace(
        combined,
        cultures=union_by_key(combined.cultures, incoming.cultures, lambda c: c.name),
        block_ids=union_by_key(combined.block_ids, incoming.block_ids, str),
        historical_data=union_by_key(
            combined.historical_data, incoming.historical_data, lambda y: y.year
        ),
        **updates,
    )


def merge_all(
    field_sets: Iterable[ExtractionFieldSet],
    initial: ExtractionFieldSet | None = None,
) -> ExtractionFieldSet:
    combined = initial or ExtractionFieldSet()
    for field_set in field_sets:
        combined = merge_field_sets(combined, field_set)
    return combined


def union_by_key(
    existing: tuple[T, ...],
    incoming: tuple[T, ...],
    key: Callable[[T], Hashable],
) -> tuple[T, ...]:
    seen = {key(item) for item in existing}
    result = list(existing)
    for item in incoming:
        item_key = key(item)
        if item_key in seen:
            continue
        seen.add(item_key)
        result.append(item)
    return tuple(result)
