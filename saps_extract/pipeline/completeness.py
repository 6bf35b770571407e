from __future__ import annotations

from saps_extract.pipeline.types import (
    IDENTITY_FIELDS,
    ExtractionFieldSet,
    MaybeFloat,
    is_available,
    is_populated,
)


def missing_required_fields(field_set: ExtractionFieldSet) -> list[str]:
    missing = missing_identity_fields(field_set)
    if not field_set.block_ids:
        missing.append("block_ids")
    if not _is_positive(field_set.hectares):
        missing.append("hectares")
    if not field_set.cultures:
        missing.append("cultures")
    return missing


def missing_identity_fields(field_set: ExtractionFieldSet) -> list[str]:
    return [
        name for name in IDENTITY_FIELDS if not is_populated(getattr(field_set, name))
    ]


def is_complete(field_set: ExtractionFieldSet) -> bool:
    return not missing_required_fields(field_set)


def has_usable_data(field_set: ExtractionFieldSet) -> bool:
    return _is_positive(field_set.hectares) and bool(field_set.cultures)


def _is_positive(value: MaybeFloat) -> bool:
    return is_available(value) and float(value) > 0
