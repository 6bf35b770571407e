from __future__ import annotations

import hashlib
import random
import string
from dataclasses import dataclass, replace
from datetime import date
from pathlib import Path
from typing import Any, Iterable

import yaml

from saps_extract.pipeline.completeness import (
    has_usable_data,
    missing_identity_fields,
    missing_required_fields,
)
from saps_extract.pipeline.types import (
    SCALAR_FIELDS,
    Culture,
    ExtractionFieldSet,
    HistoricalCrop,
    HistoricalYear,
    RecordOrigin,
    is_available,
    is_populated,
)

DEFAULT_CROP_DEFAULTS_PATH = (
    Path(__file__).resolve().parents[1] / "config" / "crop_defaults.yaml"
)

FALLBACK_ERROR_MESSAGE = (
    "Ez egy demo gazdaság, mivel nem sikerült kinyerni az adatokat "
    "a feltöltött dokumentumból."
)
PARTIAL_FALLBACK_MESSAGE = (
    "Nem sikerült az összes adatot kinyerni a dokumentumból. "
    "Demonstrációs adatok kerültek megjelenítésre."
)

LIST_FIELDS: tuple[str, ...] = ("cultures", "block_ids", "historical_data")
# Share of the farm area given to a culture whose own area is unknown.
CULTURE_AREA_SHARE = 0.1
_BLOCK_ID_COUNT = 5


@dataclass(frozen=True, slots=True)
class CropPrice:
    name: str
    yield_per_hectare: float
    price_per_ton: float


@dataclass(frozen=True, slots=True)
class FallbackFarmProfile:
    applicant_name: str
    region: str
    history_years: int
    cultures: tuple[tuple[str, float], ...]


@dataclass(frozen=True, slots=True)
class CropDefaults:
    crops: tuple[CropPrice, ...]
    default_yield_per_hectare: float
    default_price_per_ton: float
    huf_per_eur: float
    fallback_farm: FallbackFarmProfile

    @classmethod
    def from_config(cls, config: dict[str, Any]) -> CropDefaults:
        farm = config.get("fallback_farm") or {}
        cultures = tuple(
            (str(item["name"]), float(item["hectares"]))
            for item in farm.get("cultures") or []
        )
        if not cultures:
            raise ValueError("fallback_farm.cultures must list at least one culture")

        return cls(
            crops=tuple(
                CropPrice(
                    name=str(item["name"]),
                    yield_per_hectare=float(item["yield_per_hectare"]),
                    price_per_ton=float(item["price_per_ton"]),
                )
                for item in config.get("crops") or []
            ),
            default_yield_per_hectare=float(
                config.get("default_yield_per_hectare", 4.5)
            ),
            default_price_per_ton=float(config.get("default_price_per_ton", 80000)),
            huf_per_eur=float(config.get("huf_per_eur", 380)),
            fallback_farm=FallbackFarmProfile(
                applicant_name=str(farm.get("applicant_name", "Demo Gazdálkodó")),
                region=str(farm.get("region", "Bács-Kiskun")),
                history_years=int(farm.get("history_years", 5)),
                cultures=cultures,
            ),
        )

    def lookup(self, culture_name: str) -> CropPrice:
        lowered = culture_name.lower()
        for crop in self.crops:
            if crop.name.lower() in lowered:
                return crop
        return CropPrice(
            name=culture_name,
            yield_per_hectare=self.default_yield_per_hectare,
            price_per_ton=self.default_price_per_ton,
        )


@dataclass(frozen=True, slots=True)
class FinalizedRecord:
    record: ExtractionFieldSet
    origin: RecordOrigin


def load_crop_defaults(path: Path | str | None = None) -> CropDefaults:
    config_path = Path(path) if path is not None else DEFAULT_CROP_DEFAULTS_PATH
    with config_path.open("r", encoding="utf-8") as file:
        data = yaml.safe_load(file) or {}
    if not isinstance(data, dict):
        raise ValueError(f"YAML config must contain object root: {config_path}")
    return CropDefaults.from_config(data)


def synthesize_fallback(
    user_id: str,
    file_name: str | None,
    file_size: int | None,
    *,
    today: date | None = None,
    crop_defaults: CropDefaults | None = None,
) -> ExtractionFieldSet:
    """Build a complete placeholder farm record flagged as unavailable data.

    Every pseudo-random value is drawn from a generator seeded with the user
    id. Dates are taken from ``today``, which defaults to the current date,
    so only calls given the same ``today`` return identical records.
    """
    defaults = crop_defaults or load_crop_defaults()
    profile = defaults.fallback_farm
    current_day = today or date.today()
    rng = random.Random(_seed_for(user_id))

    document_id = f"SAPS-{rng.randint(10_000_000, 99_999_999)}"
    submitter_id = f"{rng.randint(1_000_000_000, 9_999_999_999)}"
    applicant_id = f"{rng.randint(1_000_000_000, 9_999_999_999)}"
    block_ids: list[str] = []
    while len(block_ids) < _BLOCK_ID_COUNT:
        letters = "".join(rng.choice(string.ascii_uppercase) for _ in range(2))
        block_id = f"{letters}{rng.randint(10_000, 99_999)}"
        if block_id not in block_ids:
            block_ids.append(block_id)

    cultures = tuple(
        _valued_culture(name, hectares, defaults)
        for name, hectares in profile.cultures
    )
    total_hectares = round(sum(float(culture.hectares) for culture in cultures), 2)

    history: list[HistoricalYear] = []
    for offset in range(profile.history_years, 0, -1):
        crops: list[HistoricalCrop] = []
        for culture in cultures:
            hectares = round(float(culture.hectares) * rng.uniform(0.8, 1.2), 2)
            yield_per_hectare = round(
                float(culture.yield_per_hectare) * rng.uniform(0.85, 1.15), 2
            )
            price_eur = round(float(culture.price_per_ton) / defaults.huf_per_eur, 2)
            crops.append(
                HistoricalCrop(
                    name=culture.name,
                    hectares=hectares,
                    yield_per_hectare=yield_per_hectare,
                    total_yield=round(hectares * yield_per_hectare, 2),
                    price_eur=price_eur,
                    revenue_eur=round(hectares * yield_per_hectare * price_eur, 2),
                )
            )
        history.append(
            HistoricalYear(
                year=str(current_day.year - offset),
                total_hectares=round(sum(float(crop.hectares) for crop in crops), 2),
                crops=tuple(crops),
                total_revenue_eur=round(
                    sum(float(crop.revenue_eur) for crop in crops), 2
                ),
            )
        )

    return ExtractionFieldSet(
        applicant_name=profile.applicant_name,
        submitter_id=submitter_id,
        applicant_id=applicant_id,
        document_id=document_id,
        submission_date=current_day.isoformat(),
        region=profile.region,
        year=str(current_day.year),
        hectares=total_hectares,
        total_revenue=_total_revenue(cultures),
        cultures=cultures,
        block_ids=tuple(block_ids),
        historical_data=tuple(history),
        data_unavailable=True,
        error_message=FALLBACK_ERROR_MESSAGE,
        synthetic_fields=SCALAR_FIELDS + LIST_FIELDS,
        file_name=file_name,
        file_size=file_size,
    )


def fill_missing(
    record: ExtractionFieldSet,
    synthesized: ExtractionFieldSet,
    fields: Iterable[str] | None = None,
) -> ExtractionFieldSet:
    """Copy synthesized values into fields ``record`` never populated.

    Genuine values and non-empty lists are kept. Total revenue is left for
    ``enrich_cultures`` so it always matches the final culture list.
    """
    allowed = set(fields) if fields is not None else set(SCALAR_FIELDS + LIST_FIELDS)
    updates: dict[str, Any] = {}
    for name in SCALAR_FIELDS:
        if name == "total_revenue" or name not in allowed:
            continue
        if not is_populated(getattr(record, name)):
            updates[name] = getattr(synthesized, name)
    for name in LIST_FIELDS:
        if name in allowed and not getattr(record, name):
            updates[name] = getattr(synthesized, name)

    filled = tuple(name for name in updates if name not in record.synthetic_fields)
    return replace(record, synthetic_fields=record.synthetic_fields + filled, **updates)


def derive_hectares(record: ExtractionFieldSet) -> ExtractionFieldSet:
    if is_available(record.hectares) and float(record.hectares) > 0:
        return record
    areas = [
        float(culture.hectares)
        for culture in record.cultures
        if is_available(culture.hectares) and float(culture.hectares) > 0
    ]
    if not areas:
        return record
    return replace(record, hectares=round(sum(areas), 4))


def enrich_cultures(
    record: ExtractionFieldSet,
    crop_defaults: CropDefaults,
) -> ExtractionFieldSet:
    """Value every culture with default yield and price where missing.

    A culture without an area is given ``CULTURE_AREA_SHARE`` of the farm
    area and ``cultures`` is flagged as synthetic. Total revenue is
    recomputed as the sum of per-culture revenue unless it is already set.
    """
    record = derive_hectares(record)
    estimated_area = False
    cultures: list[Culture] = []
    for culture in record.cultures:
        if not _is_positive(culture.hectares) and _is_positive(record.hectares):
            culture = replace(
                culture, hectares=float(record.hectares) * CULTURE_AREA_SHARE
            )
            estimated_area = True
        defaults = crop_defaults.lookup(culture.name)
        yield_per_hectare = culture.yield_per_hectare
        if not _is_positive(yield_per_hectare):
            yield_per_hectare = defaults.yield_per_hectare
        price_per_ton = culture.price_per_ton
        if not _is_positive(price_per_ton):
            price_per_ton = defaults.price_per_ton

        revenue = culture.estimated_revenue
        if not _is_positive(revenue) and _is_positive(culture.hectares):
            revenue = float(culture.hectares) * yield_per_hectare * price_per_ton
        cultures.append(
            replace(
                culture,
                yield_per_hectare=yield_per_hectare,
                price_per_ton=price_per_ton,
                estimated_revenue=revenue,
            )
        )

    total_revenue = record.total_revenue
    if not _is_positive(total_revenue):
        total_revenue = _total_revenue(tuple(cultures))
    synthetic_fields = record.synthetic_fields
    if estimated_area and "cultures" not in synthetic_fields:
        synthetic_fields += ("cultures",)
    return replace(
        record,
        cultures=tuple(cultures),
        total_revenue=total_revenue,
        synthetic_fields=synthetic_fields,
    )


def finalize_record(
    extracted: ExtractionFieldSet,
    *,
    user_id: str,
    file_name: str | None,
    file_size: int | None,
    crop_defaults: CropDefaults,
    today: date | None = None,
) -> FinalizedRecord:
    """Turn the merged extraction into the single record handed downstream.

    Without usable data (positive hectares and at least one culture) every
    missing field is filled from a synthesized farm. With usable data but
    missing identity fields, exactly those fields are filled and flagged.
    """
    record = derive_hectares(extracted)
    missing = tuple(missing_required_fields(record))

    if not has_usable_data(record):
        synthesized = synthesize_fallback(
            user_id, file_name, file_size, today=today, crop_defaults=crop_defaults
        )
        origin: RecordOrigin = "synthetic" if extracted.is_empty() else "augmented"
        record = replace(
            fill_missing(record, synthesized),
            data_unavailable=True,
            error_message=(
                FALLBACK_ERROR_MESSAGE
                if origin == "synthetic"
                else PARTIAL_FALLBACK_MESSAGE
            ),
        )
    elif identity_gaps := missing_identity_fields(record):
        synthesized = synthesize_fallback(
            user_id, file_name, file_size, today=today, crop_defaults=crop_defaults
        )
        origin = "augmented"
        record = replace(
            fill_missing(record, synthesized, fields=identity_gaps),
            error_message=PARTIAL_FALLBACK_MESSAGE,
        )
    else:
        origin = "extracted"

    record = enrich_cultures(record, crop_defaults)
    return FinalizedRecord(
        record=replace(
            record,
            missing_required_fields=missing,
            file_name=file_name,
            file_size=file_size,
        ),
        origin=origin,
    )


def _valued_culture(name: str, hectares: float, defaults: CropDefaults) -> Culture:
    price = defaults.lookup(name)
    return Culture(
        name=name,
        hectares=hectares,
        yield_per_hectare=price.yield_per_hectare,
        price_per_ton=price.price_per_ton,
        estimated_revenue=hectares * price.yield_per_hectare * price.price_per_ton,
    )


def _total_revenue(cultures: tuple[Culture, ...]) -> float:
    return float(
        sum(
            float(culture.estimated_revenue)
            for culture in cultures
            if is_available(culture.estimated_revenue)
        )
    )


def _is_positive(value: Any) -> bool:
    return is_available(value) and value is not None and float(value) > 0


def _seed_for(user_id: str) -> int:
    digest = hashlib.sha256(user_id.encode("utf-8")).digest()
    return int.from_bytes(digest[:8], "big")
