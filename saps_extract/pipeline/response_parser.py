from __future__ import annotations

import json
import logging
import math
import re
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Iterator, Sequence

from jsonschema import Draft202012Validator

from saps_extract.pipeline.types import (
    NOT_AVAILABLE,
    Culture,
    ExtractionFieldSet,
    HistoricalCrop,
    HistoricalYear,
    MaybeFloat,
    MaybeStr,
    is_available,
)

logger = logging.getLogger(__name__)

PLACEHOLDER_VALUES = frozenset(
    {
        "",
        "-",
        "--",
        "n/a",
        "na",
        "null",
        "none",
        "unknown",
        "ismeretlen",
        "nincs adat",
        "nem található",
        "nem ismert",
    }
)

_THINK_RE = re.compile(r"<think>.*?</think>", re.DOTALL | re.IGNORECASE)
_FENCE_RE = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL | re.IGNORECASE)
_UNIT_RE = re.compile(r"(hektár|hektar|tonna|ha|ft|huf|t)\.?$", re.IGNORECASE)
_KEY_SEPARATOR_RE = re.compile(r"[\s\-]+")

NATIVE_ANCHOR = "adminisztratív_adatok"
LEGACY_ANCHORS: tuple[str, ...] = (
    "applicantName",
    "submitterId",
    "applicantId",
    "documentId",
    "hectares",
    "cultures",
    "blockIds",
)

NATIVE_SCHEMA: dict[str, Any] = {
    "type": "object",
    "required": [NATIVE_ANCHOR],
    "properties": {
        NATIVE_ANCHOR: {"type": "object"},
        "blokkazonosítók": {"type": ["array", "null"]},
        "históriai_adatok": {"type": ["object", "array", "null"]},
        "tárgyévi_adatok": {"type": ["object", "null"]},
    },
}

LEGACY_SCHEMA: dict[str, Any] = {
    "type": "object",
    "anyOf": [{"required": [key]} for key in LEGACY_ANCHORS],
    "properties": {
        "applicantName": {"type": ["string", "null"]},
        "hectares": {"type": ["number", "string", "null"]},
        "cultures": {"type": ["array", "null"]},
        "blockIds": {"type": ["array", "null"]},
        "historicalData": {"type": ["array", "null"]},
    },
}


@dataclass(frozen=True, slots=True)
class ParsedResponse:
    field_set: ExtractionFieldSet | None
    raw_text: str
    strategy: str | None
    errors: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class ParserStrategy:
    name: str
    anchor_keys: tuple[str, ...]
    schema: dict[str, Any]
    mapper: Callable[[dict[str, Any]], ExtractionFieldSet]

    def locate(self, candidates: Sequence[dict[str, Any]]) -> dict[str, Any] | None:
        for candidate in candidates:
            found = _find_anchored_object(candidate, self.anchor_keys)
            if found is not None:
                return found
        return None

    def validate(self, obj: dict[str, Any]) -> list[str]:
        validator = Draft202012Validator(self.schema)
        return [
            f"{'/'.join(str(part) for part in error.path) or '$'}: {error.message}"
            for error in sorted(validator.iter_errors(obj), key=str)
        ]


def parse_response(
    raw_text: str,
    strategies: Sequence[ParserStrategy] | None = None,
) -> ParsedResponse:
    """Map the first JSON object a strategy recognizes onto a field set.

    Strategies are tried in order and never combined. Returns a response with
    ``field_set=None`` instead of raising when nothing matches.
    """
    chain = DEFAULT_STRATEGIES if strategies is None else strategies
    candidates = list(iter_json_objects(raw_text or ""))
    if not candidates:
        return ParsedResponse(
            field_set=None,
            raw_text=raw_text,
            strategy=None,
            errors=("no JSON object found in response",),
        )

    errors: list[str] = []
    for strategy in chain:
        obj = strategy.locate(candidates)
        if obj is None:
            continue
        schema_errors = strategy.validate(obj)
        if schema_errors:
            errors.extend(f"{strategy.name}: {message}" for message in schema_errors)
            continue
        try:
            field_set = strategy.mapper(obj)
        except (TypeError, ValueError, AttributeError) as error:
            errors.append(f"{strategy.name}: {error}")
            continue
        return ParsedResponse(
            field_set=field_set,
            raw_text=raw_text,
            strategy=strategy.name,
            errors=tuple(errors),
        )

    if not errors:
        errors.append("no known anchor key in response JSON")
    logger.warning("Model response did not match any schema: %s", "; ".join(errors))
    return ParsedResponse(
        field_set=None, raw_text=raw_text, strategy=None, errors=tuple(errors)
    )


def parse(raw_text: str) -> ExtractionFieldSet | None:
    return parse_response(raw_text).field_set


def iter_json_objects(text: str) -> Iterator[dict[str, Any]]:
    cleaned = _THINK_RE.sub("", text)
    sources = [match.group(1) for match in _FENCE_RE.finditer(cleaned)]
    sources.append(cleaned)

    decoder = json.JSONDecoder()
    for source in sources:
        index = source.find("{")
        while index != -1:
            try:
                obj, end = decoder.raw_decode(source, index)
            except json.JSONDecodeError:
                index = source.find("{", index + 1)
                continue
            if isinstance(obj, dict):
                yield obj
            index = source.find("{", end)


def map_native(obj: dict[str, Any]) -> ExtractionFieldSet:
    root = _normalized_keys(obj)
    admin = _normalized_keys(root.get("adminisztratív_adatok") or {})
    current = _normalized_keys(root.get("tárgyévi_adatok") or {})

    cultures: list[Culture] = []
    for item in _iter_dicts(current.get("kultúrák")):
        normalized = _normalized_keys(item)
        name = _culture_name(normalized, "kultúra", "név", "name")
        if name is None:
            continue
        area = _first(normalized, "terület_ha", "terület", "méret_ha")
        cultures.append(Culture(name=name, hectares=_to_number(area)))

    return ExtractionFieldSet(
        applicant_name=_to_text(
            _first(admin, "beadó_neve", "kérelmező_neve", "név")
        ),
        submitter_id=_to_text(
            _first(admin, "beadó_ügyfél_azonosító", "beadó_ügyfélazonosító")
        ),
        applicant_id=_to_text(
            _first(admin, "kérelmező_ügyfél_azonosító", "kérelmező_ügyfélazonosító")
        ),
        document_id=_to_text(_first(admin, "iratazonosító", "irat_azonosító")),
        submission_date=_to_text(_first(admin, "beadás_időpontja", "beadás_dátuma")),
        region=_to_text(_first(admin, "régió", "megye")),
        year=_to_text(_first(admin, "tárgyév", "év")),
        hectares=_to_number(_first(current, "összes_terület_ha", "összes_terület")),
        cultures=_dedupe_cultures(cultures),
        block_ids=_block_ids(
            root.get("blokkazonosítók"), "blokkazonosító", "azonosító"
        ),
        historical_data=_native_history(root.get("históriai_adatok")),
    )


def map_legacy(obj: dict[str, Any]) -> ExtractionFieldSet:
    cultures = _dedupe_cultures(
        Culture(
            name=name,
            hectares=_to_number(item.get("hectares")),
            yield_per_hectare=_to_number(item.get("yieldPerHectare")),
            price_per_ton=_to_number(item.get("pricePerTon")),
        )
        for item in _iter_dicts(obj.get("cultures"))
        if (name := _culture_name(item, "name")) is not None
    )

    history: list[HistoricalYear] = []
    for item in _iter_dicts(obj.get("historicalData")):
        year = _to_text(item.get("year"))
        if not is_available(year):
            continue
        crops = tuple(
            HistoricalCrop(
                name=name,
                hectares=_to_number(crop.get("hectares")),
                yield_per_hectare=_to_number(crop.get("yield")),
                total_yield=_to_number(crop.get("totalYield")),
            )
            for crop in _iter_dicts(item.get("crops"))
            if (name := _culture_name(crop, "name")) is not None
        )
        history.append(
            HistoricalYear(
                year=str(year),
                total_hectares=_to_number(item.get("totalHectares")),
                crops=crops,
            )
        )

    return ExtractionFieldSet(
        applicant_name=_to_text(obj.get("applicantName")),
        submitter_id=_to_text(obj.get("submitterId")),
        applicant_id=_to_text(obj.get("applicantId")),
        document_id=_to_text(obj.get("documentId")),
        submission_date=_to_text(obj.get("submissionDate")),
        region=_to_text(obj.get("region")),
        year=_to_text(obj.get("year")),
        hectares=_to_number(obj.get("hectares")),
        cultures=cultures,
        block_ids=_block_ids(obj.get("blockIds"), "id", "blockId"),
        historical_data=tuple(history),
    )


NATIVE_STRATEGY = ParserStrategy(
    name="native",
    anchor_keys=(NATIVE_ANCHOR,),
    schema=NATIVE_SCHEMA,
    mapper=map_native,
)
LEGACY_STRATEGY = ParserStrategy(
    name="legacy",
    anchor_keys=LEGACY_ANCHORS,
    schema=LEGACY_SCHEMA,
    mapper=map_legacy,
)
DEFAULT_STRATEGIES: tuple[ParserStrategy, ...] = (NATIVE_STRATEGY, LEGACY_STRATEGY)


def _find_anchored_object(
    obj: Any,
    anchor_keys: tuple[str, ...],
) -> dict[str, Any] | None:
    queue: list[Any] = [obj]
    while queue:
        current = queue.pop(0)
        if isinstance(current, dict):
            if any(key in current for key in anchor_keys):
                return current
            queue.extend(current.values())
        elif isinstance(current, list):
            queue.extend(current)
    return None


def _native_history(value: Any) -> tuple[HistoricalYear, ...]:
    per_year: dict[str, list[Any]] = {}
    if isinstance(value, dict):
        for year, entries in value.items():
            per_year[str(year).strip()] = entries if isinstance(entries, list) else []
    elif isinstance(value, list):
        for item in _iter_dicts(value):
            normalized = _normalized_keys(item)
            year = _to_text(_first(normalized, "év", "year"))
            if is_available(year):
                year_crops = _first(normalized, "kultúrák", "crops")
                per_year[str(year)] = list(_iter_dicts(year_crops))

    history: list[HistoricalYear] = []
    for year in sorted(per_year):
        crops: list[HistoricalCrop] = []
        for item in _iter_dicts(per_year[year]):
            normalized = _normalized_keys(item)
            name = _culture_name(normalized, "kultúra", "név", "name")
            if name is None:
                continue
            hectares = _to_number(_first(normalized, "terület_ha", "terület"))
            total_yield = _to_number(_first(normalized, "termés_tonna", "termés"))
            crops.append(
                HistoricalCrop(
                    name=name,
                    hectares=hectares,
                    total_yield=total_yield,
                    yield_per_hectare=_ratio(total_yield, hectares),
                )
            )
        areas = [crop.hectares for crop in crops if is_available(crop.hectares)]
        history.append(
            HistoricalYear(
                year=year,
                total_hectares=float(sum(areas)) if areas else NOT_AVAILABLE,
                crops=tuple(crops),
            )
        )
    return tuple(history)


def _block_ids(value: Any, *id_keys: str) -> tuple[str, ...]:
    if not isinstance(value, list):
        return ()
    result: list[str] = []
    for item in value:
        raw = item
        if isinstance(item, dict):
            raw = _first(_normalized_keys(item), *id_keys)
        text = _to_text(raw)
        if is_available(text) and text not in result:
            result.append(str(text))
    return tuple(result)


def _dedupe_cultures(cultures: Iterable[Culture]) -> tuple[Culture, ...]:
    result: list[Culture] = []
    seen: set[str] = set()
    for culture in cultures:
        if culture.name in seen:
            continue
        seen.add(culture.name)
        result.append(culture)
    return tuple(result)


def _culture_name(item: dict[str, Any], *keys: str) -> str | None:
    text = _to_text(_first(_normalized_keys(item), *keys))
    return str(text) if is_available(text) else None


def _iter_dicts(value: Any) -> Iterator[dict[str, Any]]:
    if not isinstance(value, list):
        return
    for item in value:
        if isinstance(item, dict):
            yield item


def _first(data: dict[str, Any], *keys: str) -> Any:
    for key in keys:
        value = data.get(key)
        if value is not None:
            return value
    return None


def _normalized_keys(data: Any) -> dict[str, Any]:
    if not isinstance(data, dict):
        return {}
    return {
        _KEY_SEPARATOR_RE.sub("_", str(key).strip().lower()): value
        for key, value in data.items()
    }


def _to_text(value: Any) -> MaybeStr:
    if value is None or isinstance(value, bool):
        return NOT_AVAILABLE
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    text = str(value).strip()
    if text.lower() in PLACEHOLDER_VALUES:
        return NOT_AVAILABLE
    return text


def _to_number(value: Any) -> MaybeFloat:
    if value is None or isinstance(value, bool):
        return NOT_AVAILABLE
    if isinstance(value, (int, float)):
        return _finite(float(value))
    if not isinstance(value, str):
        return NOT_AVAILABLE

    text = value.strip().lower()
    if text in PLACEHOLDER_VALUES:
        return NOT_AVAILABLE
    text = _UNIT_RE.sub("", text).strip()
    text = text.replace("\u00a0", "").replace(" ", "")
    if "," in text and "." in text:
        text = text.replace(".", "").replace(",", ".")
    elif "," in text:
        text = text.replace(",", ".")
    try:
        return _finite(float(text))
    except ValueError:
        return NOT_AVAILABLE


def _finite(number: float) -> MaybeFloat:
    return number if math.isfinite(number) else NOT_AVAILABLE


def _ratio(numerator: MaybeFloat, denominator: MaybeFloat) -> MaybeFloat:
    if not is_available(numerator) or not is_available(denominator):
        return NOT_AVAILABLE
    if denominator == 0:
        return NOT_AVAILABLE
    return float(numerator) / float(denominator)
