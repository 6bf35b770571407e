from __future__ import annotations

from saps_extract.pipeline.completeness import (
    has_usable_data,
    is_complete,
    missing_identity_fields,
    missing_required_fields,
)
from saps_extract.pipeline.merge import merge_all, merge_field_sets
from saps_extract.pipeline.response_parser import parse
from saps_extract.pipeline.types import (
    NOT_AVAILABLE,
    Culture,
    ExtractionFieldSet,
    HistoricalYear,
)


def _complete_field_set() -> ExtractionFieldSet:
    return ExtractionFieldSet(
        applicant_name="Kovács János",
        submitter_id="1234567890",
        applicant_id="0987654321",
        hectares=12.5,
        cultures=(Culture(name="Kukorica", hectares=12.5),),
        block_ids=("AB12345",),
    )


def test_merge_keeps_populated_scalar_over_placeholder() -> None:
    first = ExtractionFieldSet(applicant_name="Kovács János")
    second = parse('{"applicantName": "ismeretlen", "submitterId": "1112223334"}')
    assert second is not None

    merged = merge_field_sets(first, second)

    assert merged.applicant_name == "Kovács János"
    assert merged.submitter_id == "1112223334"


def test_merge_fills_empty_and_zero_values() -> None:
    combined = ExtractionFieldSet(applicant_name="", hectares=0.0)
    incoming = ExtractionFieldSet(applicant_name="Teszt Gazda", hectares=50.0)

    merged = merge_field_sets(combined, incoming)

    assert merged.applicant_name == "Teszt Gazda"
    assert merged.hectares == 50.0


def test_merge_replaces_non_finite_value_with_real_number() -> None:
    combined = parse('{"applicantName": "Teszt Gazda", "hectares": "NaN"}')
    assert combined is not None

    merged = merge_field_sets(combined, ExtractionFieldSet(hectares=50.0))
    assert merged.hectares == 50.0

    merged = merge_field_sets(
        ExtractionFieldSet(hectares=float("nan")), ExtractionFieldSet(hectares=50.0)
    )
    assert merged.hectares == 50.0


def test_merge_never_overwrites_with_unavailable() -> None:
    combined = ExtractionFieldSet(region="Bács-Kiskun", hectares=10.0)

    merged = merge_field_sets(combined, ExtractionFieldSet())

    assert merged.region == "Bács-Kiskun"
    assert merged.hectares == 10.0


def test_merge_unions_lists_in_first_seen_order() -> None:
    first = ExtractionFieldSet(
        block_ids=("AB12345", "CD67890"),
        cultures=(Culture(name="Búza", hectares=5.0),),
        historical_data=(HistoricalYear(year="2020"),),
    )
    second = ExtractionFieldSet(
        block_ids=("CD67890", "EF11111"),
        cultures=(Culture(name="Búza", hectares=9.0), Culture(name="Repce")),
        historical_data=(HistoricalYear(year="2021"), HistoricalYear(year="2020")),
    )

    merged = merge_field_sets(first, second)

    assert merged.block_ids == ("AB12345", "CD67890", "EF11111")
    assert [culture.name for culture in merged.cultures] == ["Búza", "Repce"]
    assert merged.cultures[0].hectares == 5.0
    assert [year.year for year in merged.historical_data] == ["2020", "2021"]


def test_merge_is_idempotent_for_lists() -> None:
    field_set = _complete_field_set()

    merged = merge_field_sets(field_set, field_set)

    assert merged == field_set
    assert merge_all([field_set, field_set, field_set]) == field_set


def test_completeness_requires_identity_blocks_hectares_and_cultures() -> None:
    complete = _complete_field_set()
    assert is_complete(complete) is True
    assert missing_required_fields(complete) == []

    empty = ExtractionFieldSet()
    assert missing_required_fields(empty) == [
        "applicant_name",
        "submitter_id",
        "applicant_id",
        "block_ids",
        "hectares",
        "cultures",
    ]


def test_identity_gaps_and_usable_data() -> None:
    partial = ExtractionFieldSet(
        applicant_name="Teszt Gazda",
        submitter_id=NOT_AVAILABLE,
        hectares=50.0,
        cultures=(Culture(name="Búza", hectares=50.0),),
    )

    assert missing_identity_fields(partial) == ["submitter_id", "applicant_id"]
    assert has_usable_data(partial) is True
    assert has_usable_data(ExtractionFieldSet(hectares=0.0)) is False
    assert has_usable_data(ExtractionFieldSet(hectares=3.0)) is False
