from __future__ import annotations

from datetime import date

import pytest

from saps_extract.pipeline.fallback import (
    FALLBACK_ERROR_MESSAGE,
    PARTIAL_FALLBACK_MESSAGE,
    enrich_cultures,
    fill_missing,
    finalize_record,
    load_crop_defaults,
    synthesize_fallback,
)
from saps_extract.pipeline.types import (
    NOT_AVAILABLE,
    Culture,
    ExtractionFieldSet,
)

TODAY = date(2024, 3, 1)


@pytest.fixture(scope="module")
def crop_defaults():
    return load_crop_defaults()


def test_synthesize_is_deterministic_per_user(crop_defaults) -> None:
    first = synthesize_fallback(
        "abc123", "doc.pdf", 1024, today=TODAY, crop_defaults=crop_defaults
    )
    second = synthesize_fallback(
        "abc123", "doc.pdf", 1024, today=TODAY, crop_defaults=crop_defaults
    )
    other = synthesize_fallback(
        "other-user", "doc.pdf", 1024, today=TODAY, crop_defaults=crop_defaults
    )

    assert first == second
    assert first.document_id != other.document_id
    assert first.block_ids != other.block_ids


def test_synthesize_dates_follow_today(crop_defaults) -> None:
    march = synthesize_fallback(
        "abc123", "doc.pdf", 1024, today=TODAY, crop_defaults=crop_defaults
    )
    next_year = synthesize_fallback(
        "abc123",
        "doc.pdf",
        1024,
        today=date(2025, 3, 1),
        crop_defaults=crop_defaults,
    )

    assert march.document_id == next_year.document_id
    assert march.block_ids == next_year.block_ids
    assert (march.submission_date, march.year) == ("2024-03-01", "2024")
    assert (next_year.submission_date, next_year.year) == ("2025-03-01", "2025")
    assert [year.year for year in next_year.historical_data][-1] == "2024"


def test_synthesized_record_shape(crop_defaults) -> None:
    record = synthesize_fallback(
        "abc123", "doc.pdf", 1024, today=TODAY, crop_defaults=crop_defaults
    )

    assert str(record.document_id).startswith("SAPS-")
    assert len(str(record.document_id)) == len("SAPS-") + 8
    assert len(str(record.submitter_id)) == 10
    assert len(str(record.applicant_id)) == 10
    assert len(record.block_ids) == 5
    assert len(set(record.block_ids)) == 5
    assert [culture.name for culture in record.cultures] == [
        "Kukorica",
        "Őszi búza",
        "Napraforgó",
    ]
    assert record.hectares == pytest.approx(42.8 + 38.5 + 25.3)
    assert [year.year for year in record.historical_data] == [
        "2019",
        "2020",
        "2021",
        "2022",
        "2023",
    ]
    assert record.year == "2024"
    assert record.data_unavailable is True
    assert record.error_message == FALLBACK_ERROR_MESSAGE
    assert record.file_name == "doc.pdf"
    assert record.file_size == 1024


def test_synthesized_revenue_is_consistent(crop_defaults) -> None:
    record = synthesize_fallback(
        "abc123", "doc.pdf", 1024, today=TODAY, crop_defaults=crop_defaults
    )

    for culture in record.cultures:
        expected = (
            float(culture.hectares)
            * float(culture.yield_per_hectare)
            * float(culture.price_per_ton)
        )
        assert culture.estimated_revenue == pytest.approx(expected)
    assert record.total_revenue == pytest.approx(
        sum(float(culture.estimated_revenue) for culture in record.cultures)
    )
    for year in record.historical_data:
        assert year.total_revenue_eur == pytest.approx(
            sum(float(crop.revenue_eur) for crop in year.crops), abs=0.05
        )


def test_fill_missing_keeps_genuine_values(crop_defaults) -> None:
    synthesized = synthesize_fallback(
        "abc123", "doc.pdf", 1024, today=TODAY, crop_defaults=crop_defaults
    )
    record = ExtractionFieldSet(
        applicant_name="Teszt Gazda",
        submitter_id=NOT_AVAILABLE,
        block_ids=("AB12345",),
    )

    filled = fill_missing(record, synthesized)

    assert filled.applicant_name == "Teszt Gazda"
    assert filled.submitter_id == synthesized.submitter_id
    assert filled.block_ids == ("AB12345",)
    assert filled.cultures == synthesized.cultures
    assert "applicant_name" not in filled.synthetic_fields
    assert "block_ids" not in filled.synthetic_fields
    assert "submitter_id" in filled.synthetic_fields
    assert "cultures" in filled.synthetic_fields


def test_fill_missing_respects_field_selection(crop_defaults) -> None:
    synthesized = synthesize_fallback(
        "abc123", "doc.pdf", 1024, today=TODAY, crop_defaults=crop_defaults
    )

    filled = fill_missing(ExtractionFieldSet(), synthesized, fields=["applicant_id"])

    assert filled.applicant_id == synthesized.applicant_id
    assert filled.submitter_id is NOT_AVAILABLE
    assert filled.synthetic_fields == ("applicant_id",)


def test_enrich_cultures_applies_crop_defaults(crop_defaults) -> None:
    record = ExtractionFieldSet(
        cultures=(
            Culture(name="Búza", hectares=10.0),
            Culture(name="Ismeretlen növény", hectares=2.0),
            Culture(name="Tavaszi árpa", hectares=NOT_AVAILABLE),
        )
    )

    enriched = enrich_cultures(record, crop_defaults)

    wheat, unknown, barley = enriched.cultures
    assert (wheat.yield_per_hectare, wheat.price_per_ton) == (5.5, 85000)
    assert wheat.estimated_revenue == pytest.approx(10 * 5.5 * 85000)
    assert (unknown.yield_per_hectare, unknown.price_per_ton) == (4.5, 80000)
    assert barley.yield_per_hectare == 4.8
    assert barley.hectares == pytest.approx(1.2)
    assert barley.estimated_revenue == pytest.approx(1.2 * 4.8 * 75000)
    assert enriched.hectares == pytest.approx(12.0)
    assert enriched.total_revenue == pytest.approx(
        10 * 5.5 * 85000 + 2 * 4.5 * 80000 + 1.2 * 4.8 * 75000
    )
    assert enriched.synthetic_fields == ("cultures",)


def test_finalize_values_cultures_without_area(crop_defaults) -> None:
    finalized = finalize_record(
        ExtractionFieldSet(
            applicant_name="Teszt Gazda", cultures=(Culture(name="Búza"),)
        ),
        user_id="u-1",
        file_name="saps.pdf",
        file_size=10,
        crop_defaults=crop_defaults,
        today=TODAY,
    )

    record = finalized.record
    wheat = record.cultures[0]
    assert finalized.origin == "augmented"
    assert wheat.name == "Búza"
    assert wheat.hectares == pytest.approx(float(record.hectares) * 0.1)
    assert wheat.estimated_revenue == pytest.approx(float(wheat.hectares) * 5.5 * 85000)
    assert record.total_revenue > 0
    assert record.total_revenue == pytest.approx(wheat.estimated_revenue)
    assert "cultures" in record.synthetic_fields


def test_finalize_keeps_complete_extraction(crop_defaults) -> None:
    extracted = ExtractionFieldSet(
        applicant_name="Kovács János",
        submitter_id="1234567890",
        applicant_id="0987654321",
        hectares=12.5,
        cultures=(Culture(name="Kukorica", hectares=12.5),),
        block_ids=("AB12345",),
    )

    finalized = finalize_record(
        extracted,
        user_id="u-1",
        file_name="saps.pdf",
        file_size=10,
        crop_defaults=crop_defaults,
        today=TODAY,
    )

    assert finalized.origin == "extracted"
    assert finalized.record.data_unavailable is False
    assert finalized.record.synthetic_fields == ()
    assert finalized.record.missing_required_fields == ()
    assert finalized.record.total_revenue == pytest.approx(12.5 * 8.2 * 75000)


def test_finalize_fills_only_identity_gaps(crop_defaults) -> None:
    extracted = ExtractionFieldSet(
        applicant_name="Teszt Gazda",
        hectares=50.0,
        cultures=(Culture(name="Búza", hectares=50.0),),
        block_ids=("AB12345",),
    )

    finalized = finalize_record(
        extracted,
        user_id="u-1",
        file_name="saps.pdf",
        file_size=10,
        crop_defaults=crop_defaults,
        today=TODAY,
    )

    record = finalized.record
    assert finalized.origin == "augmented"
    assert record.applicant_name == "Teszt Gazda"
    assert record.hectares == 50.0
    assert record.block_ids == ("AB12345",)
    assert [culture.name for culture in record.cultures] == ["Búza"]
    assert record.missing_required_fields == ("submitter_id", "applicant_id")
    assert record.synthetic_fields == ("submitter_id", "applicant_id")
    assert record.submitter_id is not NOT_AVAILABLE
    assert record.document_id is NOT_AVAILABLE
    assert record.error_message == PARTIAL_FALLBACK_MESSAGE
    assert record.data_unavailable is False


def test_finalize_synthesizes_everything_for_empty_extraction(crop_defaults) -> None:
    finalized = finalize_record(
        ExtractionFieldSet(),
        user_id="abc123",
        file_name="doc.pdf",
        file_size=1024,
        crop_defaults=crop_defaults,
        today=TODAY,
    )
    expected = synthesize_fallback(
        "abc123", "doc.pdf", 1024, today=TODAY, crop_defaults=crop_defaults
    )

    assert finalized.origin == "synthetic"
    assert finalized.record.data_unavailable is True
    assert finalized.record.error_message == FALLBACK_ERROR_MESSAGE
    assert finalized.record.document_id == expected.document_id
    assert finalized.record.cultures == expected.cultures
    assert finalized.record.total_revenue == pytest.approx(expected.total_revenue)


def test_finalize_derives_hectares_from_cultures(crop_defaults) -> None:
    extracted = ExtractionFieldSet(
        applicant_name="Kovács János",
        submitter_id="1234567890",
        applicant_id="0987654321",
        cultures=(
            Culture(name="Kukorica", hectares=4.0),
            Culture(name="Repce", hectares=6.0),
        ),
        block_ids=("AB12345",),
    )

    finalized = finalize_record(
        extracted,
        user_id="u-1",
        file_name="saps.pdf",
        file_size=10,
        crop_defaults=crop_defaults,
        today=TODAY,
    )

    assert finalized.origin == "extracted"
    assert finalized.record.hectares == pytest.approx(10.0)
