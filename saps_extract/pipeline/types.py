from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Literal


class _NotAvailable(Enum):
    NOT_AVAILABLE = "NOT_AVAILABLE"

    def __repr__(self) -> str:
        return "NOT_AVAILABLE"

    def __bool__(self) -> bool:
        return False


NOT_AVAILABLE = _NotAvailable.NOT_AVAILABLE
"""Marks a field the model never reported, as opposed to an explicit 0 or ""."""

MaybeStr = str | _NotAvailable
MaybeFloat = float | _NotAvailable

RecordOrigin = Literal["extracted", "augmented", "synthetic"]

SCALAR_FIELDS: tuple[str, ...] = (
    "applicant_name",
    "submitter_id",
    "applicant_id",
    "document_id",
    "submission_date",
    "region",
    "year",
    "hectares",
    "total_revenue",
)
IDENTITY_FIELDS: tuple[str, ...] = ("applicant_name", "submitter_id", "applicant_id")


def is_available(value: Any) -> bool:
    return value is not NOT_AVAILABLE


def is_populated(value: Any) -> bool:
    """True for a value that counts as filled: not NA, not blank, not zero."""
    if value is NOT_AVAILABLE or value is None:
        return False
    if isinstance(value, str):
        return bool(value.strip())
    if isinstance(value, (int, float)):
        return math.isfinite(value) and value != 0
    if isinstance(value, (tuple, list)):
        return len(value) > 0
    return True


def to_plain(value: Any) -> Any:
    return None if value is NOT_AVAILABLE else value


@dataclass(frozen=True, slots=True)
class Culture:
    name: str
    hectares: MaybeFloat = NOT_AVAILABLE
    yield_per_hectare: MaybeFloat = NOT_AVAILABLE
    price_per_ton: MaybeFloat = NOT_AVAILABLE
    estimated_revenue: MaybeFloat = NOT_AVAILABLE

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "hectares": to_plain(self.hectares),
            "yieldPerHectare": to_plain(self.yield_per_hectare),
            "pricePerTon": to_plain(self.price_per_ton),
            "estimatedRevenue": to_plain(self.estimated_revenue),
        }


@dataclass(frozen=True, slots=True)
class HistoricalCrop:
    name: str
    hectares: MaybeFloat = NOT_AVAILABLE
    yield_per_hectare: MaybeFloat = NOT_AVAILABLE
    total_yield: MaybeFloat = NOT_AVAILABLE
    price_eur: MaybeFloat = NOT_AVAILABLE
    revenue_eur: MaybeFloat = NOT_AVAILABLE

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "hectares": to_plain(self.hectares),
            "yield": to_plain(self.yield_per_hectare),
            "totalYield": to_plain(self.total_yield),
            "priceEUR": to_plain(self.price_eur),
            "revenueEUR": to_plain(self.revenue_eur),
        }


@dataclass(frozen=True, slots=True)
class HistoricalYear:
    year: str
    total_hectares: MaybeFloat = NOT_AVAILABLE
    crops: tuple[HistoricalCrop, ...] = ()
    total_revenue_eur: MaybeFloat = NOT_AVAILABLE

    def to_dict(self) -> dict[str, Any]:
        return {
            "year": self.year,
            "totalHectares": to_plain(self.total_hectares),
            "crops": [crop.to_dict() for crop in self.crops],
            "totalRevenueEUR": to_plain(self.total_revenue_eur),
        }


@dataclass(frozen=True, slots=True)
class ExtractionFieldSet:
    applicant_name: MaybeStr = NOT_AVAILABLE
    submitter_id: MaybeStr = NOT_AVAILABLE
    applicant_id: MaybeStr = NOT_AVAILABLE
    document_id: MaybeStr = NOT_AVAILABLE
    submission_date: MaybeStr = NOT_AVAILABLE
    region: MaybeStr = NOT_AVAILABLE
    year: MaybeStr = NOT_AVAILABLE
    hectares: MaybeFloat = NOT_AVAILABLE
    total_revenue: MaybeFloat = NOT_AVAILABLE
    cultures: tuple[Culture, ...] = ()
    block_ids: tuple[str, ...] = ()
    historical_data: tuple[HistoricalYear, ...] = ()
    data_unavailable: bool = False
    error_message: str | None = None
    missing_required_fields: tuple[str, ...] = ()
    synthetic_fields: tuple[str, ...] = ()
    file_name: str | None = None
    file_size: int | None = None

    def is_empty(self) -> bool:
        if any(is_populated(getattr(self, name)) for name in SCALAR_FIELDS):
            return False
        return not (self.cultures or self.block_ids or self.historical_data)

    def to_dict(self) -> dict[str, Any]:
        return {
            "applicantName": to_plain(self.applicant_name),
            "submitterId": to_plain(self.submitter_id),
            "applicantId": to_plain(self.applicant_id),
            "documentId": to_plain(self.document_id),
            "submissionDate": to_plain(self.submission_date),
            "region": to_plain(self.region),
            "year": to_plain(self.year),
            "hectares": to_plain(self.hectares),
            "totalRevenue": to_plain(self.total_revenue),
            "cultures": [culture.to_dict() for culture in self.cultures],
            "blockIds": list(self.block_ids),
            "historicalData": [year.to_dict() for year in self.historical_data],
            "dataUnavailable": self.data_unavailable,
            "errorMessage": self.error_message,
            "missingRequiredFields": list(self.missing_required_fields),
            "syntheticFields": list(self.synthetic_fields),
            "fileName": self.file_name,
            "fileSize": self.file_size,
        }


@dataclass(frozen=True, slots=True)
class DocumentInput:
    document_ref: str
    user_id: str
    file_name: str
    file_size: int
    mime_type: str | None = None


@dataclass(frozen=True, slots=True)
class DocumentBatchJob:
    images: tuple[str, ...]
    batch_index: int
    total_batches: int
    first_page_number: int = 1

    def __post_init__(self) -> None:
        if not self.images:
            raise ValueError("A batch must contain at least one image")
        if not 1 <= self.batch_index <= self.total_batches:
            raise ValueError(
                f"batch_index {self.batch_index} outside 1..{self.total_batches}"
            )

    @property
    def image_count(self) -> int:
        return len(self.images)


@dataclass(frozen=True, slots=True)
class BatchOutcome:
    batch_index: int
    total_batches: int
    image_count: int
    success: bool
    raw_text: str = ""
    field_set: ExtractionFieldSet | None = None
    parse_strategy: str | None = None
    error_code: str | None = None
    error_detail: str | None = None
    attempts: int = 0
    usage: dict[str, int | None] = field(default_factory=dict)
    elapsed_ms: float = 0.0


class PipelineStage(str, Enum):
    PREPARING = "preparing"
    BATCH_LOOP = "batch_loop"
    EARLY_EXIT = "early_exit"
    ALL_BATCHES_DONE = "all_batches_done"
    CANCELLED = "cancelled"
    FINALIZING = "finalizing"
    DONE = "done"


@dataclass(frozen=True, slots=True)
class BatchProgress:
    current_batch: int
    total_batches: int
    pages_processed: int
    total_pages: int

    def to_dict(self) -> dict[str, int]:
        return {
            "currentBatch": self.current_batch,
            "totalBatches": self.total_batches,
            "pagesProcessed": self.pages_processed,
            "totalPages": self.total_pages,
        }


@dataclass(frozen=True, slots=True)
class ProcessingStatus:
    step: str
    progress: int
    details: str | None = None
    batch_progress: BatchProgress | None = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"step": self.step, "progress": self.progress}
        if self.details is not None:
            payload["details"] = self.details
        if self.batch_progress is not None:
            payload["batchProgress"] = self.batch_progress.to_dict()
        return payload


@dataclass(slots=True)
class PipelineProgress:
    total_batches: int = 0
    total_pages: int = 0
    processed_batches: int = 0
    processed_pages: int = 0
    failed_batches: int = 0
    combined: ExtractionFieldSet = field(default_factory=ExtractionFieldSet)

    def snapshot(self) -> BatchProgress:
        return BatchProgress(
            current_batch=self.processed_batches,
            total_batches=self.total_batches,
            pages_processed=self.processed_pages,
            total_pages=self.total_pages,
        )


@dataclass(frozen=True, slots=True)
class PipelineResult:
    document_ref: str
    record: ExtractionFieldSet
    extracted_record: ExtractionFieldSet
    origin: RecordOrigin
    outcomes: tuple[BatchOutcome, ...]
    progress: BatchProgress
    exit_stage: PipelineStage
    response_artifact_url: str | None = None
    persistence_errors: tuple[str, ...] = ()
