from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Literal

ProcessingState = Literal["processing", "completed", "failed"]


@dataclass(frozen=True, slots=True)
class DocumentProcessingRecord:
    processing_id: str
    user_id: str
    document_ref: str
    document_name: str
    page_count: int
    status: ProcessingState
    created_at: str
    updated_at: str
    artifacts_root_path: str
    metadata: dict[str, Any]


@dataclass(frozen=True, slots=True)
class BatchResultRecord:
    id: int
    processing_id: str
    user_id: str
    batch_index: int
    total_batches: int
    success: bool
    extracted_data: dict[str, Any] | None
    raw_response_path: str | None
    image_count: int
    images_processed: list[str]
    error_code: str | None
    error_detail: str | None
    attempts: int
    created_at: str


@dataclass(frozen=True, slots=True)
class FarmRecordRow:
    processing_id: str
    user_id: str
    origin: str
    data_unavailable: bool
    record: dict[str, Any]
    extracted_record: dict[str, Any]
    response_artifact_url: str | None
    created_at: str
