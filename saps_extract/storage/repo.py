from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any
from uuid import uuid4

from saps_extract.storage.artifacts import ArtifactsManager
from saps_extract.storage.db import connection, init_db
from saps_extract.storage.models import (
    BatchResultRecord,
    DocumentProcessingRecord,
    FarmRecordRow,
    ProcessingState,
)


class StorageRepo:
    def __init__(
        self,
        db_path: Path | str,
        artifacts_manager: ArtifactsManager | None = None,
    ) -> None:
        self.db_path = Path(db_path)
        self.artifacts_manager = artifacts_manager or ArtifactsManager(
            self.db_path.parent
        )
        init_db(self.db_path)

    def create_processing(
        self,
        *,
        user_id: str,
        document_ref: str,
        document_name: str,
        page_count: int = 0,
        metadata: dict[str, Any] | None = None,
        processing_id: str | None = None,
    ) -> DocumentProcessingRecord:
        processing_identifier = processing_id or str(uuid4())
        timestamp = _utc_now()

        artifacts = self.artifacts_manager.create_processing_artifacts(
            user_id=user_id,
            processing_id=processing_identifier,
        )
        artifacts_path = str(artifacts.artifacts_root_path.resolve())

        with connection(self.db_path) as conn:
            conn.execute(
                """
                INSERT INTO document_batches (
                    processing_id,
                    user_id,
                    document_ref,
                    document_name,
                    page_count,
                    status,
                    created_at,
                    updated_at,
                    artifacts_root_path,
                    metadata_json
                )
                VALUES (?, ?, ?, ?, ?, 'processing', ?, ?, ?, ?)
                """,
                (
                    processing_identifier,
                    user_id,
                    document_ref,
                    document_name,
                    page_count,
                    timestamp,
                    timestamp,
                    artifacts_path,
                    _to_json_text(metadata or {}),
                ),
            )

        record = self.get_processing(processing_identifier)
        if record is None:
            raise RuntimeError("Failed to create document processing record")

        return record

    def update_processing(
        self,
        *,
        processing_id: str,
        status: ProcessingState,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        current = self.get_processing(processing_id)
        if current is None:
            raise KeyError(f"Document processing not found: {processing_id}")

        merged_metadata = {**current.metadata, **(metadata or {})}
        with connection(self.db_path) as conn:
            conn.execute(
                """
                UPDATE document_batches
                SET status = ?, metadata_json = ?, updated_at = ?
                WHERE processing_id = ?
                """,
                (
                    status,
                    _to_json_text(merged_metadata),
                    _utc_now(),
                    processing_id,
                ),
            )

    def get_processing(self, processing_id: str) -> DocumentProcessingRecord | None:
        with connection(self.db_path) as conn:
            row = conn.execute(
                """
                SELECT
                    processing_id,
                    user_id,
                    document_ref,
                    document_name,
                    page_count,
                    status,
                    created_at,
                    updated_at,
                    artifacts_root_path,
                    metadata_json
                FROM document_batches
                WHERE processing_id = ?
                """,
                (processing_id,),
            ).fetchone()

        if row is None:
            return None

        return DocumentProcessingRecord(
            processing_id=str(row["processing_id"]),
            user_id=str(row["user_id"]),
            document_ref=str(row["document_ref"]),
            document_name=str(row["document_name"]),
            page_count=int(row["page_count"]),
            status=str(row["status"]),
            created_at=str(row["created_at"]),
            updated_at=str(row["updated_at"]),
            artifacts_root_path=str(row["artifacts_root_path"]),
            metadata=_from_json_text(row["metadata_json"]) or {},
        )

    def insert_batch_result(
        self,
        *,
        processing_id: str,
        user_id: str,
        batch_index: int,
        total_batches: int,
        success: bool,
        extracted_data: dict[str, Any] | None,
        raw_response_path: str | None,
        image_count: int,
        images_processed: list[str],
        error_code: str | None = None,
        error_detail: str | None = None,
        attempts: int = 0,
    ) -> int:
        with connection(self.db_path) as conn:
            cursor = conn.execute(
                """
                INSERT INTO document_batch_results (
                    processing_id,
                    user_id,
                    batch_index,
                    total_batches,
                    success,
                    extracted_data_json,
                    raw_response_path,
                    image_count,
                    images_processed_json,
                    error_code,
                    error_detail,
                    attempts,
                    created_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    processing_id,
                    user_id,
                    batch_index,
                    total_batches,
                    1 if success else 0,
                    None if extracted_data is None else _to_json_text(extracted_data),
                    raw_response_path,
                    image_count,
                    json.dumps(images_processed, ensure_ascii=False),
                    error_code,
                    error_detail,
                    attempts,
                    _utc_now(),
                ),
            )
        return int(cursor.lastrowid or 0)

    def list_batch_results(self, *, processing_id: str) -> list[BatchResultRecord]:
        with connection(self.db_path) as conn:
            rows = conn.execute(
                """
                SELECT
                    id,
                    processing_id,
                    user_id,
                    batch_index,
                    total_batches,
                    success,
                    extracted_data_json,
                    raw_response_path,
                    image_count,
                    images_processed_json,
                    error_code,
                    error_detail,
                    attempts,
                    created_at
                FROM document_batch_results
                WHERE processing_id = ?
                ORDER BY batch_index ASC, id ASC
                """,
                (processing_id,),
            ).fetchall()

        return [_row_to_batch_result(row) for row in rows]

    def save_farm_record(
        self,
        *,
        processing_id: str,
        user_id: str,
        origin: str,
        data_unavailable: bool,
        record: dict[str, Any],
        extracted_record: dict[str, Any],
        response_artifact_url: str | None,
    ) -> None:
        with connection(self.db_path) as conn:
            conn.execute(
                """
                INSERT INTO farm_records (
                    processing_id,
                    user_id,
                    origin,
                    data_unavailable,
                    record_json,
                    extracted_record_json,
                    response_artifact_url,
                    created_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(processing_id) DO UPDATE SET
                    origin = excluded.origin,
                    data_unavailable = excluded.data_unavailable,
                    record_json = excluded.record_json,
                    extracted_record_json = excluded.extracted_record_json,
                    response_artifact_url = excluded.response_artifact_url
                """,
                (
                    processing_id,
                    user_id,
                    origin,
                    1 if data_unavailable else 0,
                    _to_json_text(record),
                    _to_json_text(extracted_record),
                    response_artifact_url,
                    _utc_now(),
                ),
            )

    def get_farm_record(self, *, processing_id: str) -> FarmRecordRow | None:
        with connection(self.db_path) as conn:
            row = conn.execute(
                """
                SELECT
                    processing_id,
                    user_id,
                    origin,
                    data_unavailable,
                    record_json,
                    extracted_record_json,
                    response_artifact_url,
                    created_at
                FROM farm_records
                WHERE processing_id = ?
                LIMIT 1
                """,
                (processing_id,),
            ).fetchone()

        if row is None:
            return None

        return FarmRecordRow(
            processing_id=str(row["processing_id"]),
            user_id=str(row["user_id"]),
            origin=str(row["origin"]),
            data_unavailable=bool(row["data_unavailable"]),
            record=_from_json_text(row["record_json"]) or {},
            extracted_record=_from_json_text(row["extracted_record_json"]) or {},
            response_artifact_url=_to_optional_str(row["response_artifact_url"]),
            created_at=str(row["created_at"]),
        )


def _utc_now() -> str:
    return datetime.now(tz=timezone.utc).isoformat()


def _to_optional_str(value: object) -> str | None:
    if value is None:
        return None
    return str(value)


def _row_to_batch_result(row: object) -> BatchResultRecord:
    images = json.loads(row["images_processed_json"] or "[]")
    return BatchResultRecord(
        id=int(row["id"]),
        processing_id=str(row["processing_id"]),
        user_id=str(row["user_id"]),
        batch_index=int(row["batch_index"]),
        total_batches=int(row["total_batches"]),
        success=bool(row["success"]),
        extracted_data=_from_json_text(row["extracted_data_json"]),
        raw_response_path=_to_optional_str(row["raw_response_path"]),
        image_count=int(row["image_count"]),
        images_processed=[str(item) for item in images],
        error_code=_to_optional_str(row["error_code"]),
        error_detail=_to_optional_str(row["error_detail"]),
        attempts=int(row["attempts"]),
        created_at=str(row["created_at"]),
    )


def _to_json_text(payload: dict[str, Any]) -> str:
    return json.dumps(payload, ensure_ascii=False)


def _from_json_text(value: object) -> dict[str, Any] | None:
    text = _to_optional_str(value)
    if text is None:
        return None

    try:
        parsed = json.loads(text)
    except json.JSONDecodeError:
        return {"_raw": text}

    if not isinstance(parsed, dict):
        return {"_value": parsed}
    return parsed
