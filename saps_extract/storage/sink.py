from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Protocol

from saps_extract.pipeline.types import DocumentInput, ExtractionFieldSet, RecordOrigin
from saps_extract.storage.artifacts import ProcessingArtifacts
from saps_extract.storage.repo import StorageRepo
from saps_extract.storage.run_manifest import (
    finalize_run_manifest,
    init_run_manifest,
    record_batch_entry,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class BatchDiagnostic:
    processing_id: str
    user_id: str
    batch_index: int
    total_batches: int
    image_count: int
    images: tuple[str, ...]
    success: bool
    raw_text: str
    parsed_data: dict[str, Any] | None = None
    error_code: str | None = None
    error_detail: str | None = None
    attempts: int = 0
    usage: dict[str, int | None] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class FinalRecordEnvelope:
    processing_id: str
    user_id: str
    record: ExtractionFieldSet
    extracted_record: ExtractionFieldSet
    origin: RecordOrigin
    exit_stage: str
    processed_batches: int
    failed_batches: int
    response_artifact_url: str | None = None


class PersistenceSink(Protocol):
    def start_document(
        self,
        *,
        processing_id: str,
        document: DocumentInput,
        page_count: int,
        total_batches: int,
    ) -> None:
        ...

    def record_batch(self, diagnostic: BatchDiagnostic) -> str | None:
        """Store one batch result; returns the raw-response artifact URL if archived."""
        ...

    def record_final(self, envelope: FinalRecordEnvelope) -> None:
        ...


class SqlitePersistenceSink:
    """Writes batch diagnostics and the final record to SQLite plus artifacts."""

    def __init__(self, repo: StorageRepo) -> None:
        self.repo = repo
        self._artifacts: dict[str, ProcessingArtifacts] = {}

    def start_document(
        self,
        *,
        processing_id: str,
        document: DocumentInput,
        page_count: int,
        total_batches: int,
    ) -> None:
        record = self.repo.create_processing(
            processing_id=processing_id,
            user_id=document.user_id,
            document_ref=document.document_ref,
            document_name=document.file_name,
            page_count=page_count,
            metadata={
                "totalBatches": total_batches,
                "processedBatches": 0,
                "failedBatches": 0,
            },
        )
        artifacts = self.repo.artifacts_manager.ensure_processing_structure(
            record.artifacts_root_path
        )
        self._artifacts[processing_id] = artifacts

        init_run_manifest(
            artifacts_root_path=artifacts.artifacts_root_path,
            processing_id=processing_id,
            user_id=document.user_id,
            inputs={
                "document_ref": document.document_ref,
                "file_name": document.file_name,
                "file_size": document.file_size,
                "mime_type": document.mime_type,
                "page_count": page_count,
                "total_batches": total_batches,
            },
            artifacts={
                "root": str(artifacts.artifacts_root_path),
                "run_log": str(artifacts.run_log_path),
                "final_record": str(artifacts.final_record_path),
            },
        )

    def record_batch(self, diagnostic: BatchDiagnostic) -> str | None:
        artifacts = self._require_artifacts(diagnostic.processing_id)
        batch_artifacts = self.repo.artifacts_manager.create_batch_artifacts(
            artifacts_root_path=artifacts.artifacts_root_path,
            batch_index=diagnostic.batch_index,
        )

        raw_path: Path | None = None
        if diagnostic.raw_text:
            raw_path = batch_artifacts.response_raw_path
            raw_path.write_text(diagnostic.raw_text, encoding="utf-8")
        if diagnostic.parsed_data is not None:
            _write_json(batch_artifacts.response_parsed_path, diagnostic.parsed_data)
        _write_json(batch_artifacts.images_path, list(diagnostic.images))

        self.repo.insert_batch_result(
            processing_id=diagnostic.processing_id,
            user_id=diagnostic.user_id,
            batch_index=diagnostic.batch_index,
            total_batches=diagnostic.total_batches,
            success=diagnostic.success,
            extracted_data=diagnostic.parsed_data,
            raw_response_path=None if raw_path is None else str(raw_path),
            image_count=diagnostic.image_count,
            images_processed=list(diagnostic.images),
            error_code=diagnostic.error_code,
            error_detail=diagnostic.error_detail,
            attempts=diagnostic.attempts,
        )

        record_batch_entry(
            artifacts_root_path=artifacts.artifacts_root_path,
            batch_index=diagnostic.batch_index,
            entry={
                "success": diagnostic.success,
                "image_count": diagnostic.image_count,
                "error_code": diagnostic.error_code,
                "attempts": diagnostic.attempts,
                "usage": diagnostic.usage,
                "raw_response_path": None if raw_path is None else str(raw_path),
            },
        )

        if raw_path is None:
            return None
        return raw_path.resolve().as_uri()

    def record_final(self, envelope: FinalRecordEnvelope) -> None:
        artifacts = self._require_artifacts(envelope.processing_id)
        record_payload = envelope.record.to_dict()
        _write_json(
            artifacts.final_record_path,
            {
                "origin": envelope.origin,
                "record": record_payload,
                "responseArtifactUrl": envelope.response_artifact_url,
            },
        )

        self.repo.save_farm_record(
            processing_id=envelope.processing_id,
            user_id=envelope.user_id,
            origin=envelope.origin,
            data_unavailable=envelope.record.data_unavailable,
            record=record_payload,
            extracted_record=envelope.extracted_record.to_dict(),
            response_artifact_url=envelope.response_artifact_url,
        )

        status = "completed" if envelope.origin == "extracted" else "failed"
        self.repo.update_processing(
            processing_id=envelope.processing_id,
            status=status,
            metadata={
                "processedBatches": envelope.processed_batches,
                "failedBatches": envelope.failed_batches,
                "origin": envelope.origin,
                "exitStage": envelope.exit_stage,
            },
        )

        finalize_run_manifest(
            artifacts_root_path=artifacts.artifacts_root_path,
            status=status,
            origin=envelope.origin,
            exit_stage=envelope.exit_stage,
            processed_batches=envelope.processed_batches,
            failed_batches=envelope.failed_batches,
        )
        logger.info(
            "Stored final record for %s (origin=%s)",
            envelope.processing_id,
            envelope.origin,
        )
        self._artifacts.pop(envelope.processing_id, None)

    def _require_artifacts(self, processing_id: str) -> ProcessingArtifacts:
        artifacts = self._artifacts.get(processing_id)
        if artifacts is not None:
            return artifacts

        record = self.repo.get_processing(processing_id)
        if record is None:
            raise KeyError(f"Document processing not started: {processing_id}")
        artifacts = self.repo.artifacts_manager.ensure_processing_structure(
            record.artifacts_root_path
        )
        self._artifacts[processing_id] = artifacts
        return artifacts


def _write_json(path: Path, payload: Any) -> None:
    path.write_text(json.dumps(payload, ensure_ascii=False, indent=2), encoding="utf-8")
