from __future__ import annotations

import logging
import time
from dataclasses import replace
from datetime import date
from typing import Callable
from uuid import uuid4

from saps_extract.image_source.base import ImageSource
from saps_extract.llm_client.base import ModelClient
from saps_extract.llm_client.normalize_usage import sum_usage
from saps_extract.pipeline.cancellation import CancellationToken
from saps_extract.pipeline.completeness import is_complete
from saps_extract.pipeline.fallback import CropDefaults, finalize_record
from saps_extract.pipeline.merge import merge_field_sets
from saps_extract.pipeline.prepare_batches import MAX_IMAGES_PER_BATCH, prepare_batches
from saps_extract.pipeline.response_parser import parse_response
from saps_extract.pipeline.types import (
    BatchOutcome,
    DocumentBatchJob,
    DocumentInput,
    PipelineProgress,
    PipelineResult,
    PipelineStage,
    ProcessingStatus,
)
from saps_extract.pipeline.validate_input import validate_document_input
from saps_extract.storage.sink import (
    BatchDiagnostic,
    FinalRecordEnvelope,
    PersistenceSink,
)
from saps_extract.utils.error_taxonomy import (
    EmptyDocumentError,
    ImageSourceError,
    build_error_details,
    classify_input_error,
)
from saps_extract.utils.logging import clear_log_context, set_log_context

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[ProcessingStatus], None]

STEP_PREPARING = "Claude AI feldolgozás előkészítése"
STEP_LOADING_PAGES = "PDF dokumentum feldolgozása"
STEP_EXTRACTING = "Claude AI feldolgozás folyamatban"
STEP_ANALYSIS_DONE = "Dokumentum elemzése befejezve"
STEP_GENERATING_DEFAULTS = "Alapértelmezett adatok generálása"
STEP_PROCESSING_DATA = "Adatok feldolgozása"
STEP_FINISHED = "Feldolgozás befejezve"

_EXTRACTION_PROGRESS_START = 60
_EXTRACTION_PROGRESS_END = 80
_LOG_CONTEXT_KEYS = ["document_ref", "user_id", "batch_index", "stage"]


class ExtractionPipelineOrchestrator:
    """Runs one document through image listing, batched extraction and finalizing.

    Only input validation errors reach the caller. Every other failure ends
    in a finalized record, synthesized where the document yielded nothing.
    """

    def __init__(
        self,
        *,
        image_source: ImageSource,
        model_client: ModelClient,
        crop_defaults: CropDefaults,
        sink: PersistenceSink | None = None,
        batch_size: int = MAX_IMAGES_PER_BATCH,
        progress_callback: ProgressCallback | None = None,
        today: date | None = None,
        processing_id_factory: Callable[[], str] = lambda: str(uuid4()),
    ) -> None:
        self.image_source = image_source
        self.model_client = model_client
        self.crop_defaults = crop_defaults
        self.sink = sink
        self.batch_size = batch_size
        self.progress_callback = progress_callback
        self.today = today
        self.processing_id_factory = processing_id_factory
        self.latest_status: ProcessingStatus | None = None

    def process_document(
        self,
        document: DocumentInput,
        *,
        cancellation: CancellationToken | None = None,
    ) -> PipelineResult:
        validate_document_input(document)

        set_log_context(
            document_ref=document.document_ref,
            user_id=document.user_id,
            stage=PipelineStage.PREPARING.value,
        )
        try:
            return self._run(document, cancellation=cancellation)
        finally:
            clear_log_context(_LOG_CONTEXT_KEYS)

    def _run(
        self,
        document: DocumentInput,
        *,
        cancellation: CancellationToken | None,
    ) -> PipelineResult:
        started_at = time.perf_counter()
        processing_id = self.processing_id_factory()
        persistence_errors: list[str | None] = []

        self._publish(ProcessingStatus(step=STEP_PREPARING, progress=40))
        jobs = self._prepare_jobs(document)

        progress = PipelineProgress(
            total_batches=len(jobs),
            total_pages=sum(job.image_count for job in jobs),
        )

        sink_ready = False
        if self.sink is not None:
            error = _safe_start_document(
                sink=self.sink,
                processing_id=processing_id,
                document=document,
                page_count=progress.total_pages,
                total_batches=progress.total_batches,
            )
            persistence_errors.append(error)
            sink_ready = error is None

        self._publish(
            ProcessingStatus(
                step=STEP_LOADING_PAGES,
                progress=45,
                details=(
                    f"{progress.total_pages} oldal, {progress.total_batches} köteg"
                ),
                batch_progress=progress.snapshot(),
            )
        )

        outcomes: list[BatchOutcome] = []
        response_artifact_url: str | None = None
        exit_stage = PipelineStage.PREPARING
        if jobs:
            exit_stage = PipelineStage.ALL_BATCHES_DONE
            set_log_context(stage=PipelineStage.BATCH_LOOP.value)
            self._publish(
                ProcessingStatus(
                    step=STEP_EXTRACTING,
                    progress=_EXTRACTION_PROGRESS_START,
                    batch_progress=progress.snapshot(),
                )
            )

        for job in jobs:
            if cancellation is not None and cancellation.cancelled:
                exit_stage = PipelineStage.CANCELLED
                logger.warning(
                    "Stopping before batch %d/%d: %s",
                    job.batch_index,
                    job.total_batches,
                    cancellation.reason,
                )
                break

            set_log_context(batch_index=job.batch_index)
            outcome = self._run_batch(job, progress)
            outcomes.append(outcome)

            if sink_ready and self.sink is not None:
                artifact_url, error = _safe_record_batch(
                    sink=self.sink,
                    diagnostic=_build_diagnostic(
                        processing_id=processing_id,
                        user_id=document.user_id,
                        job=job,
                        outcome=outcome,
                    ),
                )
                persistence_errors.append(error)
                if artifact_url and (outcome.success or response_artifact_url is None):
                    response_artifact_url = artifact_url

            self._publish(
                ProcessingStatus(
                    step=STEP_EXTRACTING,
                    progress=_extraction_progress(progress),
                    details=f"{job.batch_index}/{job.total_batches}. köteg kész",
                    batch_progress=progress.snapshot(),
                )
            )

            if is_complete(progress.combined):
                exit_stage = PipelineStage.EARLY_EXIT
                logger.info(
                    "Required fields complete after batch %d/%d, skipping %d batch(es)",
                    job.batch_index,
                    job.total_batches,
                    job.total_batches - job.batch_index,
                )
                break
        clear_log_context(["batch_index"])

        set_log_context(stage=PipelineStage.FINALIZING.value)
        if jobs:
            self._publish(
                ProcessingStatus(
                    step=STEP_ANALYSIS_DONE,
                    progress=_EXTRACTION_PROGRESS_END,
                    batch_progress=progress.snapshot(),
                )
            )
        finalized = finalize_record(
            progress.combined,
            user_id=document.user_id,
            file_name=document.file_name,
            file_size=document.file_size,
            crop_defaults=self.crop_defaults,
            today=self.today,
        )
        if finalized.origin != "extracted":
            self._publish(
                ProcessingStatus(
                    step=STEP_GENERATING_DEFAULTS,
                    progress=85,
                    details=", ".join(finalized.record.synthetic_fields) or None,
                    batch_progress=progress.snapshot(),
                )
            )
        self._publish(
            ProcessingStatus(
                step=STEP_PROCESSING_DATA,
                progress=90,
                batch_progress=progress.snapshot(),
            )
        )

        if sink_ready and self.sink is not None:
            persistence_errors.append(
                _safe_record_final(
                    sink=self.sink,
                    envelope=FinalRecordEnvelope(
                        processing_id=processing_id,
                        user_id=document.user_id,
                        record=finalized.record,
                        extracted_record=progress.combined,
                        origin=finalized.origin,
                        exit_stage=exit_stage.value,
                        processed_batches=progress.processed_batches,
                        failed_batches=progress.failed_batches,
                        response_artifact_url=response_artifact_url,
                    ),
                )
            )

        set_log_context(stage=PipelineStage.DONE.value)
        self._publish(
            ProcessingStatus(
                step=STEP_FINISHED,
                progress=100,
                batch_progress=progress.snapshot(),
            )
        )
        logger.info(
            "Document finished: origin=%s exit=%s",
            finalized.origin,
            exit_stage.value,
            extra={
                "duration_ms": _elapsed_ms(started_at),
                "metrics": {
                    "total_batches": progress.total_batches,
                    "processed_batches": progress.processed_batches,
                    "failed_batches": progress.failed_batches,
                    "total_pages": progress.total_pages,
                    "processed_pages": progress.processed_pages,
                    "missing_required_fields": list(
                        finalized.record.missing_required_fields
                    ),
                    "usage": sum_usage([outcome.usage for outcome in outcomes]),
                },
            },
        )

        return PipelineResult(
            document_ref=document.document_ref,
            record=finalized.record,
            extracted_record=progress.combined,
            origin=finalized.origin,
            outcomes=tuple(outcomes),
            progress=progress.snapshot(),
            exit_stage=exit_stage,
            response_artifact_url=response_artifact_url,
            persistence_errors=tuple(item for item in persistence_errors if item),
        )

    def _prepare_jobs(self, document: DocumentInput) -> list[DocumentBatchJob]:
        try:
            image_urls = self.image_source.list_page_images(document.document_ref)
            return prepare_batches(image_urls, batch_size=self.batch_size)
        except (EmptyDocumentError, ImageSourceError) as error:
            logger.warning(
                "No page images for %s (%s), falling back to synthesized data: %s",
                document.document_ref,
                classify_input_error(error),
                build_error_details(error),
            )
            return []

    def _run_batch(
        self,
        job: DocumentBatchJob,
        progress: PipelineProgress,
    ) -> BatchOutcome:
        outcome = self.model_client.submit(job)
        progress.processed_batches += 1
        progress.processed_pages += job.image_count

        if outcome.success:
            parsed = parse_response(outcome.raw_text)
            if parsed.field_set is None:
                outcome = replace(
                    outcome,
                    success=False,
                    error_code="MODEL_INVALID_RESPONSE",
                    error_detail="; ".join(parsed.errors),
                )
            else:
                outcome = replace(
                    outcome,
                    field_set=parsed.field_set,
                    parse_strategy=parsed.strategy,
                )
                progress.combined = merge_field_sets(
                    progress.combined, parsed.field_set
                )

        if not outcome.success:
            progress.failed_batches += 1
            logger.warning(
                "Batch %d/%d skipped: %s",
                job.batch_index,
                job.total_batches,
                outcome.error_code,
            )
        else:
            logger.info(
                "Batch %d/%d parsed with %s strategy",
                job.batch_index,
                job.total_batches,
                outcome.parse_strategy,
                extra={"duration_ms": outcome.elapsed_ms},
            )
        return outcome

    def _publish(self, status: ProcessingStatus) -> None:
        self.latest_status = status
        if self.progress_callback is None:
            return
        try:
            self.progress_callback(status)
        except Exception as error:  # noqa: BLE001
            logger.warning(
                "Progress callback failed: %s", build_error_details(error)
            )


def _extraction_progress(progress: PipelineProgress) -> int:
    if progress.total_batches <= 0:
        return _EXTRACTION_PROGRESS_START
    span = _EXTRACTION_PROGRESS_END - _EXTRACTION_PROGRESS_START
    done = span * progress.processed_batches // progress.total_batches
    return min(_EXTRACTION_PROGRESS_START + done, _EXTRACTION_PROGRESS_END - 1)


def _build_diagnostic(
    *,
    processing_id: str,
    user_id: str,
    job: DocumentBatchJob,
    outcome: BatchOutcome,
) -> BatchDiagnostic:
    return BatchDiagnostic(
        processing_id=processing_id,
        user_id=user_id,
        batch_index=job.batch_index,
        total_batches=job.total_batches,
        image_count=job.image_count,
        images=job.images,
        success=outcome.success,
        raw_text=outcome.raw_text,
        parsed_data=(
            None if outcome.field_set is None else outcome.field_set.to_dict()
        ),
        error_code=outcome.error_code,
        error_detail=outcome.error_detail,
        attempts=outcome.attempts,
        usage=outcome.usage,
    )


def _safe_start_document(
    *,
    sink: PersistenceSink,
    processing_id: str,
    document: DocumentInput,
    page_count: int,
    total_batches: int,
) -> str | None:
    try:
        sink.start_document(
            processing_id=processing_id,
            document=document,
            page_count=page_count,
            total_batches=total_batches,
        )
        return None
    except Exception as error:  # noqa: BLE001
        details = build_error_details(error)
        logger.error("Storage persistence failed in start_document: %s", details)
        return details


def _safe_record_batch(
    *,
    sink: PersistenceSink,
    diagnostic: BatchDiagnostic,
) -> tuple[str | None, str | None]:
    try:
        return sink.record_batch(diagnostic), None
    except Exception as error:  # noqa: BLE001
        details = build_error_details(error)
        logger.error("Storage persistence failed in record_batch: %s", details)
        return None, details


def _safe_record_final(
    *,
    sink: PersistenceSink,
    envelope: FinalRecordEnvelope,
) -> str | None:
    try:
        sink.record_final(envelope)
        return None
    except Exception as error:  # noqa: BLE001
        details = build_error_details(error)
        logger.error("Storage persistence failed in record_final: %s", details)
        return details


def _elapsed_ms(started_at: float) -> float:
    return round((time.perf_counter() - started_at) * 1000, 3)
