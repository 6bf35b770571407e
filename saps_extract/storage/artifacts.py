from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path


@dataclass(frozen=True, slots=True)
class ProcessingArtifacts:
    artifacts_root_path: Path
    logs_dir: Path
    run_log_path: Path
    batches_dir: Path
    final_record_path: Path


@dataclass(frozen=True, slots=True)
class BatchArtifacts:
    batch_dir: Path
    response_raw_path: Path
    response_parsed_path: Path
    images_path: Path


class ArtifactsManager:
    def __init__(self, data_dir: Path | str) -> None:
        self.data_dir = Path(data_dir)

    def build_processing_root(self, *, user_id: str, processing_id: str) -> Path:
        return self.data_dir / "users" / user_id / "documents" / processing_id

    def create_processing_artifacts(
        self,
        *,
        user_id: str,
        processing_id: str,
    ) -> ProcessingArtifacts:
        root_path = self.build_processing_root(
            user_id=user_id, processing_id=processing_id
        )
        return self.ensure_processing_structure(root_path)

    def ensure_processing_structure(
        self,
        artifacts_root_path: Path | str,
    ) -> ProcessingArtifacts:
        root_path = Path(artifacts_root_path)
        logs_dir = root_path / "logs"
        batches_dir = root_path / "batches"

        logs_dir.mkdir(parents=True, exist_ok=True)
        batches_dir.mkdir(parents=True, exist_ok=True)

        run_log_path = logs_dir / "run.log"
        run_log_path.touch(exist_ok=True)

        return ProcessingArtifacts(
            artifacts_root_path=root_path,
            logs_dir=logs_dir,
            run_log_path=run_log_path,
            batches_dir=batches_dir,
            final_record_path=root_path / "final_record.json",
        )

    def create_batch_artifacts(
        self,
        *,
        artifacts_root_path: Path | str,
        batch_index: int,
    ) -> BatchArtifacts:
        batch_dir = Path(artifacts_root_path) / "batches" / f"batch_{batch_index:03d}"
        batch_dir.mkdir(parents=True, exist_ok=True)

        return BatchArtifacts(
            batch_dir=batch_dir,
            response_raw_path=batch_dir / "response_raw.txt",
            response_parsed_path=batch_dir / "response_parsed.json",
            images_path=batch_dir / "images.json",
        )
