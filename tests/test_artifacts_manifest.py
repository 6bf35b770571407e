from __future__ import annotations

from pathlib import Path

import pytest

from saps_extract.storage.artifacts import ArtifactsManager
from saps_extract.storage.run_manifest import (
    finalize_run_manifest,
    get_manifest_path,
    init_run_manifest,
    read_run_manifest,
    record_batch_entry,
    update_run_manifest,
)


def test_create_processing_artifacts_creates_deterministic_tree(tmp_path: Path) -> None:
    manager = ArtifactsManager(tmp_path / "data")

    artifacts = manager.create_processing_artifacts(
        user_id="user-1", processing_id="p-001"
    )

    assert (
        artifacts.artifacts_root_path
        == tmp_path / "data" / "users" / "user-1" / "documents" / "p-001"
    )
    assert artifacts.run_log_path == artifacts.logs_dir / "run.log"
    assert artifacts.run_log_path.is_file()
    assert artifacts.batches_dir.is_dir()
    assert artifacts.final_record_path.name == "final_record.json"


def test_create_batch_artifacts_uses_zero_padded_dirs(tmp_path: Path) -> None:
    manager = ArtifactsManager(tmp_path / "data")
    processing = manager.create_processing_artifacts(
        user_id="user-1", processing_id="p-002"
    )

    batch = manager.create_batch_artifacts(
        artifacts_root_path=processing.artifacts_root_path,
        batch_index=3,
    )

    assert batch.batch_dir == processing.batches_dir / "batch_003"
    assert batch.batch_dir.is_dir()
    assert batch.response_raw_path.name == "response_raw.txt"
    assert batch.response_parsed_path.name == "response_parsed.json"


def test_run_manifest_init_and_deep_update(tmp_path: Path) -> None:
    root = tmp_path / "data" / "users" / "u" / "documents" / "p-1"

    path = init_run_manifest(
        artifacts_root_path=root,
        processing_id="p-1",
        user_id="u",
        inputs={"document_ref": "doc", "total_batches": 3},
        artifacts={"root": str(root)},
    )

    assert path == get_manifest_path(root)
    initial = read_run_manifest(artifacts_root_path=root)
    assert initial["status"] == "processing"
    assert initial["stages"]["prepare"]["status"] == "completed"
    assert initial["stages"]["batches"]["status"] == "pending"

    update_run_manifest(
        artifacts_root_path=root,
        updates={
            "batches": {"001": {"success": True}},
            "stages": {"batches": {"status": "in_progress"}},
        },
    )
    updated = update_run_manifest(
        artifacts_root_path=root,
        updates={"batches": {"002": {"success": False}}, "status": "completed"},
    )

    assert updated["batches"] == {"001": {"success": True}, "002": {"success": False}}
    assert updated["stages"]["batches"]["status"] == "in_progress"
    assert updated["stages"]["finalize"]["status"] == "pending"
    assert updated["status"] == "completed"
    assert updated["inputs"]["total_batches"] == 3


def test_read_run_manifest_missing_and_invalid(tmp_path: Path) -> None:
    assert read_run_manifest(artifacts_root_path=tmp_path) == {}

    get_manifest_path(tmp_path).write_text("[1, 2]", encoding="utf-8")
    with pytest.raises(ValueError):
        read_run_manifest(artifacts_root_path=tmp_path)


def test_finalize_run_manifest_totals_batch_usage(tmp_path: Path) -> None:
    init_run_manifest(
        artifacts_root_path=tmp_path,
        processing_id="p-3",
        user_id="u",
        inputs={},
        artifacts={},
    )
    record_batch_entry(
        artifacts_root_path=tmp_path,
        batch_index=1,
        entry={
            "success": True,
            "usage": {"input_tokens": 100, "output_tokens": 20, "total_tokens": 120},
        },
    )
    in_progress = record_batch_entry(
        artifacts_root_path=tmp_path,
        batch_index=12,
        entry={
            "success": True,
            "usage": {"input_tokens": 50, "output_tokens": 5, "total_tokens": 55},
        },
    )
    assert sorted(in_progress["batches"]) == ["001", "012"]
    assert in_progress["stages"]["batches"]["status"] == "in_progress"

    final = finalize_run_manifest(
        artifacts_root_path=tmp_path,
        status="completed",
        origin="extracted",
        exit_stage="all_batches_done",
        processed_batches=2,
        failed_batches=0,
    )

    assert final["status"] == "completed"
    assert final["exit_stage"] == "all_batches_done"
    assert final["stages"]["finalize"]["status"] == "completed"
    assert final["metrics"]["processed_batches"] == 2
    assert final["metrics"]["usage"] == {
        "input_tokens": 150,
        "output_tokens": 25,
        "total_tokens": 175,
    }
