from __future__ import annotations

import sqlite3
from pathlib import Path

import pytest

from saps_extract.storage.artifacts import ArtifactsManager
from saps_extract.storage.repo import StorageRepo


def _repo(tmp_path: Path) -> StorageRepo:
    return StorageRepo(
        db_path=tmp_path / "saps.sqlite3",
        artifacts_manager=ArtifactsManager(tmp_path / "data"),
    )


def test_storage_repo_creates_required_tables(tmp_path: Path) -> None:
    db_path = tmp_path / "saps.sqlite3"
    StorageRepo(db_path=db_path)

    with sqlite3.connect(db_path) as conn:
        rows = conn.execute(
            "SELECT name FROM sqlite_master WHERE type = 'table'"
        ).fetchall()

    table_names = {name for (name,) in rows}

    assert {"document_batches", "document_batch_results", "farm_records"}.issubset(
        table_names
    )


def test_create_and_update_processing(tmp_path: Path) -> None:
    repo = _repo(tmp_path)

    record = repo.create_processing(
        processing_id="p-1",
        user_id="user-1",
        document_ref="uploads/saps.pdf",
        document_name="saps.pdf",
        page_count=45,
        metadata={"totalBatches": 3, "processedBatches": 0},
    )

    assert record.status == "processing"
    assert record.page_count == 45
    artifacts_root = Path(record.artifacts_root_path)
    assert artifacts_root == (
        tmp_path / "data" / "users" / "user-1" / "documents" / "p-1"
    ).resolve()
    assert (artifacts_root / "logs" / "run.log").is_file()

    repo.update_processing(
        processing_id="p-1",
        status="completed",
        metadata={"processedBatches": 2, "failedBatches": 1},
    )
    updated = repo.get_processing("p-1")

    assert updated is not None
    assert updated.status == "completed"
    assert updated.metadata == {
        "totalBatches": 3,
        "processedBatches": 2,
        "failedBatches": 1,
    }


def test_update_unknown_processing_raises(tmp_path: Path) -> None:
    repo = _repo(tmp_path)

    with pytest.raises(KeyError):
        repo.update_processing(processing_id="missing", status="failed")
    assert repo.get_processing("missing") is None


def test_batch_results_are_listed_in_batch_order(tmp_path: Path) -> None:
    repo = _repo(tmp_path)
    repo.create_processing(
        processing_id="p-2",
        user_id="user-1",
        document_ref="doc",
        document_name="doc.pdf",
    )

    repo.insert_batch_result(
        processing_id="p-2",
        user_id="user-1",
        batch_index=2,
        total_batches=2,
        success=False,
        extracted_data=None,
        raw_response_path=None,
        image_count=5,
        images_processed=["https://cdn.example.com/21.png"],
        error_code="MODEL_API_ERROR",
        error_detail='{"error": "internal"}',
        attempts=1,
    )
    repo.insert_batch_result(
        processing_id="p-2",
        user_id="user-1",
        batch_index=1,
        total_batches=2,
        success=True,
        extracted_data={"applicantName": "Teszt Gazda"},
        raw_response_path="/tmp/raw.txt",
        image_count=20,
        images_processed=["https://cdn.example.com/1.png"],
        attempts=2,
    )

    results = repo.list_batch_results(processing_id="p-2")

    assert [item.batch_index for item in results] == [1, 2]
    assert results[0].success is True
    assert results[0].extracted_data == {"applicantName": "Teszt Gazda"}
    assert results[0].attempts == 2
    assert results[1].success is False
    assert results[1].extracted_data is None
    assert results[1].error_detail == '{"error": "internal"}'
    assert results[1].images_processed == ["https://cdn.example.com/21.png"]


def test_farm_record_upsert(tmp_path: Path) -> None:
    repo = _repo(tmp_path)
    repo.create_processing(
        processing_id="p-3",
        user_id="user-1",
        document_ref="doc",
        document_name="doc.pdf",
    )

    repo.save_farm_record(
        processing_id="p-3",
        user_id="user-1",
        origin="synthetic",
        data_unavailable=True,
        record={"applicantName": "Demo Gazdálkodó"},
        extracted_record={},
        response_artifact_url=None,
    )
    repo.save_farm_record(
        processing_id="p-3",
        user_id="user-1",
        origin="extracted",
        data_unavailable=False,
        record={"applicantName": "Kovács János"},
        extracted_record={"applicantName": "Kovács János"},
        response_artifact_url="file:///tmp/raw.txt",
    )

    stored = repo.get_farm_record(processing_id="p-3")

    assert stored is not None
    assert stored.origin == "extracted"
    assert stored.data_unavailable is False
    assert stored.record == {"applicantName": "Kovács János"}
    assert stored.response_artifact_url == "file:///tmp/raw.txt"
    assert repo.get_farm_record(processing_id="unknown") is None


def test_batch_result_requires_existing_processing(tmp_path: Path) -> None:
    repo = _repo(tmp_path)

    with pytest.raises(sqlite3.IntegrityError):
        repo.insert_batch_result(
            processing_id="missing",
            user_id="user-1",
            batch_index=1,
            total_batches=1,
            success=True,
            extracted_data=None,
            raw_response_path=None,
            image_count=1,
            images_processed=[],
        )
