from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Literal

from saps_extract.llm_client.normalize_usage import sum_usage

MANIFEST_FILE_NAME = "processing.json"

StageStatus = Literal["pending", "in_progress", "completed"]


def init_run_manifest(
    *,
    artifacts_root_path: Path | str,
    processing_id: str,
    user_id: str,
    inputs: dict[str, Any],
    artifacts: dict[str, Any],
    status: str = "processing",
) -> Path:
    timestamp = _utc_now()
    manifest = {
        "processing_id": processing_id,
        "user_id": user_id,
        "status": status,
        "inputs": inputs,
        "stages": {
            "prepare": _stage("completed", timestamp),
            "batches": _stage("pending", timestamp),
            "finalize": _stage("pending", timestamp),
        },
        "artifacts": artifacts,
        "batches": {},
        "metrics": {
            "processed_batches": 0,
            "failed_batches": 0,
            "usage": {},
        },
        "origin": None,
        "exit_stage": None,
        "created_at": timestamp,
        "updated_at": timestamp,
    }

    path = get_manifest_path(artifacts_root_path)
    _write_json(path, manifest)
    return path


def record_batch_entry(
    *,
    artifacts_root_path: Path | str,
    batch_index: int,
    entry: dict[str, Any],
) -> dict[str, Any]:
    """Store one batch under its zero-padded key and mark the loop as running."""
    return update_run_manifest(
        artifacts_root_path=artifacts_root_path,
        updates={
            "stages": {"batches": _stage("in_progress")},
            "batches": {batch_key(batch_index): entry},
        },
    )


def finalize_run_manifest(
    *,
    artifacts_root_path: Path | str,
    status: str,
    origin: str,
    exit_stage: str,
    processed_batches: int,
    failed_batches: int,
) -> dict[str, Any]:
    """Close every stage and total token usage over the recorded batches."""
    current = read_run_manifest(artifacts_root_path=artifacts_root_path)
    batch_usages = [
        entry.get("usage") or {}
        for entry in (current.get("batches") or {}).values()
        if isinstance(entry, dict)
    ]
    return update_run_manifest(
        artifacts_root_path=artifacts_root_path,
        updates={
            "status": status,
            "origin": origin,
            "exit_stage": exit_stage,
            "stages": {
                "batches": _stage("completed"),
                "finalize": _stage("completed"),
            },
            "metrics": {
                "processed_batches": processed_batches,
                "failed_batches": failed_batches,
                "usage": sum_usage(batch_usages),
            },
        },
    )


def update_run_manifest(
    *,
    artifacts_root_path: Path | str,
    updates: dict[str, Any],
) -> dict[str, Any]:
    path = get_manifest_path(artifacts_root_path)
    current = read_run_manifest(artifacts_root_path=artifacts_root_path)
    merged = _deep_merge(current, updates)
    merged["updated_at"] = _utc_now()
    _write_json(path, merged)
    return merged


def read_run_manifest(*, artifacts_root_path: Path | str) -> dict[str, Any]:
    path = get_manifest_path(artifacts_root_path)
    if not path.exists():
        return {}

    parsed = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(parsed, dict):
        raise ValueError(f"Manifest root must be an object: {path}")
    return parsed


def get_manifest_path(artifacts_root_path: Path | str) -> Path:
    return Path(artifacts_root_path) / MANIFEST_FILE_NAME


def batch_key(batch_index: int) -> str:
    return f"{batch_index:03d}"


def _stage(status: StageStatus, timestamp: str | None = None) -> dict[str, str]:
    return {"status": status, "updated_at": timestamp or _utc_now()}


def _deep_merge(base: dict[str, Any], updates: dict[str, Any]) -> dict[str, Any]:
    result: dict[str, Any] = dict(base)
    for key, value in updates.items():
        existing = result.get(key)
        if isinstance(existing, dict) and isinstance(value, dict):
            result[key] = _deep_merge(existing, value)
        else:
            result[key] = value
    return result


def _write_json(path: Path, payload: dict[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(payload, ensure_ascii=False, indent=2), encoding="utf-8")


def _utc_now() -> str:
    return datetime.now(tz=timezone.utc).isoformat()
