from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Protocol

from saps_extract.pipeline.types import BatchOutcome, DocumentBatchJob


@dataclass(frozen=True, slots=True)
class ExtractionRequest:
    batch_index: int
    total_batches: int
    image_count: int
    prompt_version: str
    payload: dict[str, Any]

    def body_bytes(self) -> bytes:
        return json.dumps(
            self.payload,
            ensure_ascii=False,
            sort_keys=True,
            separators=(",", ":"),
        ).encode("utf-8")


@dataclass(frozen=True, slots=True)
class ModelResponse:
    raw_text: str
    raw_response: dict[str, Any]
    usage_raw: dict[str, Any]
    usage_normalized: dict[str, int | None]
    status_code: int


class ModelClient(Protocol):
    def submit(self, job: DocumentBatchJob) -> BatchOutcome: ...
