from __future__ import annotations

from typing import Any

from saps_extract.llm_client.base import ExtractionRequest
from saps_extract.pipeline.types import DocumentBatchJob
from saps_extract.prompts.manager import PromptSet


def build_extraction_request(
    *,
    job: DocumentBatchJob,
    prompt_set: PromptSet,
    model: str,
    max_tokens: int,
) -> ExtractionRequest:
    content: list[dict[str, Any]] = [
        {"type": "text", "text": prompt_set.instructions_text},
    ]
    for image_url in job.images:
        content.append(
            {
                "type": "image",
                "source": {"type": "url", "url": image_url},
            }
        )

    payload: dict[str, Any] = {
        "model": model,
        "max_tokens": max_tokens,
        "temperature": 0,
        "system": prompt_set.system_prompt_text,
        "messages": [{"role": "user", "content": content}],
    }
    return ExtractionRequest(
        batch_index=job.batch_index,
        total_batches=job.total_batches,
        image_count=job.image_count,
        prompt_version=prompt_set.label,
        payload=payload,
    )
