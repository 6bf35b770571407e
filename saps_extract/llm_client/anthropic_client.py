from __future__ import annotations

import logging
import time
from typing import Any, Callable

import httpx

from saps_extract.llm_client.base import ExtractionRequest, ModelResponse
from saps_extract.llm_client.normalize_usage import normalize_anthropic_usage
from saps_extract.llm_client.request_builder import build_extraction_request
from saps_extract.pipeline.types import BatchOutcome, DocumentBatchJob
from saps_extract.prompts.manager import PromptSet
from saps_extract.utils.error_taxonomy import (
    OVERLOAD_STATUS_CODE,
    ExtractionServiceError,
    ExtractionServiceOverloaded,
    ExtractionServiceTimeout,
    InvalidServiceResponseError,
    build_error_details,
    classify_batch_error,
    is_overload_exception,
)
from saps_extract.utils.retry import run_with_retry

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://api.anthropic.com/v1/messages"
DEFAULT_API_VERSION = "2023-06-01"


class AnthropicModelClient:
    """Submits one page batch to the Messages API.

    Only HTTP 529 is retried. Every other failure, a timeout included, ends
    the batch on the first attempt.
    """

    def __init__(
        self,
        *,
        api_key: str | None,
        prompt_set: PromptSet,
        model: str,
        api_url: str = DEFAULT_API_URL,
        api_version: str = DEFAULT_API_VERSION,
        max_tokens: int = 4000,
        timeout_seconds: float = 180.0,
        connect_timeout_seconds: float = 10.0,
        max_retries: int = 3,
        base_delay_seconds: float = 2.0,
        sleep_fn: Callable[[float], None] = time.sleep,
        http_client: httpx.Client | None = None,
    ) -> None:
        if not api_key:
            raise ValueError("Anthropic API key is required")
        self._api_key = api_key
        self._prompt_set = prompt_set
        self._model = model
        self._api_url = api_url
        self._api_version = api_version
        self._max_tokens = max_tokens
        self._timeout = httpx.Timeout(timeout_seconds, connect=connect_timeout_seconds)
        self._max_retries = max_retries
        self._base_delay_seconds = base_delay_seconds
        self._sleep_fn = sleep_fn
        self._client = http_client
        self._owns_client = http_client is None

    def build_request(self, job: DocumentBatchJob) -> ExtractionRequest:
        return build_extraction_request(
            job=job,
            prompt_set=self._prompt_set,
            model=self._model,
            max_tokens=self._max_tokens,
        )

    def submit(self, job: DocumentBatchJob) -> BatchOutcome:
        request = self.build_request(job)
        attempts = 0

        def _attempt() -> ModelResponse:
            nonlocal attempts
            attempts += 1
            return self.send(request)

        def _on_retry(retry_number: int, delay: float, error: Exception) -> None:
            logger.warning(
                "Extraction service overloaded for batch %d/%d, retry %d/%d in %.1fs",
                job.batch_index,
                job.total_batches,
                retry_number,
                self._max_retries,
                delay,
                extra={"batch_index": job.batch_index},
            )

        started_at = time.perf_counter()
        try:
            response = run_with_retry(
                operation=_attempt,
                should_retry=is_overload_exception,
                max_retries=self._max_retries,
                base_delay_seconds=self._base_delay_seconds,
                sleep_fn=self._sleep_fn,
                on_retry=_on_retry,
            )
        except Exception as error:  # noqa: BLE001
            error_code = classify_batch_error(error)
            body = getattr(error, "body", None)
            logger.error(
                "Batch %d/%d failed after %d attempt(s): %s",
                job.batch_index,
                job.total_batches,
                attempts,
                error_code,
                extra={"batch_index": job.batch_index},
            )
            return BatchOutcome(
                batch_index=job.batch_index,
                total_batches=job.total_batches,
                image_count=job.image_count,
                success=False,
                error_code=error_code,
                error_detail=body if body is not None else build_error_details(error),
                attempts=attempts,
                elapsed_ms=_elapsed_ms(started_at),
            )

        return BatchOutcome(
            batch_index=job.batch_index,
            total_batches=job.total_batches,
            image_count=job.image_count,
            success=True,
            raw_text=response.raw_text,
            attempts=attempts,
            usage=response.usage_normalized,
            elapsed_ms=_elapsed_ms(started_at),
        )

    def send(self, request: ExtractionRequest) -> ModelResponse:
        """Perform exactly one HTTP call for ``request``."""
        client = self._resolve_client()
        try:
            response = client.post(
                self._api_url,
                content=request.body_bytes(),
                headers={
                    "content-type": "application/json",
                    "x-api-key": self._api_key,
                    "anthropic-version": self._api_version,
                },
                timeout=self._timeout,
            )
        except httpx.TimeoutException as error:
            raise ExtractionServiceTimeout(
                f"No response within {self._timeout.read}s for batch "
                f"{request.batch_index}/{request.total_batches}"
            ) from error

        if response.status_code == OVERLOAD_STATUS_CODE:
            raise ExtractionServiceOverloaded(response.status_code, response.text)
        if not response.is_success:
            raise ExtractionServiceError(response.status_code, response.text)

        try:
            payload = response.json()
        except ValueError as error:
            raise InvalidServiceResponseError(
                f"Response body is not JSON: {response.text[:200]}"
            ) from error

        raw_text = _extract_output_text(payload)
        usage = payload.get("usage")
        usage_raw = usage if isinstance(usage, dict) else {}
        return ModelResponse(
            raw_text=raw_text,
            raw_response=payload,
            usage_raw=usage_raw,
            usage_normalized=normalize_anthropic_usage(usage_raw),
            status_code=response.status_code,
        )

    def close(self) -> None:
        if self._client is not None and self._owns_client:
            self._client.close()
            self._client = None

    def __enter__(self) -> AnthropicModelClient:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _resolve_client(self) -> httpx.Client:
        if self._client is None:
            self._client = httpx.Client(timeout=self._timeout)
        return self._client


def _extract_output_text(payload: Any) -> str:
    if not isinstance(payload, dict):
        raise InvalidServiceResponseError("Response root must be an object")

    content = payload.get("content")
    if not isinstance(content, list):
        raise InvalidServiceResponseError("Response has no content list")

    parts = [
        str(block.get("text", ""))
        for block in content
        if isinstance(block, dict) and block.get("type") == "text"
    ]
    if not parts:
        raise InvalidServiceResponseError("Response contains no text block")
    return "\n".join(parts)


def _elapsed_ms(started_at: float) -> float:
    return (time.perf_counter() - started_at) * 1000
