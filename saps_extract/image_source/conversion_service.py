from __future__ import annotations

import logging
import time
from typing import Any, Callable

import httpx
from tenacity import (
    retry,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from saps_extract.pipeline.cancellation import CancellationToken
from saps_extract.utils.error_taxonomy import (
    ImageSourceError,
    is_retryable_status_code,
)

logger = logging.getLogger(__name__)


def _should_retry_error(exc: BaseException) -> bool:
    if isinstance(exc, (httpx.TimeoutException, httpx.NetworkError)):
        return True
    if isinstance(exc, httpx.HTTPStatusError):
        return is_retryable_status_code(exc.response.status_code)
    return False


class ConversionServiceImageSource:
    """Lists page images produced by the PDF-to-image conversion service.

    ``POST /conversions`` either answers with the image URLs directly or with
    a job id that is polled through ``GET /conversions/{job_id}`` for a
    bounded number of attempts.
    """

    def __init__(
        self,
        *,
        base_url: str,
        api_key: str | None = None,
        timeout_seconds: float = 60.0,
        max_retries: int = 3,
        retry_backoff_seconds: float = 1.0,
        poll_max_attempts: int = 30,
        poll_interval_seconds: float = 6.0,
        sleep_fn: Callable[[float], None] = time.sleep,
        cancellation: CancellationToken | None = None,
        http_client: httpx.Client | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._timeout_seconds = timeout_seconds
        self._max_retries = max_retries
        self._retry_backoff_seconds = retry_backoff_seconds
        self._poll_max_attempts = poll_max_attempts
        self._poll_interval_seconds = poll_interval_seconds
        self._sleep_fn = sleep_fn
        self._cancellation = cancellation
        self._http_client = http_client

    def list_page_images(self, document_ref: str) -> list[str]:
        payload = self._request(
            "POST", "/conversions", json={"documentRef": document_ref}
        )
        urls = _image_urls(payload)
        if urls is not None:
            return urls

        job_id = payload.get("jobId")
        if not job_id:
            raise ImageSourceError(
                f"Conversion service returned neither images nor a job id: {payload}"
            )

        for attempt in range(1, self._poll_max_attempts + 1):
            if self._cancellation is not None and self._cancellation.cancelled:
                raise ImageSourceError(
                    f"Conversion job {job_id} abandoned: {self._cancellation.reason}"
                )
            self._sleep_fn(self._poll_interval_seconds)
            payload = self._request("GET", f"/conversions/{job_id}")
            status = str(payload.get("status") or "").lower()
            if status == "failed":
                raise ImageSourceError(
                    f"Conversion job {job_id} failed: "
                    f"{payload.get('error') or 'unknown'}"
                )
            urls = _image_urls(payload)
            if urls is not None:
                logger.info(
                    "Conversion job %s finished with %d pages after %d polls",
                    job_id,
                    len(urls),
                    attempt,
                )
                return urls
            logger.info(
                "Conversion job %s still %s (%d/%d)",
                job_id,
                status or "pending",
                attempt,
                self._poll_max_attempts,
            )

        raise ImageSourceError(
            f"Conversion job {job_id} not finished "
            f"after {self._poll_max_attempts} polls"
        )

    def _request(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        # Wrap in tenacity programmatically so retries follow the settings.
        @retry(
            wait=wait_exponential(multiplier=self._retry_backoff_seconds),
            stop=stop_after_attempt(self._max_retries),
            retry=retry_if_exception(_should_retry_error),
            sleep=self._sleep_fn,
            reraise=True,
        )
        def _do_request() -> dict[str, Any]:
            client = self._http_client or self._build_client()
            try:
                response = client.request(
                    method, f"{self._base_url}{path}", **kwargs
                )
                response.raise_for_status()
                data = response.json()
            finally:
                if client is not self._http_client:
                    client.close()
            if not isinstance(data, dict):
                raise ImageSourceError(
                    f"Conversion response must be an object: {data}"
                )
            return data

        try:
            return _do_request()
        except httpx.HTTPError as error:
            raise ImageSourceError(
                f"Conversion service request failed: {error}"
            ) from error
        except ValueError as error:
            raise ImageSourceError(
                f"Conversion response is not JSON: {error}"
            ) from error

    def _build_client(self) -> httpx.Client:
        headers: dict[str, str] = {}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        return httpx.Client(headers=headers, timeout=self._timeout_seconds)


_PENDING_STATUSES = frozenset({"queued", "pending", "processing"})


def _image_urls(payload: dict[str, Any]) -> list[str] | None:
    if str(payload.get("status") or "").lower() in _PENDING_STATUSES:
        return None
    urls = payload.get("imageUrls")
    if not isinstance(urls, list):
        return None
    return [str(url) for url in urls if isinstance(url, str) and url.strip()]
