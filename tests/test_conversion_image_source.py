from __future__ import annotations

import json
from typing import Any

import httpx
import pytest

from saps_extract.image_source.base import StaticImageSource
from saps_extract.image_source.conversion_service import ConversionServiceImageSource
from saps_extract.pipeline.cancellation import CancellationToken
from saps_extract.utils.error_taxonomy import ImageSourceError

BASE_URL = "https://convert.example.com/api"


def _source(
    handler: Any,
    *,
    delays: list[float] | None = None,
    cancellation: CancellationToken | None = None,
    poll_max_attempts: int = 30,
) -> ConversionServiceImageSource:
    sleeps = delays if delays is not None else []
    return ConversionServiceImageSource(
        base_url=BASE_URL,
        api_key="conv-key",
        retry_backoff_seconds=0.5,
        poll_max_attempts=poll_max_attempts,
        poll_interval_seconds=6.0,
        sleep_fn=sleeps.append,
        cancellation=cancellation,
        http_client=httpx.Client(transport=httpx.MockTransport(handler)),
    )


def test_direct_image_list_is_returned() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(
            200,
            json={"imageUrls": ["https://cdn.example.com/1.png", "", 5]},
        )

    urls = _source(handler).list_page_images("uploads/doc.pdf")

    assert urls == ["https://cdn.example.com/1.png"]
    assert seen[0].method == "POST"
    assert seen[0].url.path == "/api/conversions"
    assert json.loads(seen[0].content) == {"documentRef": "uploads/doc.pdf"}


def test_job_is_polled_until_finished() -> None:
    statuses = iter(["processing", "processing", "completed"])
    delays: list[float] = []

    def handler(request: httpx.Request) -> httpx.Response:
        if request.method == "POST":
            return httpx.Response(202, json={"jobId": "job-1", "status": "queued"})
        status = next(statuses)
        body: dict[str, Any] = {"jobId": "job-1", "status": status}
        if status == "completed":
            body["imageUrls"] = ["https://cdn.example.com/a.png"]
        return httpx.Response(200, json=body)

    urls = _source(handler, delays=delays).list_page_images("doc")

    assert urls == ["https://cdn.example.com/a.png"]
    assert delays == [6.0, 6.0, 6.0]


def test_failed_job_raises_image_source_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.method == "POST":
            return httpx.Response(200, json={"jobId": "job-2"})
        return httpx.Response(200, json={"status": "failed", "error": "corrupt pdf"})

    with pytest.raises(ImageSourceError, match="corrupt pdf"):
        _source(handler).list_page_images("doc")


def test_polling_is_bounded() -> None:
    polls = {"count": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        if request.method == "POST":
            return httpx.Response(200, json={"jobId": "job-3"})
        polls["count"] += 1
        return httpx.Response(200, json={"status": "processing"})

    with pytest.raises(ImageSourceError, match="not finished"):
        _source(handler, poll_max_attempts=3).list_page_images("doc")

    assert polls["count"] == 3


def test_polling_stops_when_cancelled() -> None:
    token = CancellationToken()
    token.cancel()

    def handler(request: httpx.Request) -> httpx.Response:
        if request.method == "POST":
            return httpx.Response(200, json={"jobId": "job-4"})
        raise AssertionError("cancelled job must not be polled")

    with pytest.raises(ImageSourceError, match="abandoned"):
        _source(handler, cancellation=token).list_page_images("doc")


def test_server_errors_are_retried_then_reported() -> None:
    calls = {"count": 0}
    delays: list[float] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls["count"] += 1
        if calls["count"] < 3:
            return httpx.Response(503, text="unavailable")
        return httpx.Response(
            200, json={"imageUrls": ["https://cdn.example.com/x.png"]}
        )

    urls = _source(handler, delays=delays).list_page_images("doc")

    assert urls == ["https://cdn.example.com/x.png"]
    assert calls["count"] == 3
    assert len(delays) == 2


def test_client_errors_are_not_retried() -> None:
    calls = {"count": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["count"] += 1
        return httpx.Response(404, text="missing")

    with pytest.raises(ImageSourceError):
        _source(handler).list_page_images("doc")

    assert calls["count"] == 1


def test_missing_job_id_raises() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"status": "queued"})

    with pytest.raises(ImageSourceError):
        _source(handler).list_page_images("doc")


def test_static_image_source_serves_known_documents() -> None:
    source = StaticImageSource({"doc-1": ["https://cdn.example.com/1.png"]})

    assert source.list_page_images("doc-1") == ["https://cdn.example.com/1.png"]
    assert source.list_page_images("unknown") == []
