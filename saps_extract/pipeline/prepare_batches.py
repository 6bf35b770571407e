from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from pathlib import PurePosixPath
from typing import Sequence
from urllib.parse import urlparse

from saps_extract.pipeline.types import DocumentBatchJob
from saps_extract.utils.error_taxonomy import EmptyDocumentError

logger = logging.getLogger(__name__)

MAX_IMAGES_PER_BATCH = 20
SUPPORTED_IMAGE_EXTENSIONS = frozenset({".jpg", ".jpeg", ".png", ".gif", ".webp"})


@dataclass(frozen=True, slots=True)
class ImageClassification:
    valid: tuple[str, ...]
    invalid: tuple[str, ...]
    unsupported: tuple[str, ...]


def classify_image_urls(image_urls: Sequence[str]) -> ImageClassification:
    valid: list[str] = []
    invalid: list[str] = []
    unsupported: list[str] = []
    seen: set[str] = set()

    for raw_url in image_urls:
        url = raw_url.strip() if isinstance(raw_url, str) else ""
        parsed = urlparse(url)
        if parsed.scheme not in {"http", "https"} or not parsed.netloc:
            invalid.append(raw_url)
            continue
        extension = PurePosixPath(parsed.path).suffix.lower()
        if extension not in SUPPORTED_IMAGE_EXTENSIONS:
            unsupported.append(url)
            continue
        if url in seen:
            continue
        seen.add(url)
        valid.append(url)

    return ImageClassification(
        valid=tuple(valid),
        invalid=tuple(invalid),
        unsupported=tuple(unsupported),
    )


def split_into_batches(
    image_urls: Sequence[str],
    batch_size: int = MAX_IMAGES_PER_BATCH,
) -> list[DocumentBatchJob]:
    if batch_size < 1:
        raise ValueError(f"batch_size must be positive, got {batch_size}")
    if not image_urls:
        raise EmptyDocumentError("Document has no page images")

    total_batches = math.ceil(len(image_urls) / batch_size)
    jobs: list[DocumentBatchJob] = []
    for offset in range(0, len(image_urls), batch_size):
        jobs.append(
            DocumentBatchJob(
                images=tuple(image_urls[offset : offset + batch_size]),
                batch_index=len(jobs) + 1,
                total_batches=total_batches,
                first_page_number=offset + 1,
            )
        )
    return jobs


def prepare_batches(
    image_urls: Sequence[str],
    batch_size: int = MAX_IMAGES_PER_BATCH,
) -> list[DocumentBatchJob]:
    """Filter page URLs down to fetchable images and cut them into batches.

    Raises EmptyDocumentError when no page survives the filter.
    """
    classification = classify_image_urls(image_urls)
    logger.info(
        "Page images classified: %d valid, %d invalid, %d unsupported",
        len(classification.valid),
        len(classification.invalid),
        len(classification.unsupported),
        extra={
            "metrics": {
                "valid": len(classification.valid),
                "invalid": len(classification.invalid),
                "unsupported": len(classification.unsupported),
            }
        },
    )
    if not classification.valid:
        raise EmptyDocumentError(
            f"No usable page images among {len(image_urls)} references"
        )
    return split_into_batches(classification.valid, batch_size)
