from __future__ import annotations

import json
import socket
import sqlite3
from typing import Any, Literal

ErrorCode = Literal[
    "FILE_UNSUPPORTED",
    "DOCUMENT_MISSING",
    "DOCUMENT_EMPTY",
    "IMAGE_SOURCE_ERROR",
    "MODEL_OVERLOADED",
    "MODEL_API_ERROR",
    "MODEL_TIMEOUT",
    "MODEL_INVALID_RESPONSE",
    "STORAGE_ERROR",
    "UNKNOWN_ERROR",
]

ERROR_FRIENDLY_MESSAGES: dict[ErrorCode, str] = {
    "FILE_UNSUPPORTED": "Uploaded file format is not supported.",
    "DOCUMENT_MISSING": "No document was provided for processing.",
    "DOCUMENT_EMPTY": "The document has no pages that could be processed.",
    "IMAGE_SOURCE_ERROR": "Page images could not be obtained for the document.",
    "MODEL_OVERLOADED": "Extraction service is overloaded. Please retry later.",
    "MODEL_API_ERROR": "Extraction service request failed.",
    "MODEL_TIMEOUT": "Extraction service did not answer in time.",
    "MODEL_INVALID_RESPONSE": "Extraction service response could not be parsed.",
    "STORAGE_ERROR": "Storage operation failed while saving extraction data.",
    "UNKNOWN_ERROR": "Unexpected error occurred during document processing.",
}


class InputError(ValueError):
    """Raised before the pipeline starts when the input cannot be processed."""


class UnsupportedFileTypeError(InputError):
    """Raised when the uploaded file type is not accepted."""


class MissingDocumentError(InputError):
    """Raised when no document reference was supplied."""


class EmptyDocumentError(ValueError):
    """Raised when a document yields no usable page images."""


class ImageSourceError(RuntimeError):
    """Page images could not be listed for a document."""


class ExtractionServiceError(RuntimeError):
    """Non-success response from the extraction service."""

    def __init__(self, status_code: int, body: str) -> None:
        super().__init__(f"Extraction service returned HTTP {status_code}")
        self.status_code = status_code
        self.body = body


class TransientServiceError(ExtractionServiceError):
    """Extraction service answered with a retryable status."""


class ExtractionServiceOverloaded(TransientServiceError):
    """HTTP 529 from the extraction service."""


class ExtractionServiceTimeout(TimeoutError):
    """The per-call deadline elapsed before the service answered."""


class InvalidServiceResponseError(ValueError):
    """The service answered 2xx but the envelope had no text content."""


OVERLOAD_STATUS_CODE = 529


def classify_batch_error(error: Exception) -> ErrorCode:
    if isinstance(error, ExtractionServiceOverloaded):
        return "MODEL_OVERLOADED"
    if isinstance(error, (ExtractionServiceTimeout, socket.timeout)):
        return "MODEL_TIMEOUT"
    if isinstance(error, (InvalidServiceResponseError, json.JSONDecodeError)):
        return "MODEL_INVALID_RESPONSE"
    if is_overload_exception(error):
        return "MODEL_OVERLOADED"
    if extract_http_status_code(error) is not None:
        return "MODEL_API_ERROR"
    if is_storage_error_exception(error):
        return "STORAGE_ERROR"
    if isinstance(error, (ConnectionError, TimeoutError, RuntimeError)):
        return "MODEL_API_ERROR"
    return "UNKNOWN_ERROR"


def classify_input_error(error: Exception) -> ErrorCode:
    if isinstance(error, UnsupportedFileTypeError):
        return "FILE_UNSUPPORTED"
    if isinstance(error, MissingDocumentError):
        return "DOCUMENT_MISSING"
    if isinstance(error, EmptyDocumentError):
        return "DOCUMENT_EMPTY"
    if isinstance(error, ImageSourceError):
        return "IMAGE_SOURCE_ERROR"
    if is_storage_error_exception(error):
        return "STORAGE_ERROR"
    return "UNKNOWN_ERROR"


def is_overload_exception(error: Exception) -> bool:
    if isinstance(error, ExtractionServiceOverloaded):
        return True
    return extract_http_status_code(error) == OVERLOAD_STATUS_CODE


def is_retryable_status_code(status_code: int) -> bool:
    return status_code == 429 or 500 <= status_code <= 599


def extract_http_status_code(error: Exception) -> int | None:
    for field_name in ("status_code", "status", "http_status"):
        value = getattr(error, field_name, None)
        parsed = _to_int_or_none(value)
        if parsed is not None:
            return parsed

    response = getattr(error, "response", None)
    if response is not None:
        parsed = _to_int_or_none(getattr(response, "status_code", None))
        if parsed is not None:
            return parsed

    return None


def build_error_details(error: Exception) -> str:
    details: list[str] = [f"{error.__class__.__name__}: {error}"]
    status_code = extract_http_status_code(error)
    if status_code is not None:
        details.append(f"status_code={status_code}")

    for field_name in ("body", "response_body", "payload"):
        value = getattr(error, field_name, None)
        if value is None:
            continue
        details.append(f"{field_name}={value}")
    return "\n".join(details)


def is_storage_error_exception(error: Exception) -> bool:
    if isinstance(error, sqlite3.Error):
        return True
    if isinstance(error, (ConnectionError, TimeoutError)):
        return False
    if isinstance(error, OSError):
        return True
    return False


def _to_int_or_none(value: Any) -> int | None:
    if value is None:
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None
