from __future__ import annotations

import mimetypes
from pathlib import PurePath

from saps_extract.pipeline.types import DocumentInput
from saps_extract.utils.error_taxonomy import (
    MissingDocumentError,
    UnsupportedFileTypeError,
)

SUPPORTED_MIME_TYPES = frozenset(
    {
        "application/pdf",
        "application/vnd.ms-excel",
        "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    }
)


def resolve_mime_type(document: DocumentInput) -> str | None:
    if document.mime_type:
        return document.mime_type.split(";", 1)[0].strip().lower()
    guessed, _ = mimetypes.guess_type(PurePath(document.file_name).name)
    return guessed


def validate_document_input(document: DocumentInput) -> str:
    """Reject documents the pipeline cannot start on. Returns the MIME type."""
    if not document.document_ref.strip():
        raise MissingDocumentError("Document reference is empty")
    if document.file_size <= 0:
        raise MissingDocumentError(f"Document {document.file_name!r} is empty")

    mime_type = resolve_mime_type(document)
    if mime_type not in SUPPORTED_MIME_TYPES:
        raise UnsupportedFileTypeError(
            f"Unsupported file type for {document.file_name!r}: "
            f"{mime_type or 'unknown'}. "
            "Upload a PDF or Excel SAPS document."
        )
    return mime_type
