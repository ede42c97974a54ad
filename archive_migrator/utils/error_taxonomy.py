from __future__ import annotations

import socket
from typing import Any, Literal, Sequence

ErrorCode = Literal[
    "FETCH_ERROR",
    "INVALID_DOCUMENT_ID",
    "INVALID_ARCHIVE",
    "NO_PAGES_FOUND",
    "UNSUPPORTED_IMAGE_FORMAT",
    "PACKAGING_ERROR",
    "MERGE_ERROR",
    "UPLOAD_ERROR",
    "CANCELLED",
    "STORAGE_ERROR",
    "UNKNOWN_ERROR",
]

ERROR_FRIENDLY_MESSAGES: dict[ErrorCode, str] = {
    "FETCH_ERROR": "Source archive could not be fetched. Please retry.",
    "INVALID_DOCUMENT_ID": "Document id cannot be used as a remote directory name.",
    "INVALID_ARCHIVE": "Source archive is not a readable ZIP container.",
    "NO_PAGES_FOUND": "Source archive contains no recognized page images.",
    "UNSUPPORTED_IMAGE_FORMAT": "A page image could not be decoded.",
    "PACKAGING_ERROR": "Chain-of-custody archive could not be written.",
    "MERGE_ERROR": "Merged document could not be written.",
    "UPLOAD_ERROR": "Delivery to the remote target failed. Please retry.",
    "CANCELLED": "Migration was cancelled before completion.",
    "STORAGE_ERROR": "Local storage operation failed during migration.",
    "UNKNOWN_ERROR": "Unexpected error occurred during migration.",
}

_RETRYABLE_CODES: frozenset[str] = frozenset({"FETCH_ERROR", "UPLOAD_ERROR"})


class MigrationError(RuntimeError):
    """Base class for failures bound to a migration stage."""

    code: ErrorCode = "UNKNOWN_ERROR"


class FetchError(MigrationError):
    """Raised when the source archive cannot be obtained."""

    code: ErrorCode = "FETCH_ERROR"


class InvalidDocumentIdError(MigrationError, ValueError):
    """Raised when a document id is unsafe to use as a path segment."""

    code: ErrorCode = "INVALID_DOCUMENT_ID"


class InvalidArchiveError(MigrationError, ValueError):
    """Raised when the inbound payload cannot be parsed as a ZIP container."""

    code: ErrorCode = "INVALID_ARCHIVE"


class NoPagesFoundError(MigrationError, ValueError):
    """Raised when an archive holds no entry with a recognized page suffix."""

    code: ErrorCode = "NO_PAGES_FOUND"


class UnsupportedImageFormatError(MigrationError, ValueError):
    """Raised when a page payload cannot be decoded as a raster image."""

    code: ErrorCode = "UNSUPPORTED_IMAGE_FORMAT"


class PackagingError(MigrationError):
    """Raised when the chain-of-custody archive cannot be written."""

    code: ErrorCode = "PACKAGING_ERROR"


class MergeError(MigrationError):
    """Raised when the merged document cannot be written."""

    code: ErrorCode = "MERGE_ERROR"


class UploadError(MigrationError):
    """Raised when delivery fails; ``written_paths`` lists committed objects."""

    code: ErrorCode = "UPLOAD_ERROR"

    def __init__(self, message: str, *, written_paths: Sequence[str] = ()) -> None:
        super().__init__(message)
        self.written_paths = tuple(written_paths)


class MigrationCancelledError(MigrationError):
    """Raised at a stage boundary once cancellation has been requested."""

    code: ErrorCode = "CANCELLED"


def classify_error(error: BaseException) -> ErrorCode:
    if isinstance(error, MigrationError):
        return error.code
    if isinstance(error, OSError) and not isinstance(
        error, (ConnectionError, TimeoutError, socket.timeout)
    ):
        return "STORAGE_ERROR"
    return "UNKNOWN_ERROR"


def is_retryable_error_code(code: str | None) -> bool:
    return code in _RETRYABLE_CODES


def is_retryable_status_code(status_code: int) -> bool:
    return status_code == 429 or 500 <= status_code <= 599


def extract_http_status_code(error: BaseException) -> int | None:
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


def build_error_details(error: BaseException) -> str:
    details: list[str] = [f"{error.__class__.__name__}: {error}"]
    status_code = extract_http_status_code(error)
    if status_code is not None:
        details.append(f"status_code={status_code}")

    cause = error.__cause__
    if cause is not None:
        details.append(f"caused_by={cause.__class__.__name__}: {cause}")

    written_paths = getattr(error, "written_paths", None)
    if written_paths:
        details.append(f"written_paths={','.join(written_paths)}")
    return "\n".join(details)


def _to_int_or_none(value: Any) -> int | None:
    if value is None:
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None
