"""Typed failures raised by the storage engine.

Every failure carries an ``ErrorKind`` so callers can tell expected outcomes
(``NOT_FOUND``, ``GONE``) from operational problems (``IO_FAILURE``,
``STORAGE_INCONSISTENCY``) without inspecting messages.
"""

from __future__ import annotations

import enum


class ErrorKind(str, enum.Enum):
    NOT_FOUND = "not_found"
    GONE = "gone"
    UPLOAD_FAILED = "upload_failed"
    STORAGE_INCONSISTENCY = "storage_inconsistency"
    IO_FAILURE = "io_failure"
    CANCELLATION_FAILURE = "cancellation_failure"
    CONTENT_TYPE_NOT_ALLOWED = "content_type_not_allowed"


class StorageError(RuntimeError):
    kind: ErrorKind = ErrorKind.IO_FAILURE

    def __init__(self, message: str, key: str | None = None):
        super().__init__(message)
        # content key involved, if any
        self.key = key

    @property
    def is_operational(self) -> bool:
        """True for failures worth alerting on, False for expected outcomes."""
        return self.kind in (
            ErrorKind.IO_FAILURE,
            ErrorKind.STORAGE_INCONSISTENCY,
            ErrorKind.UPLOAD_FAILED,
        )


class NotFound(StorageError):
    kind = ErrorKind.NOT_FOUND


class Gone(StorageError):
    kind = ErrorKind.GONE


class UploadFailed(StorageError):
    # key is set when content was written before the failure (orphaned blob)
    kind = ErrorKind.UPLOAD_FAILED


class StorageInconsistency(StorageError):
    kind = ErrorKind.STORAGE_INCONSISTENCY


class IoFailure(StorageError):
    kind = ErrorKind.IO_FAILURE


class CancellationFailure(StorageError):
    kind = ErrorKind.CANCELLATION_FAILURE


class ContentTypeNotAllowed(StorageError):
    kind = ErrorKind.CONTENT_TYPE_NOT_ALLOWED

    def __init__(self, content_type: str):
        super().__init__(f"Content type not allowed: {content_type}")
        self.content_type = content_type
