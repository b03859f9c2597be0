"""
Error types for RipDB.

This module defines every exception raised by the client:
- RipDbError: Base exception
- CorruptRecordError: Stored value is not a valid envelope
- PendingArchiveError: No durable archive copy exists yet
- PurgeConflictError: Purge attempted while archival is pending
- ArchiveError and subclasses: Archive store failures
- FastStoreError and subclasses: Fast store (cache) failures

A missing key is not an error: reads return None.

Invariants:
    - All errors inherit from RipDbError
    - Every error carries a stable code for programmatic handling
    - Terminal archive failures (UnauthorizedError) are distinct from
      transient ones (ArchiveReadError)

How to change safely:
    - Never change an existing error code
    - New error kinds must subclass the closest existing category
"""

from __future__ import annotations

from typing import Any


class RipDbError(Exception):
    """Base exception for all RipDB errors.

    Attributes:
        message: Error message
        code: Error code for programmatic handling
        details: Additional error context
    """

    def __init__(
        self,
        message: str,
        code: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or "RIPDB_ERROR"
        self.details = details or {}


class CorruptRecordError(RipDbError):
    """Stored value does not decode to a valid envelope."""

    def __init__(self, message: str, key: str | None = None) -> None:
        super().__init__(message, code="CORRUPT_RECORD", details={"key": key})
        self.key = key


class PendingArchiveError(RipDbError):
    """Reconstruction requested but the archive copy does not exist yet.

    Callers should treat this as an expected, recoverable state and retry
    once the background backup has completed.
    """

    def __init__(self, message: str, key: str | None = None) -> None:
        super().__init__(message, code="PENDING_ARCHIVE", details={"key": key})
        self.key = key


class PurgeConflictError(RipDbError):
    """Purge refused because the record has not been archived yet.

    Purging now would destroy the only copy of the payload.
    """

    def __init__(self, message: str, key: str | None = None) -> None:
        super().__init__(message, code="PURGE_CONFLICT", details={"key": key})
        self.key = key


class ArchiveError(RipDbError):
    """Base exception for archive store operations."""

    def __init__(
        self,
        message: str,
        code: str | None = None,
        address: str | None = None,
    ) -> None:
        super().__init__(message, code=code or "ARCHIVE_ERROR", details={"address": address})
        self.address = address


class ArchiveWriteError(ArchiveError):
    """Uploading a blob to the archive failed."""

    def __init__(self, message: str) -> None:
        super().__init__(message, code="ARCHIVE_WRITE_FAILED")


class ArchiveReadError(ArchiveError):
    """A single archive read attempt failed (transient, retriable).

    Raised when:
    - The gateway is unreachable or the request times out
    - The gateway returns a non-2xx status other than 403
    - The response body is malformed
    """

    def __init__(
        self,
        message: str,
        address: str | None = None,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message, code="ARCHIVE_READ_FAILED", address=address)
        self.status_code = status_code
        self.details["status_code"] = status_code


class UnauthorizedError(ArchiveError):
    """The archive gateway rejected access (HTTP 403). Never retried."""

    def __init__(self, message: str, address: str | None = None) -> None:
        super().__init__(message, code="UNAUTHORIZED", address=address)


class ArchiveFetchExhaustedError(ArchiveError):
    """All fetch attempts failed.

    Attributes:
        attempts: Number of attempts performed
        last_error: The error raised by the final attempt
    """

    def __init__(
        self,
        message: str,
        address: str | None = None,
        attempts: int = 0,
        last_error: BaseException | None = None,
    ) -> None:
        super().__init__(message, code="ARCHIVE_FETCH_EXHAUSTED", address=address)
        self.attempts = attempts
        self.last_error = last_error
        self.details["attempts"] = attempts


class FastStoreError(RipDbError):
    """Base exception for fast store operations."""

    def __init__(self, message: str, code: str | None = None) -> None:
        super().__init__(message, code=code or "FAST_STORE_ERROR")


class FastStoreConnectionError(FastStoreError):
    """Fast store is not connected or the connection failed."""

    def __init__(self, message: str) -> None:
        super().__init__(message, code="FAST_STORE_CONNECTION")
