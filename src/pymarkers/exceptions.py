"""Custom exception hierarchy for pymarkers."""

from __future__ import annotations


class MarkersError(Exception):
    """Base exception for all pymarkers errors."""


class MarkersConfigError(MarkersError):
    """Invalid or missing configuration."""


class InvalidInputError(MarkersError):
    """Malformed coordinates, color or marker mutation.

    Not retryable: the same input will be rejected again.
    """


class UnauthenticatedError(MarkersError):
    """Vote submitted without a reporter identity."""


class NotFoundError(MarkersError):
    """Operation referenced a marker id that does not exist (any more)."""

    def __init__(self, message: str, *, marker_id: str = "") -> None:
        self.marker_id = marker_id
        super().__init__(message)


class StorageUnavailableError(MarkersError):
    """Backing store timed out or failed (I/O error, corrupt file).

    Transient; the caller may retry with backoff.
    """


class ConcurrencyConflictError(MarkersError):
    """Could not get exclusive access to a hot marker in time.

    Raised when the per-marker lock times out or when concurrent votes
    kept moving the target marker between planning and commit.  Safe to
    retry.
    """

    def __init__(self, message: str, *, marker_id: str = "") -> None:
        self.marker_id = marker_id
        super().__init__(message)
