"""
Error taxonomy for the sync services.

- Transient API errors (5xx, network) are retried by the transport only
- Permanent API errors (4xx, unparseable bodies) surface immediately
- ParentMissingError signals a foreign key violation the resolver can retry
- SyncAbortedError is the only error that escapes a sync run
"""

from typing import Any


class RetentionSyncError(Exception):
    """Base class for all sync errors."""

    pass


# -----------------------------------------------------------------------------
# Remote API
# -----------------------------------------------------------------------------


class APIError(RetentionSyncError):
    """Raised for Marketing Cloud API errors."""

    def __init__(self, message: str, status_code: int | None = None, response_body: str | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.response_body = response_body


class TransientAPIError(APIError):
    """Server-side or network failure; worth retrying."""

    pass


class PermanentAPIError(APIError):
    """Client-side rejection; retrying will not help."""

    pass


class AuthenticationError(PermanentAPIError):
    """Token request was rejected or returned an unusable body."""

    pass


# -----------------------------------------------------------------------------
# Persistence
# -----------------------------------------------------------------------------


class PersistenceError(RetentionSyncError):
    """A store operation failed for a reason other than ordering."""

    def __init__(self, message: str, entity_id: str | None = None) -> None:
        super().__init__(message)
        self.entity_id = entity_id


class ParentMissingError(PersistenceError):
    """Foreign key violation: the referenced parent row is not committed (yet)."""

    pass


# -----------------------------------------------------------------------------
# Orchestration
# -----------------------------------------------------------------------------


class SyncAbortedError(RetentionSyncError):
    """The run could not get past its top-level stages."""

    def __init__(self, message: str, metrics: Any = None) -> None:
        super().__init__(message)
        self.metrics = metrics
