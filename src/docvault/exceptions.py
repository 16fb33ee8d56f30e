"""Exception hierarchy for docvault.

Every error carries an :class:`ErrorKind` so boundary layers (HTTP handlers,
RPC adapters) can map failures without inspecting message text.
"""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    """Caller-visible failure categories."""

    NOT_FOUND = "not_found"
    VALIDATION = "validation"
    FORBIDDEN = "forbidden"
    CONFLICT = "conflict"
    GONE = "gone"
    UNAUTHORIZED = "unauthorized"
    STORAGE = "storage"

    @property
    def http_status(self) -> int:
        """Suggested HTTP status code for this kind."""
        return _HTTP_STATUS[self]


_HTTP_STATUS = {
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.VALIDATION: 400,
    ErrorKind.FORBIDDEN: 403,
    ErrorKind.CONFLICT: 409,
    ErrorKind.GONE: 410,
    ErrorKind.UNAUTHORIZED: 401,
    ErrorKind.STORAGE: 500,
}


class DocVaultError(Exception):
    """Base exception for all docvault errors."""

    kind: ErrorKind = ErrorKind.STORAGE

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class NotFoundError(DocVaultError):
    """Raised when a referenced record does not exist or is soft-deleted."""

    kind = ErrorKind.NOT_FOUND


class ValidationError(DocVaultError):
    """Raised on malformed input or a structurally invalid request."""

    kind = ErrorKind.VALIDATION


class ForbiddenError(DocVaultError):
    """Raised when the principal lacks ownership or visibility."""

    kind = ErrorKind.FORBIDDEN


class ConflictError(DocVaultError):
    """Raised when a request collides with existing state."""

    kind = ErrorKind.CONFLICT


class GoneError(DocVaultError):
    """Raised when a record exists but is past its effective window."""

    kind = ErrorKind.GONE


class FileExpiredError(GoneError):
    """Raised when a file's ``expires_at`` has passed."""


class ShareUnavailableError(GoneError):
    """Raised when a share link is inactive, expired, or over its access cap."""


class SharePasswordError(DocVaultError):
    """Raised when a password-protected share is redeemed with a wrong password."""

    kind = ErrorKind.UNAUTHORIZED


class StorageError(DocVaultError):
    """Raised on storage backend failures (DB connection, blob I/O, etc.)."""

    kind = ErrorKind.STORAGE


class BlobStoreError(StorageError):
    """Raised when the blob store cannot complete an operation."""


class BlobNotFoundError(BlobStoreError):
    """Raised when a blob key does not exist."""
