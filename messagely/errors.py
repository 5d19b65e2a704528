"""Error taxonomy shared by the user directory, message store and API."""
from __future__ import annotations


class MessagelyError(RuntimeError):
    """Base class for failures surfaced to API callers."""

    status_code = 500


class ValidationError(MessagelyError):
    """Raised when required input is missing or malformed."""

    status_code = 400


class AuthenticationError(MessagelyError):
    """Raised when a credential is missing, invalid, or expired."""

    status_code = 401


class ForbiddenError(MessagelyError):
    """Raised when an authenticated user may not access a resource."""

    status_code = 403


class NotFoundError(MessagelyError):
    """Raised when a user or message does not exist."""

    status_code = 404


class ConflictError(MessagelyError):
    """Raised when a write clashes with existing state."""

    status_code = 409


class StorageError(MessagelyError):
    """Raised when the underlying database fails."""

    status_code = 503


__all__ = [
    "AuthenticationError",
    "ConflictError",
    "ForbiddenError",
    "MessagelyError",
    "NotFoundError",
    "StorageError",
    "ValidationError",
]
