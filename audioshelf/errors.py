"""
Domain errors shared by the services and the HTTP layer.

Every error carries a short machine ``code`` next to the human message so the
API can surface actionable text without parsing strings.
"""
from __future__ import annotations

from typing import Any, Optional


class AudioshelfError(Exception):
    code = "error"

    def __init__(self, message: str, *, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code


class ValidationError(AudioshelfError):
    """Bad input: file format, size, duration or a missing field."""
    code = "invalid"


class InvalidTransition(ValidationError):
    """Lifecycle move that the content item's current status does not allow."""
    code = "invalid_transition"


class NotEligible(AudioshelfError):
    """Free-claim preconditions are not met."""
    code = "not_eligible"


class ConflictError(AudioshelfError):
    """A concurrent writer won; ``current`` holds the reloaded authoritative state."""
    code = "conflict"

    def __init__(self, message: str, *, code: Optional[str] = None, current: Any = None):
        super().__init__(message, code=code)
        self.current = current


class StorageError(AudioshelfError):
    """Object store put/delete failure."""
    code = "storage_error"


class AuthorizationError(AudioshelfError):
    """Missing or forbidden. Deliberately the same error for both."""
    code = "not_found"

    def __init__(self, message: str = "Content not found", *, code: Optional[str] = None):
        super().__init__(message, code=code)


__all__ = [
    "AudioshelfError",
    "ValidationError",
    "InvalidTransition",
    "NotEligible",
    "ConflictError",
    "StorageError",
    "AuthorizationError",
]
