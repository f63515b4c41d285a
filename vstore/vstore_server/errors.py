"""
Error types for VStore Server.

Only unexpected conditions are exceptions. Expected outcomes of a lookup or
write (not found, gone, not modified, already exists) are returned as result
enums and mapped to HTTP status codes by the API layer.

Invariants:
    - All errors inherit from StoreError
    - Every error carries the HTTP status it surfaces as
    - Messages never contain token values
"""

from __future__ import annotations

from typing import Any

AUTH_FAILURE_MESSAGE = "Missing or bad access token or JWT"


class StoreError(Exception):
    """Base exception for all server errors.

    Attributes:
        message: Error message
        code: Error code for programmatic handling
        status: HTTP status code the error maps to
        details: Additional error context
    """

    status = 500
    default_code = "STORE_ERROR"

    def __init__(
        self,
        message: str,
        code: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Render as a JSON error body."""
        body: dict[str, Any] = {
            "status": self.status,
            "message": self.message,
            "code": self.code,
        }
        if self.details:
            body["details"] = self.details
        return body


class AuthorizationError(StoreError):
    """Missing or invalid token, or the token lacks the required scope.

    The message sent to clients is always the generic one; the reason is
    kept for logging only.
    """

    status = 401
    default_code = "UNAUTHORIZED"

    def __init__(self, reason: str = "no principal") -> None:
        super().__init__(AUTH_FAILURE_MESSAGE)
        self.reason = reason

    def to_dict(self) -> dict[str, Any]:
        return {"status": self.status, "message": self.message}


class ValidationError(StoreError):
    """Incoming record or query is invalid."""

    status = 400
    default_code = "VALIDATION_ERROR"

    def __init__(self, message: str, field_name: str | None = None) -> None:
        super().__init__(
            message,
            details={"field": field_name} if field_name else None,
        )
        self.field_name = field_name


class MalformedRecordError(ValidationError):
    """Identity fields (device, app, timestamp) are missing or unusable."""

    default_code = "MALFORMED_RECORD"


class NotFoundError(StoreError):
    """Collection does not exist (or is not enabled)."""

    status = 404
    default_code = "NOT_FOUND"


class StorageError(StoreError):
    """Storage engine failed."""

    status = 500
    default_code = "STORAGE_ERROR"
