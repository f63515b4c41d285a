"""
Error types for the VStore SDK.

This module defines all exception types raised by the SDK:
- VStoreError: Base exception
- ConnectionError: Server connection issues
- AuthorizationError: Missing or insufficient credentials (401)
- ValidationError: Request rejected as malformed (400)
- NotFoundError: Record or collection does not exist (404)
- GoneError: Record was deleted (410)
- NotModifiedError: Conditional read found no newer version (304)

Invariants:
    - All errors inherit from VStoreError
    - Errors carry the HTTP status where one was received
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class VStoreError(Exception):
    """Base exception for all VStore SDK errors.

    Attributes:
        message: Error message
        code: Error code for programmatic handling
        status: HTTP status code, if any
        details: Additional error context
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        status: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or "VSTORE_ERROR"
        self.status = status
        self.details = details or {}


class ConnectionError(VStoreError):
    """Failed to reach the VStore server.

    Raised when:
    - Server is unreachable
    - Connection times out
    """

    def __init__(self, message: str, address: Optional[str] = None) -> None:
        super().__init__(message, code="CONNECTION_ERROR", details={"address": address})
        self.address = address


class AuthorizationError(VStoreError):
    """The server rejected the credentials."""

    def __init__(self, message: str = "Missing or bad access token or JWT") -> None:
        super().__init__(message, code="UNAUTHORIZED", status=401)


class ValidationError(VStoreError):
    """The server rejected the request as malformed.

    Raised when:
    - Identity fields are missing
    - A client-supplied identifier does not match the identity fields
    - Query parameters are invalid
    """

    def __init__(
        self,
        message: str,
        field_name: Optional[str] = None,
        code: Optional[str] = None,
    ) -> None:
        super().__init__(
            message,
            code=code or "VALIDATION_ERROR",
            status=400,
            details={"field": field_name},
        )
        self.field_name = field_name


class NotFoundError(VStoreError):
    """Record or collection does not exist."""

    def __init__(self, collection: str, identifier: Optional[str] = None) -> None:
        target = f"{collection}/{identifier}" if identifier else collection
        super().__init__(
            f"Not found: {target}",
            code="NOT_FOUND",
            status=404,
            details={"collection": collection, "identifier": identifier},
        )
        self.collection = collection
        self.identifier = identifier


class GoneError(VStoreError):
    """Record was deleted and can no longer be read or modified."""

    def __init__(self, collection: str, identifier: str) -> None:
        super().__init__(
            f"Record deleted: {collection}/{identifier}",
            code="GONE",
            status=410,
            details={"collection": collection, "identifier": identifier},
        )
        self.collection = collection
        self.identifier = identifier


class NotModifiedError(VStoreError):
    """Record has not changed since the given time."""

    def __init__(self, collection: str, identifier: str) -> None:
        super().__init__(
            f"Not modified: {collection}/{identifier}",
            code="NOT_MODIFIED",
            status=304,
            details={"collection": collection, "identifier": identifier},
        )
        self.collection = collection
        self.identifier = identifier
