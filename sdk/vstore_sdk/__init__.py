"""
VStore Python SDK - Client library for the VStore record service.

This SDK provides:
- VStoreClient for the v3 HTTP API
- calculate_identifier to derive record identifiers client-side
- Typed errors for every non-success outcome

Example:
    >>> from vstore_sdk import VStoreClient, calculate_identifier
    >>>
    >>> doc = {"device": "phone", "app": "uploader", "date": 1700000000000}
    >>> async with VStoreClient("http://localhost:1337", token="t0k3n") as db:
    ...     identifier = await db.create("devicestatus", doc)
    ...     assert identifier == calculate_identifier(doc)

Invariants:
    - Identifiers derived here match the server's for the same scheme version
    - Retrying a create is always safe

Version: 3.0.0
"""

__version__ = "3.0.0"

from .client import VStoreClient
from .errors import (
    AuthorizationError,
    ConnectionError,
    GoneError,
    NotFoundError,
    NotModifiedError,
    ValidationError,
    VStoreError,
)
from .identifier import (
    COLLECTION_IDENTITY_FIELDS,
    SCHEME_VERSION,
    calculate_identifier,
    identity_fields_for,
)

__all__ = [
    # Client
    "VStoreClient",
    # Identifiers
    "calculate_identifier",
    "identity_fields_for",
    "COLLECTION_IDENTITY_FIELDS",
    "SCHEME_VERSION",
    # Errors
    "VStoreError",
    "ConnectionError",
    "AuthorizationError",
    "ValidationError",
    "NotFoundError",
    "GoneError",
    "NotModifiedError",
]
