"""
Client-side identifier derivation.

Lets a client know a record's identifier before creating it, so a create
can be retried or a record fetched without a round trip.

Invariants:
    - Produces exactly the identifiers the server derives (scheme 1)
    - Non-identity fields never influence the identifier
"""

from __future__ import annotations

import hashlib
import json
from typing import Any, Dict, Mapping, Sequence, Tuple

SCHEME_VERSION = 1

# Identity fields beyond device/app/date, per built-in collection
COLLECTION_IDENTITY_FIELDS: Dict[str, Tuple[str, ...]] = {
    "devicestatus": (),
    "entries": ("type",),
    "treatments": ("eventType",),
}


def identity_fields_for(collection: str) -> Tuple[str, ...]:
    """Extra identity fields of a collection (none for unknown names)."""
    return COLLECTION_IDENTITY_FIELDS.get(collection, ())


def calculate_identifier(
    document: Mapping[str, Any],
    extra_fields: Sequence[str] = (),
) -> str:
    """Derive the identifier the server will assign to a document.

    Args:
        document: Record payload with device, app and date
        extra_fields: Collection-specific identity fields, in order

    Returns:
        32-char lowercase hex identifier

    Raises:
        ValueError: If device, app or date is missing or has the wrong type

    Example:
        >>> len(calculate_identifier({"device": "phone", "app": "uploader", "date": 1}))
        32
    """
    device = document.get("device")
    app = document.get("app")
    date = document.get("date")

    if not isinstance(device, str) or not device:
        raise ValueError("device is required")
    if not isinstance(app, str) or not app:
        raise ValueError("app is required")
    if isinstance(date, bool) or not isinstance(date, (int, float)):
        raise ValueError("date must be a number of milliseconds")
    if isinstance(date, float):
        if not date.is_integer():
            raise ValueError("date must be a number of milliseconds")
        date = int(date)

    parts = ["vstore-id", SCHEME_VERSION, device, app, date]
    parts.extend(document.get(name) for name in extra_fields)
    canonical = json.dumps(parts, separators=(",", ":"), ensure_ascii=False, allow_nan=False)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()[:32]
