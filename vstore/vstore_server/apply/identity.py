"""
Deterministic record identifiers.

An identifier is derived from the identity-significant fields of a record so
that any client can compute it ahead of time and retry a create safely.

Scheme version 1:
    canonical = compact JSON array
        ["vstore-id", 1, <device>, <app>, <date>, <extra_1>, ...]
    identifier = sha256(canonical as UTF-8).hexdigest()[:32]

    - device and app are strings, date is integer milliseconds
    - extra identity fields follow in the collection's declared order;
      absent extras encode as null
    - JSON quoting is the field separator, so no value can bleed into
      its neighbour

Invariants:
    - Same identity fields -> same identifier, on every platform
    - Non-identity fields never influence the identifier
    - Identifiers are 32 lowercase hex chars; legacy primary keys are 24,
      so the two never collide

How to change safely:
    - Never edit scheme 1; add a new version and bump
      IDENTIFIER_SCHEME_VERSION
    - Keep vstore_sdk.identifier in lockstep
"""

from __future__ import annotations

import hashlib
import json
from collections.abc import Iterable, Mapping
from typing import Any

from ..errors import MalformedRecordError

IDENTIFIER_SCHEME_VERSION = 1
IDENTIFIER_LENGTH = 32

_SCHEME_TAG = "vstore-id"


def coerce_event_time(value: Any) -> int:
    """Return an event time as integer milliseconds.

    Raises:
        MalformedRecordError: If the value is not an integral number
    """
    if isinstance(value, bool):
        raise MalformedRecordError("date must be a number of milliseconds", field_name="date")
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    raise MalformedRecordError("date must be a number of milliseconds", field_name="date")


def _require_text(document: Mapping[str, Any], name: str) -> str:
    value = document.get(name)
    if not isinstance(value, str) or not value:
        raise MalformedRecordError(f"missing identity field '{name}'", field_name=name)
    return value


def identity_key(
    document: Mapping[str, Any],
    extra_fields: Iterable[str] = (),
) -> str:
    """Build the canonical string the identifier hash is computed over."""
    if document.get("date") is None:
        raise MalformedRecordError("missing identity field 'date'", field_name="date")

    parts: list[Any] = [
        _SCHEME_TAG,
        IDENTIFIER_SCHEME_VERSION,
        _require_text(document, "device"),
        _require_text(document, "app"),
        coerce_event_time(document["date"]),
    ]
    parts.extend(document.get(name) for name in extra_fields)

    try:
        return json.dumps(parts, separators=(",", ":"), ensure_ascii=False, allow_nan=False)
    except (TypeError, ValueError) as e:
        raise MalformedRecordError(f"identity field is not serializable: {e}")


def calculate_identifier(
    document: Mapping[str, Any],
    extra_fields: Iterable[str] = (),
) -> str:
    """Derive the identifier of a current-format document.

    Args:
        document: Record payload
        extra_fields: Collection-specific identity fields, in order

    Returns:
        32-char lowercase hex identifier

    Raises:
        MalformedRecordError: If device, app or date is missing or unusable
    """
    key = identity_key(document, extra_fields)
    return hashlib.sha256(key.encode("utf-8")).hexdigest()[:IDENTIFIER_LENGTH]
