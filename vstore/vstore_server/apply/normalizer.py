"""
Record normalization for VStore.

Documents reach the store in one of two shapes:

    FromCurrentApi  - v3 clients: numeric `date`, optional `identifier`
    FromLegacyApi   - the old API: storage-assigned `_id`, textual
                      `created_at`, no `identifier`

normalize() turns either into one CanonicalDocument. Legacy documents keep
their primary key as identifier; the identifier deriver is never run on them.

Invariants:
    - device, app and a timestamp are mandatory in both shapes
    - Server-managed fields sent by clients are never trusted
    - A client-supplied identifier must match the derived one
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Union

from ..errors import MalformedRecordError, ValidationError
from ..schema import CollectionDef
from ..storage import Origin
from .identity import calculate_identifier, coerce_event_time

# Fields only the server may set. `subject` and `modifiedBy` are filled in
# by the lifecycle store from the caller's access context.
SERVER_FIELDS = frozenset(
    {"identifier", "srvCreated", "srvModified", "subject", "modifiedBy", "isValid", "_id"}
)


@dataclass(frozen=True)
class FromCurrentApi:
    """Document in the current (v3) shape."""

    document: Mapping[str, Any]


@dataclass(frozen=True)
class FromLegacyApi:
    """Document written by the legacy API.

    Attributes:
        primary_key: Storage-assigned key, rendered as a string
        document: Raw legacy document
    """

    primary_key: str
    document: Mapping[str, Any]


IncomingDocument = Union[FromCurrentApi, FromLegacyApi]


@dataclass
class CanonicalDocument:
    """One record's identity and content, independent of its source shape."""

    identifier: str
    payload: dict[str, Any]
    event_time: int
    origin: Origin


def classify(document: Mapping[str, Any]) -> IncomingDocument:
    """Tag a raw document with its shape."""
    if "_id" in document and "identifier" not in document:
        return FromLegacyApi(primary_key=str(document["_id"]), document=document)
    return FromCurrentApi(document=document)


def strip_server_fields(document: Mapping[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in document.items() if k not in SERVER_FIELDS}


def parse_legacy_timestamp(value: Any) -> int:
    """Parse a legacy ISO-8601 `created_at` into Unix milliseconds.

    Naive timestamps are taken as UTC.

    Raises:
        MalformedRecordError: If the value is not an ISO-8601 string
    """
    if not isinstance(value, str) or not value:
        raise MalformedRecordError("missing identity field 'created_at'", field_name="created_at")
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        raise MalformedRecordError(
            f"created_at is not an ISO-8601 timestamp: {value!r}", field_name="created_at"
        )
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return int(parsed.timestamp() * 1000)


def _require_device_and_app(document: Mapping[str, Any]) -> None:
    for name in ("device", "app"):
        value = document.get(name)
        if not isinstance(value, str) or not value:
            raise MalformedRecordError(f"missing identity field '{name}'", field_name=name)


def _normalize_current(incoming: FromCurrentApi, collection: CollectionDef) -> CanonicalDocument:
    document = incoming.document
    identifier = calculate_identifier(document, collection.extra_identity_fields)

    supplied = document.get("identifier")
    if supplied is not None and supplied != identifier:
        raise ValidationError(
            "identifier does not match the record's identity fields",
            field_name="identifier",
        )

    payload = strip_server_fields(document)
    event_time = coerce_event_time(document["date"])
    payload["date"] = event_time

    return CanonicalDocument(
        identifier=identifier,
        payload=payload,
        event_time=event_time,
        origin=Origin.CURRENT,
    )


def _normalize_legacy(incoming: FromLegacyApi) -> CanonicalDocument:
    document = incoming.document
    _require_device_and_app(document)

    if document.get("date") is not None:
        event_time = coerce_event_time(document["date"])
    else:
        event_time = parse_legacy_timestamp(document.get("created_at"))

    payload = {k: v for k, v in document.items() if k != "_id"}

    return CanonicalDocument(
        identifier=incoming.primary_key,
        payload=payload,
        event_time=event_time,
        origin=Origin.LEGACY,
    )


def normalize(incoming: IncomingDocument, collection: CollectionDef) -> CanonicalDocument:
    """Produce the canonical form of an incoming document.

    Args:
        incoming: Tagged document
        collection: Collection the document belongs to

    Returns:
        CanonicalDocument

    Raises:
        MalformedRecordError: If identity fields are missing in either shape
        ValidationError: If a supplied identifier disagrees with the derived one
    """
    if not isinstance(incoming.document, Mapping):
        raise ValidationError("record must be a JSON object")
    if isinstance(incoming, FromLegacyApi):
        return _normalize_legacy(incoming)
    if isinstance(incoming, FromCurrentApi):
        return _normalize_current(incoming, collection)
    raise TypeError(f"Unsupported document shape: {type(incoming).__name__}")
