"""
Field projection for read responses.

A client narrows a response with `fields=a,b,c`; `_all` (or no parameter)
returns everything. The full view is the payload plus the server-assigned
fields. Internal bookkeeping (deletion state, origin, legacy `_id`) never
appears in any view.
"""

from __future__ import annotations

from typing import Any

from ..storage import Record

ALL_FIELDS_SENTINEL = "_all"

# Marker returned by parse_fields for "everything"
ALL_FIELDS = None

_INTERNAL_FIELDS = frozenset({"_id", "isValid"})


def parse_fields(param: str | None) -> tuple[str, ...] | None:
    """Parse a `fields` query parameter.

    Returns:
        ALL_FIELDS (None) for a missing/empty parameter or `_all`,
        otherwise the requested names in order, without duplicates
    """
    if param is None:
        return ALL_FIELDS
    names = [name.strip() for name in param.split(",") if name.strip()]
    if not names or ALL_FIELDS_SENTINEL in names:
        return ALL_FIELDS
    return tuple(dict.fromkeys(names))


def full_view(record: Record) -> dict[str, Any]:
    """Payload plus identifier, srvCreated and srvModified."""
    view = {k: v for k, v in record.payload.items() if k not in _INTERNAL_FIELDS}
    view["identifier"] = record.identifier
    view["srvCreated"] = record.srv_created
    view["srvModified"] = record.srv_modified
    return view


def project(record: Record, fields: tuple[str, ...] | None) -> dict[str, Any]:
    """Project a record onto the requested fields.

    Requested fields the record does not have are silently omitted.
    """
    view = full_view(record)
    if fields is ALL_FIELDS:
        return view
    return {name: view[name] for name in fields if name in view}
