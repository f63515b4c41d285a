"""
Conditional read evaluation.

Decides the outcome of a direct read from the record's lifecycle state and
an optional client freshness marker (If-Modified-Since).

Invariants:
    - Absent or purged -> NOT_FOUND; soft-deleted -> GONE
    - Freshness compares the logical event time, not srvModified
    - A marker at or after the event time is a cache hit (NOT_MODIFIED)
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum

from ..storage import DeletionState, Record


class ReadOutcome(Enum):
    """Outcome of a direct read."""

    OK = "ok"
    NOT_MODIFIED = "not_modified"
    NOT_FOUND = "not_found"
    GONE = "gone"


def datetime_to_ms(value: datetime) -> int:
    """Convert an aware (or UTC-naive) datetime to Unix milliseconds."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return int(value.timestamp() * 1000)


def evaluate(record: Record | None, if_modified_since: int | None = None) -> ReadOutcome:
    """Decide the outcome of reading a record.

    Args:
        record: Stored record, or None when absent/purged
        if_modified_since: Client freshness marker (Unix ms), if any

    Returns:
        ReadOutcome
    """
    if record is None or record.state == DeletionState.PURGED:
        return ReadOutcome.NOT_FOUND
    if record.state == DeletionState.SOFT_DELETED:
        return ReadOutcome.GONE
    if if_modified_since is not None and record.event_time <= if_modified_since:
        return ReadOutcome.NOT_MODIFIED
    return ReadOutcome.OK
