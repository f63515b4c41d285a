"""
In-memory record storage implementation for testing.

This module provides a simple in-memory storage engine for:
- Unit tests
- Integration tests
- Local development without a data directory

Invariants:
    - All data is lost on process exit
    - Provides the same atomicity guarantees as the SQLite engine
    - Safe for concurrent coroutines

How to change safely:
    - Keep interface compatible with the RecordStorage protocol
    - Add features to help with testing scenarios
"""

from __future__ import annotations

import asyncio
import copy
import logging
from typing import Any

from .base import DeletionState, Record, ScanOptions, StorageConnectionError

logger = logging.getLogger(__name__)


class InMemoryRecordStorage:
    """In-memory implementation of RecordStorage.

    Records are copied on the way in and out so callers can never mutate
    stored state behind the lock.

    Thread safety:
        Uses an asyncio lock for mutations. Safe to use from
        multiple coroutines.

    Example:
        >>> storage = InMemoryRecordStorage()
        >>> await storage.connect()
        >>> await storage.insert_if_absent(record)
        True
    """

    def __init__(self) -> None:
        self._records: dict[tuple[str, str], Record] = {}
        self._connected = False
        self._lock = asyncio.Lock()

    @property
    def is_connected(self) -> bool:
        return self._connected

    @property
    def name(self) -> str:
        return "memory"

    async def connect(self) -> None:
        """Connect (no-op for in-memory)."""
        self._connected = True
        logger.debug("InMemoryRecordStorage connected")

    async def close(self) -> None:
        """Close and clear all data."""
        self._connected = False
        self._records.clear()
        logger.debug("InMemoryRecordStorage closed")

    def _check_connected(self) -> None:
        if not self._connected:
            raise StorageConnectionError("In-memory storage is not connected")

    async def insert_if_absent(self, record: Record) -> bool:
        self._check_connected()
        key = (record.collection, record.identifier)
        async with self._lock:
            if key in self._records:
                return False
            self._records[key] = record.copy()
            return True

    async def get(self, collection: str, identifier: str) -> Record | None:
        self._check_connected()
        record = self._records.get((collection, identifier))
        return record.copy() if record else None

    async def replace_live(
        self,
        collection: str,
        identifier: str,
        payload: dict[str, Any],
        event_time: int,
        srv_modified: int,
    ) -> bool:
        self._check_connected()
        async with self._lock:
            record = self._records.get((collection, identifier))
            if record is None or not record.is_live:
                return False
            record.payload = copy.deepcopy(payload)
            record.event_time = event_time
            record.srv_modified = max(record.srv_modified, srv_modified)
            return True

    async def mark_deleted(self, collection: str, identifier: str, srv_modified: int) -> bool:
        self._check_connected()
        async with self._lock:
            record = self._records.get((collection, identifier))
            if record is None or not record.is_live:
                return False
            record.state = DeletionState.SOFT_DELETED
            record.srv_modified = max(record.srv_modified, srv_modified)
            return True

    async def remove(self, collection: str, identifier: str) -> bool:
        self._check_connected()
        async with self._lock:
            return self._records.pop((collection, identifier), None) is not None

    async def scan(self, collection: str, options: ScanOptions) -> list[Record]:
        self._check_connected()
        matches = [
            record
            for (name, _), record in self._records.items()
            if name == collection
            and (options.include_deleted or record.is_live)
            and (options.modified_after is None or record.srv_modified > options.modified_after)
        ]
        matches.sort(key=lambda r: (r.srv_modified, r.identifier))
        if options.limit is not None:
            matches = matches[: options.limit]
        return [record.copy() for record in matches]

    async def max_modified(self, collection: str) -> int | None:
        self._check_connected()
        stamps = [r.srv_modified for (name, _), r in self._records.items() if name == collection]
        return max(stamps) if stamps else None

    # Testing helpers

    def count(self, collection: str | None = None) -> int:
        """Number of stored records (soft-deleted included)."""
        if collection is None:
            return len(self._records)
        return sum(1 for name, _ in self._records if name == collection)
