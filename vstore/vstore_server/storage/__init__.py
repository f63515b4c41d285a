"""
Record storage abstraction for VStore.

This module provides a pluggable storage interface supporting:
- SQLite (single-node deployments)
- In-memory (for testing)

Invariants:
    - Creates are atomic insert-if-absent keyed by (collection, identifier)
    - Updates and soft deletes only apply to LIVE records
    - Purged records are physically gone

How to change safely:
    - New engines must implement the RecordStorage protocol
    - Verify the concurrent-create guarantee with duplicate insert tests
"""

from .base import (
    DeletionState,
    Origin,
    Record,
    RecordStorage,
    ScanOptions,
    StorageConnectionError,
    StorageError,
    create_storage,
)
from .memory import InMemoryRecordStorage
from .sqlite import SqliteRecordStorage

__all__ = [
    # Protocol and types
    "RecordStorage",
    "Record",
    "DeletionState",
    "Origin",
    "ScanOptions",
    "StorageError",
    "StorageConnectionError",
    # Factory
    "create_storage",
    # Implementations
    "SqliteRecordStorage",
    "InMemoryRecordStorage",
]
