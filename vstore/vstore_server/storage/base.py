"""
Base protocol and types for the record storage abstraction.

The storage engine is an external collaborator. This module pins down the
narrow interface the lifecycle store needs from it: key lookup, range scan,
atomic insert-if-absent and conditional updates keyed by identifier.

Invariants:
    - (collection, identifier) is unique among stored records
    - insert_if_absent is atomic: of two concurrent inserts for one key,
      exactly one returns True
    - Conditional updates only touch records that are still LIVE
    - Purged records are physically removed

How to change safely:
    - Protocol changes require updating all implementations
    - Add new methods as optional with default implementations
"""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass, replace
from enum import Enum
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from ..errors import StorageError

if TYPE_CHECKING:
    from ..config import StorageConfig

logger = logging.getLogger(__name__)


class DeletionState(Enum):
    """Lifecycle state of a record.

    PURGED never appears in storage; it exists for lifecycle reasoning only.
    """

    LIVE = "live"
    SOFT_DELETED = "soft_deleted"
    PURGED = "purged"


class Origin(Enum):
    """Which ingestion path produced a record."""

    CURRENT = "current"
    LEGACY = "legacy"


@dataclass
class Record:
    """A stored record.

    Attributes:
        collection: Collection name
        identifier: Derived identifier, or the legacy primary key
        payload: Field values (including subject)
        event_time: Logical event time (Unix ms)
        srv_created: Server creation timestamp (Unix ms)
        srv_modified: Server modification timestamp (Unix ms)
        state: Deletion state
        origin: Ingestion path
    """

    collection: str
    identifier: str
    payload: dict[str, Any]
    event_time: int
    srv_created: int
    srv_modified: int
    state: DeletionState = DeletionState.LIVE
    origin: Origin = Origin.CURRENT

    @property
    def is_live(self) -> bool:
        return self.state == DeletionState.LIVE

    def copy(self, **changes: Any) -> Record:
        """Return a copy whose payload shares nothing with this one."""
        changes.setdefault("payload", copy.deepcopy(self.payload))
        return replace(self, **changes)


@dataclass
class ScanOptions:
    """Range scan parameters.

    Attributes:
        modified_after: Only records with srv_modified strictly greater
        include_deleted: Whether soft-deleted records are returned
        limit: Maximum records to return (None for all)
    """

    modified_after: int | None = None
    include_deleted: bool = False
    limit: int | None = None


class StorageConnectionError(StorageError):
    """Storage engine is not connected or unreachable."""

    pass


@runtime_checkable
class RecordStorage(Protocol):
    """Protocol every storage engine implements.

    All methods are coroutines; engines backed by blocking I/O are expected
    to keep each call short (one statement or one transaction).
    """

    @property
    def is_connected(self) -> bool: ...

    @property
    def name(self) -> str: ...

    async def connect(self) -> None: ...

    async def close(self) -> None: ...

    async def insert_if_absent(self, record: Record) -> bool:
        """Insert unless the key exists. Returns True when inserted."""
        ...

    async def get(self, collection: str, identifier: str) -> Record | None:
        """Fetch a record in any stored state."""
        ...

    async def replace_live(
        self,
        collection: str,
        identifier: str,
        payload: dict[str, Any],
        event_time: int,
        srv_modified: int,
    ) -> bool:
        """Replace payload of a LIVE record. Returns False if not LIVE/absent."""
        ...

    async def mark_deleted(self, collection: str, identifier: str, srv_modified: int) -> bool:
        """Move a LIVE record to SOFT_DELETED. Returns False if not LIVE/absent."""
        ...

    async def remove(self, collection: str, identifier: str) -> bool:
        """Physically remove a record. Returns True if one was removed."""
        ...

    async def scan(self, collection: str, options: ScanOptions) -> list[Record]:
        """Range scan ordered by srv_modified ascending."""
        ...

    async def max_modified(self, collection: str) -> int | None:
        """Newest srv_modified in a collection, including soft-deleted."""
        ...


def create_storage(config: StorageConfig) -> RecordStorage:
    """Create a storage engine from configuration.

    Args:
        config: Storage configuration

    Returns:
        Unconnected storage engine
    """
    from ..config import StorageBackend

    if config.backend == StorageBackend.SQLITE:
        from .sqlite import SqliteRecordStorage

        return SqliteRecordStorage(
            data_dir=config.data_dir,
            db_filename=config.db_filename,
            wal_mode=config.wal_mode,
            busy_timeout_ms=config.busy_timeout_ms,
        )
    if config.backend == StorageBackend.MEMORY:
        from .memory import InMemoryRecordStorage

        logger.warning("Using in-memory record storage; data is lost on exit")
        return InMemoryRecordStorage()

    raise ValueError(f"Unsupported storage backend: {config.backend}")
