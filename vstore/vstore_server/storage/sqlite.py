"""
SQLite record storage for VStore.

This module stores all collections in one SQLite database file:
- records: payload, lifecycle state and server timestamps per identifier
- schema_version: migration tracking

Invariants:
    - (collection, identifier) is the primary key
    - Every write is a single atomic statement or an IMMEDIATE transaction
    - Soft-deleted rows stay until purged; purged rows are deleted

How to change safely:
    - Schema migrations must be backward compatible
    - Keep every mutation a compare-and-set on state so concurrent
      requests cannot resurrect deleted records
    - Monitor SQLite file size and performance

Table schema:
    records:
        - collection TEXT
        - identifier TEXT
        - origin TEXT ('current' | 'legacy')
        - state TEXT ('live' | 'soft_deleted')
        - payload_json TEXT
        - event_time INTEGER (Unix ms)
        - srv_created INTEGER (Unix ms)
        - srv_modified INTEGER (Unix ms)
        - PRIMARY KEY (collection, identifier)
"""

from __future__ import annotations

import json
import logging
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from .base import (
    DeletionState,
    Origin,
    Record,
    ScanOptions,
    StorageConnectionError,
    StorageError,
)

logger = logging.getLogger(__name__)


class SqliteRecordStorage:
    """SQLite implementation of RecordStorage.

    Thread safety:
        Each operation opens its own connection.
        SQLite handles concurrent access via WAL mode.

    Example:
        >>> storage = SqliteRecordStorage("/var/lib/vstore")
        >>> await storage.connect()
        >>> await storage.get("devicestatus", "3f2a...")
    """

    SCHEMA_VERSION = 1

    def __init__(
        self,
        data_dir: str,
        db_filename: str = "records.db",
        wal_mode: bool = True,
        busy_timeout_ms: int = 5000,
    ) -> None:
        """Initialize the store.

        Args:
            data_dir: Directory for the database file
            db_filename: Database file name
            wal_mode: Enable SQLite WAL mode
            busy_timeout_ms: SQLite busy timeout
        """
        self.data_dir = Path(data_dir)
        self.db_path = self.data_dir / db_filename
        self.wal_mode = wal_mode
        self.busy_timeout_ms = busy_timeout_ms
        self._connected = False

    @property
    def is_connected(self) -> bool:
        return self._connected

    @property
    def name(self) -> str:
        return "sqlite"

    @contextmanager
    def _get_connection(self) -> Iterator[sqlite3.Connection]:
        """Open a configured connection, translating driver errors.

        Yields:
            SQLite connection

        Raises:
            StorageConnectionError: If connect() has not been called
            StorageError: On any SQLite failure
        """
        if not self._connected:
            raise StorageConnectionError("SQLite storage is not connected")

        try:
            conn = sqlite3.connect(
                str(self.db_path),
                timeout=self.busy_timeout_ms / 1000.0,
                isolation_level=None,  # Autocommit by default, explicit transactions
            )
        except sqlite3.Error as e:
            raise StorageConnectionError(f"Cannot open {self.db_path}: {e}") from e
        conn.row_factory = sqlite3.Row

        try:
            conn.execute(f"PRAGMA busy_timeout = {self.busy_timeout_ms}")
            if self.wal_mode:
                conn.execute("PRAGMA journal_mode = WAL")
            conn.execute("PRAGMA synchronous = NORMAL")

            yield conn
        except sqlite3.Error as e:
            raise StorageError(f"SQLite operation failed: {e}") from e
        finally:
            conn.close()

    def _create_schema(self, conn: sqlite3.Connection) -> None:
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS schema_version (
                version INTEGER PRIMARY KEY,
                applied_at INTEGER NOT NULL
            );

            CREATE TABLE IF NOT EXISTS records (
                collection TEXT NOT NULL,
                identifier TEXT NOT NULL,
                origin TEXT NOT NULL DEFAULT 'current',
                state TEXT NOT NULL DEFAULT 'live',
                payload_json TEXT NOT NULL DEFAULT '{}',
                event_time INTEGER NOT NULL,
                srv_created INTEGER NOT NULL,
                srv_modified INTEGER NOT NULL,
                PRIMARY KEY (collection, identifier)
            );

            CREATE INDEX IF NOT EXISTS idx_records_modified
                ON records(collection, srv_modified);
            CREATE INDEX IF NOT EXISTS idx_records_event_time
                ON records(collection, event_time DESC);

            INSERT OR IGNORE INTO schema_version (version, applied_at)
            VALUES (1, strftime('%s', 'now') * 1000);
        """)

    async def connect(self) -> None:
        """Create the database file and schema if they don't exist."""
        self.data_dir.mkdir(parents=True, exist_ok=True)
        self._connected = True
        try:
            with self._get_connection() as conn:
                self._create_schema(conn)
        except StorageError:
            self._connected = False
            raise
        logger.info(f"Opened record database: {self.db_path}")

    async def close(self) -> None:
        self._connected = False

    @staticmethod
    def _row_to_record(row: sqlite3.Row) -> Record:
        return Record(
            collection=row["collection"],
            identifier=row["identifier"],
            payload=json.loads(row["payload_json"]),
            event_time=row["event_time"],
            srv_created=row["srv_created"],
            srv_modified=row["srv_modified"],
            state=DeletionState(row["state"]),
            origin=Origin(row["origin"]),
        )

    async def insert_if_absent(self, record: Record) -> bool:
        with self._get_connection() as conn:
            cursor = conn.execute(
                """
                INSERT INTO records (collection, identifier, origin, state, payload_json,
                                     event_time, srv_created, srv_modified)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT (collection, identifier) DO NOTHING
                """,
                (
                    record.collection,
                    record.identifier,
                    record.origin.value,
                    record.state.value,
                    json.dumps(record.payload),
                    record.event_time,
                    record.srv_created,
                    record.srv_modified,
                ),
            )
            inserted = cursor.rowcount > 0

        logger.debug(
            "Insert record",
            extra={
                "collection": record.collection,
                "identifier": record.identifier,
                "inserted": inserted,
            },
        )
        return inserted

    async def get(self, collection: str, identifier: str) -> Record | None:
        with self._get_connection() as conn:
            cursor = conn.execute(
                "SELECT * FROM records WHERE collection = ? AND identifier = ?",
                (collection, identifier),
            )
            row = cursor.fetchone()
            return self._row_to_record(row) if row else None

    async def replace_live(
        self,
        collection: str,
        identifier: str,
        payload: dict[str, Any],
        event_time: int,
        srv_modified: int,
    ) -> bool:
        with self._get_connection() as conn:
            cursor = conn.execute(
                """
                UPDATE records
                SET payload_json = ?, event_time = ?, srv_modified = MAX(srv_modified, ?)
                WHERE collection = ? AND identifier = ? AND state = 'live'
                """,
                (json.dumps(payload), event_time, srv_modified, collection, identifier),
            )
            return cursor.rowcount > 0

    async def mark_deleted(self, collection: str, identifier: str, srv_modified: int) -> bool:
        with self._get_connection() as conn:
            cursor = conn.execute(
                """
                UPDATE records
                SET state = 'soft_deleted', srv_modified = MAX(srv_modified, ?)
                WHERE collection = ? AND identifier = ? AND state = 'live'
                """,
                (srv_modified, collection, identifier),
            )
            return cursor.rowcount > 0

    async def remove(self, collection: str, identifier: str) -> bool:
        with self._get_connection() as conn:
            cursor = conn.execute(
                "DELETE FROM records WHERE collection = ? AND identifier = ?",
                (collection, identifier),
            )
            return cursor.rowcount > 0

    async def scan(self, collection: str, options: ScanOptions) -> list[Record]:
        query = "SELECT * FROM records WHERE collection = ?"
        params: list[Any] = [collection]

        if options.modified_after is not None:
            query += " AND srv_modified > ?"
            params.append(options.modified_after)
        if not options.include_deleted:
            query += " AND state = 'live'"

        query += " ORDER BY srv_modified ASC, identifier ASC"
        if options.limit is not None:
            query += " LIMIT ?"
            params.append(options.limit)

        with self._get_connection() as conn:
            cursor = conn.execute(query, params)
            return [self._row_to_record(row) for row in cursor.fetchall()]

    async def max_modified(self, collection: str) -> int | None:
        with self._get_connection() as conn:
            cursor = conn.execute(
                "SELECT MAX(srv_modified) FROM records WHERE collection = ?",
                (collection,),
            )
            row = cursor.fetchone()
            return row[0] if row else None

    async def get_stats(self) -> dict[str, int]:
        """Count stored records per collection (soft-deleted included)."""
        with self._get_connection() as conn:
            cursor = conn.execute(
                "SELECT collection, COUNT(*) FROM records GROUP BY collection"
            )
            return {row[0]: row[1] for row in cursor.fetchall()}
