"""
Legacy import CLI tool for VStore.

Loads newline-delimited JSON documents written by the pre-v3 API into a
record database through the legacy insertion path, so they can be read,
updated and deleted through the v3 API by their primary key.

Usage:
    vstore-legacy-import --collection devicestatus --data-dir <path> docs.ndjson

Invariants:
    - Works offline (no running server required)
    - Re-importing a document that carries its `_id` is a no-op and is not
      counted as inserted
    - documents_inserted counts rows actually written, also on failure
    - Blank lines are skipped; any other unparsable line aborts the import

How to change safely:
    - Keep the import going through LegacyCollection so stored records
      look exactly like ones the legacy API wrote
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
import time
from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from ..apply.legacy import LegacyCollection
from ..errors import StoreError
from ..schema import CollectionRegistry
from ..storage import SqliteRecordStorage

logger = logging.getLogger(__name__)


@dataclass
class ImportConfig:
    """Configuration for an import run.

    Attributes:
        collection: Target collection
        data_dir: Directory holding the record database
        db_filename: Database file name inside data_dir
        batch_size: Documents per insert call
        dry_run: If True, parse and validate only
    """

    collection: str
    data_dir: str
    db_filename: str = "records.db"
    batch_size: int = 500
    dry_run: bool = False


@dataclass
class ImportResult:
    """Result of an import run."""

    success: bool
    documents_read: int
    documents_inserted: int
    duration_ms: int
    error: str | None = None


def read_ndjson(lines: Iterable[str]) -> Iterator[dict[str, Any]]:
    """Parse NDJSON lines into documents.

    Raises:
        ValueError: If a line is not a JSON object
    """
    for number, line in enumerate(lines, start=1):
        line = line.strip()
        if not line:
            continue
        try:
            document = json.loads(line)
        except json.JSONDecodeError as e:
            raise ValueError(f"line {number}: invalid JSON ({e.msg})") from e
        if not isinstance(document, dict):
            raise ValueError(f"line {number}: expected a JSON object")
        yield document


class LegacyImportTool:
    """Imports legacy documents into a record database.

    Example:
        >>> tool = LegacyImportTool(ImportConfig("devicestatus", "/tmp/vstore"))
        >>> result = await tool.run(open("dump.ndjson"))
        >>> result.documents_inserted
        42
    """

    def __init__(self, config: ImportConfig) -> None:
        self.config = config
        self._inserted = 0

    async def run(self, lines: Iterable[str]) -> ImportResult:
        """Execute the import.

        Args:
            lines: NDJSON input lines

        Returns:
            ImportResult indicating success/failure
        """
        start_time = time.time()
        read = 0
        self._inserted = 0

        storage = SqliteRecordStorage(
            data_dir=self.config.data_dir,
            db_filename=self.config.db_filename,
        )
        try:
            registry = CollectionRegistry.with_builtins([self.config.collection])
            if not self.config.dry_run:
                await storage.connect()
            legacy = LegacyCollection(storage, registry)

            batch: list[dict[str, Any]] = []
            for document in read_ndjson(lines):
                read += 1
                batch.append(document)
                if len(batch) >= self.config.batch_size:
                    await self._flush(legacy, batch)
                    batch = []
            if batch:
                await self._flush(legacy, batch)
            inserted = self._inserted

            logger.info(
                f"Imported {inserted} of {read} legacy documents",
                extra={"collection": self.config.collection},
            )
            return ImportResult(
                success=True,
                documents_read=read,
                documents_inserted=inserted,
                duration_ms=int((time.time() - start_time) * 1000),
            )

        except (StoreError, ValueError) as e:
            logger.error(f"Legacy import failed: {e}")
            return ImportResult(
                success=False,
                documents_read=read,
                documents_inserted=self._inserted,
                duration_ms=int((time.time() - start_time) * 1000),
                error=str(e),
            )
        finally:
            await storage.close()

    async def _flush(self, legacy: LegacyCollection, batch: list[dict[str, Any]]) -> None:
        if self.config.dry_run:
            for document in batch:
                legacy.prepare(self.config.collection, document)
            return
        for document in batch:
            if await legacy.insert_one(self.config.collection, document):
                self._inserted += 1


def main() -> None:
    """CLI entry point for the legacy import tool."""
    parser = argparse.ArgumentParser(
        description="Import legacy (pre-v3) NDJSON documents into a VStore database"
    )
    parser.add_argument("input", help="NDJSON file to import, or - for stdin")
    parser.add_argument("--collection", required=True, help="Target collection")
    parser.add_argument("--data-dir", required=True, help="Directory of the record database")
    parser.add_argument("--db-filename", default="records.db", help="Database file name")
    parser.add_argument("--batch-size", type=int, default=500, help="Documents per batch")
    parser.add_argument("--dry-run", action="store_true", help="Validate without writing")
    parser.add_argument("-v", "--verbose", action="store_true", help="Verbose output")

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s - %(levelname)s - %(message)s",
    )

    config = ImportConfig(
        collection=args.collection,
        data_dir=args.data_dir,
        db_filename=args.db_filename,
        batch_size=args.batch_size,
        dry_run=args.dry_run,
    )
    tool = LegacyImportTool(config)

    if args.input == "-":
        result = asyncio.run(tool.run(sys.stdin))
    else:
        with Path(args.input).open(encoding="utf-8") as handle:
            result = asyncio.run(tool.run(handle))

    if result.success:
        print("Import completed successfully")
        print(f"  Documents read: {result.documents_read}")
        print(f"  Documents inserted: {result.documents_inserted}")
        print(f"  Duration: {result.duration_ms}ms")
        sys.exit(0)
    else:
        print(f"Import failed: {result.error}")
        sys.exit(1)


if __name__ == "__main__":
    main()
