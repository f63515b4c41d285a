"""
Legacy (pre-v3) insertion path.

The old API stored documents under a storage-assigned primary key and never
derived identifiers. Those documents must keep working through the v3 read
and delete paths, addressed by their primary key. This module reproduces
just enough of the old write path for that: assign `_id` and `created_at`
the way the old API did, then store the document as a LEGACY record.

The old API assigned no server timestamps, so legacy records get
srvCreated = srvModified = their own event time.
"""

from __future__ import annotations

import logging
import os
import time
from collections.abc import Callable, Iterable, MutableMapping
from datetime import datetime, timezone
from typing import Any

from ..errors import ValidationError
from ..schema import CollectionRegistry
from ..storage import DeletionState, Record, RecordStorage
from .normalizer import FromLegacyApi, classify, normalize

logger = logging.getLogger(__name__)


def generate_legacy_id(now: Callable[[], float] = time.time) -> str:
    """Generate a 24-hex primary key laid out like a BSON ObjectId.

    4 bytes of seconds since the epoch followed by 8 random bytes.
    """
    seconds = int(now()) & 0xFFFFFFFF
    return f"{seconds:08x}{os.urandom(8).hex()}"


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


class LegacyCollection:
    """Writes documents the way the legacy API did.

    Example:
        >>> legacy = LegacyCollection(storage, registry)
        >>> doc = {"device": "phone", "app": "uploader", "created_at": "2024-01-01T00:00:00Z"}
        >>> [primary_key] = await legacy.insert("devicestatus", [doc])
        >>> doc["_id"] == primary_key
        True
    """

    def __init__(self, storage: RecordStorage, registry: CollectionRegistry) -> None:
        self.storage = storage
        self.registry = registry

    def prepare(self, collection: str, document: MutableMapping[str, Any]) -> Record:
        """Build the LEGACY record for a document, assigning `_id` and `created_at` in place.

        Raises:
            NotFoundError: Unknown collection
            ValidationError: The document carries a v3 `identifier`
            MalformedRecordError: The document lacks device, app or timestamp
        """
        definition = self.registry.get(collection)
        if "_id" not in document:
            document["_id"] = generate_legacy_id()
        if "created_at" not in document:
            document["created_at"] = _utc_now_iso()

        incoming = classify(document)
        if not isinstance(incoming, FromLegacyApi):
            raise ValidationError(
                "legacy documents cannot carry an identifier", field_name="identifier"
            )
        canonical = normalize(incoming, definition)
        return Record(
            collection=collection,
            identifier=canonical.identifier,
            payload=canonical.payload,
            event_time=canonical.event_time,
            srv_created=canonical.event_time,
            srv_modified=canonical.event_time,
            state=DeletionState.LIVE,
            origin=canonical.origin,
        )

    async def insert_one(self, collection: str, document: MutableMapping[str, Any]) -> bool:
        """Insert one document, assigning `_id` (and `created_at`) in place.

        Returns:
            True if the document was stored, False if its key already existed

        Raises:
            NotFoundError: Unknown collection
            ValidationError: The document carries a v3 `identifier`
            MalformedRecordError: The document lacks device, app or timestamp
        """
        record = self.prepare(collection, document)
        if not await self.storage.insert_if_absent(record):
            logger.warning(
                "Legacy document already stored",
                extra={"collection": collection, "identifier": record.identifier},
            )
            return False
        return True

    async def insert(
        self,
        collection: str,
        documents: Iterable[MutableMapping[str, Any]],
    ) -> list[str]:
        """Insert documents in order.

        Args:
            collection: Collection name
            documents: Legacy-shaped documents; mutated like the old driver did

        Returns:
            Primary keys of the documents, in input order, including keys
            that were already stored

        Raises:
            NotFoundError: Unknown collection
            ValidationError: A document carries a v3 `identifier`
            MalformedRecordError: A document lacks device, app or timestamp
        """
        keys: list[str] = []
        stored = 0

        for document in documents:
            if await self.insert_one(collection, document):
                stored += 1
            keys.append(str(document["_id"]))

        logger.info(
            f"Inserted {stored} of {len(keys)} legacy documents",
            extra={"collection": collection},
        )
        return keys
