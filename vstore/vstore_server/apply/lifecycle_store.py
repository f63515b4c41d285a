"""
Record lifecycle management for VStore.

The lifecycle store owns every state transition of a record:

    (absent) ──create──▶ LIVE ──soft_delete──▶ SOFT_DELETED
                          │  ▲                      │
                          │  └─update/patch         │
                          └───────purge────▶ PURGED ◀┘

and the server timestamps that go with them. It is the only writer of
srvCreated/srvModified and of the `subject`/`modifiedBy` fields.

Invariants:
    - srvCreated is set once; srvModified never goes backwards
    - Creating an identifier that is LIVE or SOFT_DELETED changes nothing
      and still succeeds; a purged identifier is free for a fresh create
    - Nothing leaves PURGED
    - Expected outcomes are WriteResult values, never exceptions
    - Every operation checks the caller's scope before touching storage

How to change safely:
    - Keep each transition a single conditional storage call so concurrent
      requests resolve without in-process locks
    - Add new results to WriteResult together with their HTTP mapping
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any

from ..errors import AuthorizationError, ValidationError
from ..query.search import SearchQuery, run_search
from ..schema import CollectionDef, CollectionRegistry
from ..storage import DeletionState, Origin, Record, RecordStorage, ScanOptions
from .normalizer import (
    SERVER_FIELDS,
    CanonicalDocument,
    FromCurrentApi,
    FromLegacyApi,
    normalize,
    strip_server_fields,
)
from .scopes import AccessContext, Scope, ScopeGuard

logger = logging.getLogger(__name__)

Clock = Callable[[], int]


def system_clock() -> int:
    """Current time in Unix milliseconds."""
    return int(time.time() * 1000)


class WriteResult(Enum):
    """Outcome of a lifecycle operation."""

    CREATED = "created"
    ALREADY_EXISTS = "already_exists"
    UPDATED = "updated"
    DELETED = "deleted"
    GONE = "gone"
    NOT_FOUND = "not_found"


@dataclass(frozen=True)
class WriteOutcome:
    """Result of a write plus the identifier it applied to."""

    result: WriteResult
    identifier: str


class LifecycleStore:
    """Lifecycle operations over a RecordStorage.

    Example:
        >>> store = LifecycleStore(storage, CollectionRegistry.with_builtins())
        >>> access = AccessContext.from_permissions("uploader", ["api:*:*"])
        >>> outcome = await store.create("devicestatus", doc, access)
        >>> outcome.result
        <WriteResult.CREATED: 'created'>
    """

    def __init__(
        self,
        storage: RecordStorage,
        registry: CollectionRegistry,
        guard: ScopeGuard | None = None,
        clock: Clock | None = None,
    ) -> None:
        """Initialize the lifecycle store.

        Args:
            storage: Storage engine (must be connected before use)
            registry: Enabled collections
            guard: Scope guard (a default one if not provided)
            clock: Millisecond clock (system time if not provided)
        """
        self.storage = storage
        self.registry = registry
        self.guard = guard or ScopeGuard()
        self.clock = clock or system_clock

    def _authorize(
        self, collection: str, access: AccessContext | None, scope: Scope
    ) -> CollectionDef:
        definition = self.registry.get(collection)
        self.guard.require(access, collection, scope)
        return definition

    async def create(
        self,
        collection: str,
        document: Mapping[str, Any],
        access: AccessContext | None,
    ) -> WriteOutcome:
        """Create a record from a current-format document.

        Returns:
            CREATED, or ALREADY_EXISTS when the identifier is LIVE or
            SOFT_DELETED (nothing is modified in that case)

        Raises:
            NotFoundError: Unknown collection
            AuthorizationError: Caller lacks create scope
            ValidationError: Missing identity fields or identifier mismatch
        """
        definition = self._authorize(collection, access, Scope.CREATE)
        canonical = normalize(FromCurrentApi(document), definition)
        return await self._insert(collection, canonical, access.subject)

    async def _insert(
        self, collection: str, canonical: CanonicalDocument, subject: str
    ) -> WriteOutcome:
        now = self.clock()
        payload = dict(canonical.payload)
        payload["subject"] = subject

        record = Record(
            collection=collection,
            identifier=canonical.identifier,
            payload=payload,
            event_time=canonical.event_time,
            srv_created=now,
            srv_modified=now,
            state=DeletionState.LIVE,
            origin=canonical.origin,
        )
        inserted = await self.storage.insert_if_absent(record)
        result = WriteResult.CREATED if inserted else WriteResult.ALREADY_EXISTS

        logger.info(
            "Create record",
            extra={
                "collection": collection,
                "identifier": canonical.identifier,
                "result": result.value,
                "subject": subject,
            },
        )
        return WriteOutcome(result=result, identifier=canonical.identifier)

    async def get(
        self,
        collection: str,
        identifier: str,
        access: AccessContext | None,
    ) -> Record | None:
        """Fetch a record in any state; None when absent or purged.

        Visibility of soft-deleted records is the caller's decision.
        """
        self._authorize(collection, access, Scope.READ)
        return await self.storage.get(collection, identifier)

    async def update(
        self,
        collection: str,
        identifier: str,
        document: Mapping[str, Any],
        access: AccessContext | None,
    ) -> WriteResult:
        """Replace a record's payload, or create it when absent.

        srvCreated and subject are kept; modifiedBy is set to the caller.
        Identity fields of current-format records cannot change.

        Returns:
            UPDATED, CREATED, GONE (soft-deleted) or NOT_FOUND (purged
            while the update was in flight)
        """
        definition = self._authorize(collection, access, Scope.UPDATE)
        existing = await self.storage.get(collection, identifier)

        if existing is None:
            self.guard.require(access, collection, Scope.CREATE)
            canonical = normalize(FromCurrentApi(document), definition)
            if canonical.identifier != identifier:
                raise ValidationError(
                    "identifier does not match the record's identity fields",
                    field_name="identifier",
                )
            outcome = await self._insert(collection, canonical, access.subject)
            if outcome.result == WriteResult.CREATED:
                return WriteResult.CREATED
            # Lost a race against a concurrent create: update what won
            existing = await self.storage.get(collection, identifier)
            if existing is None:
                return WriteResult.NOT_FOUND

        if existing.state == DeletionState.SOFT_DELETED:
            return WriteResult.GONE

        if existing.origin == Origin.LEGACY:
            canonical = normalize(
                FromLegacyApi(primary_key=identifier, document=strip_server_fields(document)),
                definition,
            )
        else:
            canonical = normalize(FromCurrentApi(document), definition)
            if canonical.identifier != identifier:
                raise ValidationError(
                    "identity fields of an existing record cannot change",
                    field_name="identifier",
                )

        payload = dict(canonical.payload)
        if "subject" in existing.payload:
            payload["subject"] = existing.payload["subject"]
        payload["modifiedBy"] = access.subject

        return await self._replace(existing, payload, canonical.event_time, access.subject)

    async def patch(
        self,
        collection: str,
        identifier: str,
        changes: Mapping[str, Any],
        access: AccessContext | None,
    ) -> WriteResult:
        """Merge changes into a LIVE record.

        Returns:
            UPDATED, NOT_FOUND or GONE

        Raises:
            ValidationError: When a server-managed or identity field would change
        """
        definition = self._authorize(collection, access, Scope.UPDATE)
        if not isinstance(changes, Mapping):
            raise ValidationError("patch must be a JSON object")

        existing = await self.storage.get(collection, identifier)
        if existing is None:
            return WriteResult.NOT_FOUND
        if existing.state == DeletionState.SOFT_DELETED:
            return WriteResult.GONE

        current_view = dict(existing.payload)
        current_view["identifier"] = existing.identifier
        current_view["srvCreated"] = existing.srv_created
        current_view["srvModified"] = existing.srv_modified

        protected = set(SERVER_FIELDS)
        if existing.origin == Origin.CURRENT:
            protected |= set(definition.identity_fields)
        for name, value in changes.items():
            if name in protected and current_view.get(name) != value:
                raise ValidationError(f"field '{name}' cannot be modified", field_name=name)

        merged = dict(existing.payload)
        merged.update(strip_server_fields(changes))
        merged["modifiedBy"] = access.subject

        event_time = existing.event_time
        if existing.origin == Origin.LEGACY:
            event_time = normalize(
                FromLegacyApi(primary_key=identifier, document=merged), definition
            ).event_time

        return await self._replace(existing, merged, event_time, access.subject)

    async def _replace(
        self,
        existing: Record,
        payload: dict[str, Any],
        event_time: int,
        subject: str,
    ) -> WriteResult:
        replaced = await self.storage.replace_live(
            existing.collection,
            existing.identifier,
            payload,
            event_time,
            self.clock(),
        )
        if replaced:
            result = WriteResult.UPDATED
        else:
            # Deleted between our read and the conditional write
            current = await self.storage.get(existing.collection, existing.identifier)
            result = WriteResult.NOT_FOUND if current is None else WriteResult.GONE

        logger.info(
            "Update record",
            extra={
                "collection": existing.collection,
                "identifier": existing.identifier,
                "result": result.value,
                "subject": subject,
            },
        )
        return result

    async def soft_delete(
        self,
        collection: str,
        identifier: str,
        access: AccessContext | None,
    ) -> WriteResult:
        """Mark a record deleted while keeping its payload.

        Returns:
            DELETED (also when already soft-deleted) or NOT_FOUND
        """
        self._authorize(collection, access, Scope.DELETE)

        if await self.storage.mark_deleted(collection, identifier, self.clock()):
            result = WriteResult.DELETED
        else:
            existing = await self.storage.get(collection, identifier)
            result = WriteResult.NOT_FOUND if existing is None else WriteResult.DELETED

        logger.info(
            "Soft delete record",
            extra={
                "collection": collection,
                "identifier": identifier,
                "result": result.value,
                "subject": access.subject,
            },
        )
        return result

    async def purge(
        self,
        collection: str,
        identifier: str,
        access: AccessContext | None,
    ) -> WriteResult:
        """Physically remove a record in any state.

        Returns:
            DELETED or NOT_FOUND; callers treat both as success
        """
        self._authorize(collection, access, Scope.DELETE)
        removed = await self.storage.remove(collection, identifier)
        result = WriteResult.DELETED if removed else WriteResult.NOT_FOUND

        logger.info(
            "Purge record",
            extra={
                "collection": collection,
                "identifier": identifier,
                "result": result.value,
                "subject": access.subject,
            },
        )
        return result

    async def search(
        self,
        collection: str,
        query: SearchQuery,
        access: AccessContext | None,
    ) -> list[Record]:
        """LIVE records matching a query, sorted and paged."""
        self._authorize(collection, access, Scope.READ)
        candidates = await self.storage.scan(collection, ScanOptions(include_deleted=False))
        return run_search(candidates, query)

    async def history(
        self,
        collection: str,
        since: int,
        limit: int,
        access: AccessContext | None,
    ) -> list[Record]:
        """Records (soft-deleted included) modified strictly after `since`.

        Returns:
            Records in ascending srvModified order
        """
        self._authorize(collection, access, Scope.READ)
        return await self.storage.scan(
            collection,
            ScanOptions(modified_after=since, include_deleted=True, limit=limit),
        )

    async def last_modified(self, access: AccessContext | None) -> dict[str, int]:
        """Newest srvModified of every collection the caller may read."""
        if access is None:
            raise AuthorizationError("no principal")

        stamps: dict[str, int] = {}
        for definition in self.registry:
            if not self.guard.allows(access, definition.name, Scope.READ):
                continue
            newest = await self.storage.max_modified(definition.name)
            if newest is not None:
                stamps[definition.name] = newest
        return stamps
