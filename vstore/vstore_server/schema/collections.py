"""
Collection registry for VStore.

A collection is a named set of records sharing one identity rule. The
registry knows which collections exist and which payload fields, beyond
device/app/date, are identity-significant for each of them.

Invariants:
    - Collection names are unique
    - Identity fields of a collection never change once records exist
    - Registry is mutable during startup, frozen before serving

How to change safely:
    - New collections can be added at any time
    - Adding an identity field to an existing collection changes every
      identifier in it; bump IDENTIFIER_SCHEME_VERSION instead
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterable, Iterator
from dataclasses import dataclass

from ..errors import NotFoundError

logger = logging.getLogger(__name__)


class RegistryFrozenError(Exception):
    """Raised when attempting to modify a frozen registry."""

    pass


class DuplicateCollectionError(Exception):
    """Raised when a collection name is registered twice."""

    pass


@dataclass(frozen=True)
class CollectionDef:
    """Definition of one collection.

    Attributes:
        name: Collection name as used in URLs
        extra_identity_fields: Identity-significant fields besides
            device, app and date, in hashing order
        default_sort: Field searches sort on (descending) by default
    """

    name: str
    extra_identity_fields: tuple[str, ...] = ()
    default_sort: str = "date"

    @property
    def identity_fields(self) -> tuple[str, ...]:
        """All identity-significant fields in hashing order."""
        return ("device", "app", "date") + self.extra_identity_fields


BUILTIN_COLLECTIONS: tuple[CollectionDef, ...] = (
    CollectionDef(name="devicestatus"),
    CollectionDef(name="entries", extra_identity_fields=("type",)),
    CollectionDef(name="treatments", extra_identity_fields=("eventType",)),
)


class CollectionRegistry:
    """Lookup table of enabled collections.

    Example:
        >>> registry = CollectionRegistry.with_builtins(["devicestatus"])
        >>> registry.get("devicestatus").identity_fields
        ('device', 'app', 'date')
        >>> registry.get("food")
        Traceback (most recent call last):
        NotFoundError: Unknown collection: food
    """

    def __init__(self) -> None:
        self._collections: dict[str, CollectionDef] = {}
        self._frozen = False
        self._lock = threading.Lock()

    @classmethod
    def with_builtins(cls, enabled: Iterable[str] | None = None) -> CollectionRegistry:
        """Create a frozen registry holding the enabled built-in collections.

        Args:
            enabled: Names to enable (all built-ins when None)

        Raises:
            ValueError: If a name does not match any built-in collection
        """
        builtins = {c.name: c for c in BUILTIN_COLLECTIONS}
        names = list(enabled) if enabled is not None else list(builtins)

        registry = cls()
        for name in names:
            if name not in builtins:
                raise ValueError(
                    f"Unknown collection '{name}'. Must be one of: {', '.join(builtins)}"
                )
            registry.register(builtins[name])
        registry.freeze()
        return registry

    @property
    def frozen(self) -> bool:
        return self._frozen

    def register(self, collection: CollectionDef) -> None:
        """Register a collection definition.

        Raises:
            RegistryFrozenError: If registry is frozen
            DuplicateCollectionError: If the name is already registered
        """
        with self._lock:
            if self._frozen:
                raise RegistryFrozenError(
                    f"Cannot register collection '{collection.name}': registry is frozen"
                )
            if collection.name in self._collections:
                raise DuplicateCollectionError(
                    f"Collection '{collection.name}' already registered"
                )
            self._collections[collection.name] = collection
            logger.debug(
                f"Registered collection: {collection.name} "
                f"(identity={','.join(collection.identity_fields)})"
            )

    def freeze(self) -> None:
        self._frozen = True

    def get(self, name: str) -> CollectionDef:
        """Look up a collection.

        Raises:
            NotFoundError: If the collection is unknown or disabled
        """
        collection = self._collections.get(name)
        if collection is None:
            raise NotFoundError(f"Unknown collection: {name}")
        return collection

    def __contains__(self, name: object) -> bool:
        return name in self._collections

    def __iter__(self) -> Iterator[CollectionDef]:
        return iter(self._collections.values())

    def names(self) -> list[str]:
        return list(self._collections)
