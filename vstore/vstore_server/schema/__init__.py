"""
Schema module for VStore - collection definitions.

Each collection declares which payload fields take part in record identity.
"""

from .collections import (
    BUILTIN_COLLECTIONS,
    CollectionDef,
    CollectionRegistry,
    DuplicateCollectionError,
    RegistryFrozenError,
)

__all__ = [
    "BUILTIN_COLLECTIONS",
    "CollectionDef",
    "CollectionRegistry",
    "DuplicateCollectionError",
    "RegistryFrozenError",
]
