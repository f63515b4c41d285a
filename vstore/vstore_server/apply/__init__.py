"""
Apply module for VStore - the write side of the record store.

This module handles:
- Deterministic identifier derivation
- Normalization of current and legacy document shapes
- Record lifecycle transitions and server timestamps
- Scope checks for every operation
- The legacy insertion path

Invariants:
    - Creates are idempotent (same identity fields applied twice has no effect)
    - Expected outcomes are returned as WriteResult values
    - No operation runs without an explicit AccessContext

How to change safely:
    - Verify idempotency with duplicate create tests
    - Keep the identifier scheme versioned
"""

from .identity import IDENTIFIER_SCHEME_VERSION, calculate_identifier
from .legacy import LegacyCollection
from .lifecycle_store import LifecycleStore, WriteOutcome, WriteResult
from .normalizer import (
    CanonicalDocument,
    FromCurrentApi,
    FromLegacyApi,
    classify,
    normalize,
)
from .scopes import AccessContext, Grant, Scope, ScopeGuard

__all__ = [
    "IDENTIFIER_SCHEME_VERSION",
    "calculate_identifier",
    "LegacyCollection",
    "LifecycleStore",
    "WriteOutcome",
    "WriteResult",
    "CanonicalDocument",
    "FromCurrentApi",
    "FromLegacyApi",
    "classify",
    "normalize",
    "AccessContext",
    "Grant",
    "Scope",
    "ScopeGuard",
]
