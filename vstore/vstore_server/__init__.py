"""
VStore Server - versioned record store for device status events.

This package implements the read/write core behind the v3 HTTP API:
- Deterministic record identity derived from device, app and event time
- Record lifecycle (live -> soft-deleted -> purged) with server timestamps
- Scoped access tokens (create/read/update/delete per collection)
- Field projection and conditional reads (If-Modified-Since)

Architecture:
    ┌─────────────┐     ┌─────────────┐     ┌─────────────────┐
    │   Client    │────▶│  HTTP API   │────▶│   Scope Guard   │
    │   (SDK)     │     │  (aiohttp)  │     └────────┬────────┘
    └─────────────┘     └─────────────┘              │
                                                     ▼
                  ┌─────────────┐           ┌─────────────────┐
                  │ Normalizer  │──────────▶│ Lifecycle Store │
                  │ + Identity  │           └────────┬────────┘
                  └─────────────┘                    │
                                                     ▼
                                            ┌─────────────────┐
                                            │ RecordStorage   │
                                            │ (SQLite/memory) │
                                            └─────────────────┘

Invariants:
    - Identifiers are a pure function of identity-significant fields
    - Records created by the legacy API keep their primary key as identifier
    - srvCreated never changes, srvModified never goes backwards
    - Every core operation receives the caller's scopes explicitly

How to change safely:
    - Never change the identifier scheme without bumping its version
    - Keep the HTTP status lookup tables in sync with the result enums
"""

from ._version import API_VERSION, __version__

__all__ = ["API_VERSION", "__version__"]
