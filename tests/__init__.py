"""
VStore Test Suite.

This package contains:
- unit/: Unit tests (no external dependencies)
- integration/: Integration tests (HTTP API over in-memory and SQLite storage)
"""
