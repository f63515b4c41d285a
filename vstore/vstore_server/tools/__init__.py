"""
CLI tools for VStore administration.

This module provides command-line tools for:
- legacy_import: Load pre-v3 documents through the legacy insertion path

Invariants:
    - Tools work offline (no running server required)
    - Operations are idempotent where possible
"""

from .legacy_import import ImportConfig, ImportResult, LegacyImportTool

__all__ = ["ImportConfig", "ImportResult", "LegacyImportTool"]
