"""
API module for VStore server.

This module provides the external interface:
- HTTP server (the v3 REST API)
- Token resolution for callers

Invariants:
    - Every endpoint except /version requires a resolved AccessContext
    - Handlers translate lifecycle results to status codes through lookup
      tables only

How to change safely:
    - Add new endpoints, don't change the status of existing ones
    - Keep unknown collections 404 before authentication
"""

from .auth import StaticTokenResolver, TokenResolver, extract_token
from .http_server import create_http_app, run_http_server

__all__ = [
    "StaticTokenResolver",
    "TokenResolver",
    "extract_token",
    "create_http_app",
    "run_http_server",
]
