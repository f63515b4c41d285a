"""
Token resolution for the HTTP API.

Issuing and storing tokens is somebody else's job. The API only needs to
turn a presented token into an AccessContext (subject plus permissions) or
nothing. StaticTokenResolver serves that from configuration.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from ..apply.scopes import AccessContext

if TYPE_CHECKING:
    from aiohttp import web

    from ..config import AuthConfig

logger = logging.getLogger(__name__)

BEARER_PREFIX = "bearer "


@runtime_checkable
class TokenResolver(Protocol):
    """Resolves an access token to the principal it was issued to."""

    async def resolve(self, token: str) -> AccessContext | None: ...


class StaticTokenResolver:
    """Token resolver backed by a fixed token table.

    Example:
        >>> resolver = StaticTokenResolver(
        ...     {"t0k3n": {"subject": "uploader", "permissions": ["api:*:create"]}}
        ... )
        >>> (await resolver.resolve("t0k3n")).subject
        'uploader'
    """

    def __init__(self, tokens: Mapping[str, Mapping[str, Any]] | None = None) -> None:
        self._contexts: dict[str, AccessContext] = {}
        for token, entry in (tokens or {}).items():
            self.register(token, entry["subject"], entry.get("permissions", []))

    @classmethod
    def from_config(cls, config: AuthConfig) -> StaticTokenResolver:
        return cls(config.tokens)

    def register(self, token: str, subject: str, permissions: list[str]) -> AccessContext:
        """Add (or replace) a token."""
        context = AccessContext.from_permissions(subject, permissions)
        self._contexts[token] = context
        return context

    async def resolve(self, token: str) -> AccessContext | None:
        return self._contexts.get(token)


def extract_token(request: web.Request) -> str | None:
    """Read the token from `?token=` or an `Authorization: Bearer` header."""
    token = request.query.get("token")
    if token:
        return token

    header = request.headers.get("Authorization", "")
    if header.lower().startswith(BEARER_PREFIX):
        return header[len(BEARER_PREFIX) :].strip() or None
    return None
