"""
Access scope checking for VStore.

Token validation happens elsewhere; this module receives the resolved
principal (subject plus permission strings) and answers one question: may
this principal perform <scope> on <collection>?

Permission strings follow the Shiro-style layout used by the API:
    api:<collection>:<scope>
    - any segment may be "*"
    - a segment may list alternatives separated by commas
    - missing trailing segments mean "*" (api:devicestatus grants all scopes)
    - a bare "*" grants everything

Invariants:
    - No principal means no access, whatever the operation
    - Checks happen before any storage access
    - Scope checks never depend on record contents

How to change safely:
    - New scopes must be additive
    - Never widen an existing permission string's meaning
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from enum import Enum

from ..errors import AuthorizationError

logger = logging.getLogger(__name__)


class Scope(Enum):
    """Operation categories a token can be granted."""

    CREATE = "create"
    READ = "read"
    UPDATE = "update"
    DELETE = "delete"


WILDCARD = "*"
PERMISSION_DOMAIN = "api"


@dataclass(frozen=True)
class Grant:
    """One parsed permission string.

    Attributes:
        collections: Collection names, or ("*",)
        scopes: Scope names, or ("*",)
    """

    collections: tuple[str, ...]
    scopes: tuple[str, ...]

    @classmethod
    def parse(cls, permission: str) -> Grant:
        """Parse a permission string.

        Args:
            permission: String like "api:devicestatus:read"

        Returns:
            Parsed Grant

        Raises:
            ValueError: If the format or domain is invalid
        """
        permission = permission.strip()
        if permission == WILDCARD:
            return cls(collections=(WILDCARD,), scopes=(WILDCARD,))

        parts = permission.split(":")
        if len(parts) > 3 or not parts[0]:
            raise ValueError(f"Invalid permission format: {permission}")
        if parts[0] not in (PERMISSION_DOMAIN, WILDCARD):
            raise ValueError(f"Invalid permission domain: {parts[0]}")

        parts += [WILDCARD] * (3 - len(parts))
        collections = tuple(p.strip() for p in parts[1].split(",") if p.strip())
        scopes = tuple(p.strip() for p in parts[2].split(",") if p.strip())
        if not collections or not scopes:
            raise ValueError(f"Invalid permission format: {permission}")

        valid_scopes = {s.value for s in Scope} | {WILDCARD}
        for scope in scopes:
            if scope not in valid_scopes:
                raise ValueError(f"Invalid scope '{scope}' in permission: {permission}")

        return cls(collections=collections, scopes=scopes)

    def allows(self, collection: str, scope: Scope) -> bool:
        collection_ok = WILDCARD in self.collections or collection in self.collections
        scope_ok = WILDCARD in self.scopes or scope.value in self.scopes
        return collection_ok and scope_ok

    def __str__(self) -> str:
        return f"{PERMISSION_DOMAIN}:{','.join(self.collections)}:{','.join(self.scopes)}"


@dataclass(frozen=True)
class AccessContext:
    """The resolved caller of one request.

    Attributes:
        subject: Name of the authenticated principal
        grants: Parsed permissions
    """

    subject: str
    grants: tuple[Grant, ...] = ()

    @classmethod
    def from_permissions(cls, subject: str, permissions: Iterable[str]) -> AccessContext:
        """Build a context, skipping (and logging) unparseable permissions."""
        grants = []
        for permission in permissions:
            try:
                grants.append(Grant.parse(permission))
            except ValueError as e:
                logger.warning(f"Ignoring permission of subject {subject}: {e}")
        return cls(subject=subject, grants=tuple(grants))


class ScopeGuard:
    """Checks scopes for lifecycle operations.

    This class is stateless and thread-safe.

    Example:
        >>> guard = ScopeGuard()
        >>> access = AccessContext.from_permissions("uploader", ["api:devicestatus:create"])
        >>> guard.allows(access, "devicestatus", Scope.CREATE)
        True
        >>> guard.allows(access, "devicestatus", Scope.READ)
        False
    """

    def allows(self, access: AccessContext | None, collection: str, scope: Scope) -> bool:
        if access is None:
            return False
        return any(grant.allows(collection, scope) for grant in access.grants)

    def require(self, access: AccessContext | None, collection: str, scope: Scope) -> None:
        """Raise unless the caller holds the scope on the collection.

        Raises:
            AuthorizationError: If access is None or lacks the grant
        """
        if access is None:
            raise AuthorizationError("no principal")
        if not self.allows(access, collection, scope):
            logger.info(
                "Scope denied",
                extra={
                    "subject": access.subject,
                    "collection": collection,
                    "scope": scope.value,
                },
            )
            raise AuthorizationError(f"{access.subject} lacks {scope.value} on {collection}")
