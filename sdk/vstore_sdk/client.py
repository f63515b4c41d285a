"""
HTTP client for the VStore v3 API.

Wraps the REST endpoints in coroutine methods and turns non-success
statuses into typed exceptions from vstore_sdk.errors.

Invariants:
    - The token is sent as an Authorization bearer header, never in URLs
    - 304/404/410 always raise; callers never inspect raw status codes
    - A create returns the server-assigned identifier from Location

Example:
    >>> async with VStoreClient("http://localhost:1337", token="t0k3n") as db:
    ...     identifier = await db.create("devicestatus", {"device": "phone",
    ...                                                   "app": "uploader",
    ...                                                   "date": 1700000000000})
    ...     record = await db.get("devicestatus", identifier)
"""

from __future__ import annotations

import email.utils
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

import httpx

from .errors import (
    AuthorizationError,
    ConnectionError,
    GoneError,
    NotFoundError,
    NotModifiedError,
    ValidationError,
    VStoreError,
)

DEFAULT_BASE_PATH = "/api/v3"


def _http_date(value: Union[datetime, int]) -> str:
    if isinstance(value, int):
        value = datetime.fromtimestamp(value / 1000, tz=timezone.utc)
    elif value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return email.utils.format_datetime(value.astimezone(timezone.utc), usegmt=True)


class VStoreClient:
    """Client for a VStore server.

    Args:
        base_url: Server URL, e.g. http://localhost:1337
        token: Access token
        base_path: API prefix on the server
        timeout: Request timeout in seconds
        transport: Optional httpx transport (tests pass a MockTransport)
    """

    def __init__(
        self,
        base_url: str,
        token: Optional[str] = None,
        *,
        base_path: str = DEFAULT_BASE_PATH,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.base_path = base_path.rstrip("/")
        self._token = token
        self._timeout = timeout
        self._transport = transport
        self._http: Optional[httpx.AsyncClient] = None

    async def connect(self) -> None:
        """Open the underlying HTTP connection pool."""
        if self._http is not None:
            return
        headers = {"Accept": "application/json"}
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        self._http = httpx.AsyncClient(
            base_url=self.base_url,
            headers=headers,
            timeout=self._timeout,
            transport=self._transport,
        )

    async def close(self) -> None:
        """Close the connection pool."""
        if self._http is not None:
            await self._http.aclose()
            self._http = None

    async def __aenter__(self) -> VStoreClient:
        await self.connect()
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        await self.connect()
        assert self._http is not None
        try:
            return await self._http.request(method, f"{self.base_path}{path}", **kwargs)
        except httpx.TransportError as e:
            raise ConnectionError(f"Request failed: {e}", address=self.base_url) from e

    @staticmethod
    def _raise_for_status(
        response: httpx.Response,
        collection: str,
        identifier: Optional[str] = None,
    ) -> None:
        status = response.status_code
        if status < 300:
            return
        if status == 304:
            raise NotModifiedError(collection, identifier or "")
        if status == 404:
            raise NotFoundError(collection, identifier)
        if status == 410:
            raise GoneError(collection, identifier or "")

        try:
            body = response.json()
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {}
        message = body.get("message", response.reason_phrase)

        if status == 401:
            raise AuthorizationError(message)
        if status == 400:
            raise ValidationError(message, code=body.get("code"))
        raise VStoreError(message or f"HTTP {status}", code=body.get("code"), status=status)

    async def version(self) -> Dict[str, Any]:
        """Server and API version (no token needed)."""
        response = await self._request("GET", "/version")
        self._raise_for_status(response, "version")
        return response.json()

    async def last_modified(self) -> Dict[str, int]:
        """Newest srvModified per readable collection."""
        response = await self._request("GET", "/lastModified")
        self._raise_for_status(response, "lastModified")
        return response.json()["collections"]

    async def create(self, collection: str, document: Mapping[str, Any]) -> str:
        """Create a record; creating an existing one succeeds without change.

        Returns:
            The record's identifier
        """
        response = await self._request("POST", f"/{collection}", json=dict(document))
        self._raise_for_status(response, collection)
        return response.headers["Location"].rsplit("/", 1)[-1]

    async def get(
        self,
        collection: str,
        identifier: str,
        *,
        if_modified_since: Optional[Union[datetime, int]] = None,
        fields: Optional[Sequence[str]] = None,
    ) -> Dict[str, Any]:
        """Read one record.

        Args:
            collection: Collection name
            identifier: Record identifier (or legacy primary key)
            if_modified_since: Only return the record if its event time is
                newer (datetime, or Unix milliseconds)
            fields: Fields to return (all when None)

        Raises:
            NotModifiedError: The record is not newer than if_modified_since
            NotFoundError: No such record
            GoneError: The record was deleted
        """
        headers = {}
        if if_modified_since is not None:
            headers["If-Modified-Since"] = _http_date(if_modified_since)
        params = {"fields": ",".join(fields)} if fields else None

        response = await self._request(
            "GET", f"/{collection}/{identifier}", headers=headers, params=params
        )
        self._raise_for_status(response, collection, identifier)
        return response.json()

    async def update(
        self, collection: str, identifier: str, document: Mapping[str, Any]
    ) -> bool:
        """Replace a record, creating it when absent.

        Returns:
            True if the record was created, False if it was replaced
        """
        response = await self._request(
            "PUT", f"/{collection}/{identifier}", json=dict(document)
        )
        self._raise_for_status(response, collection, identifier)
        return response.status_code == 201

    async def patch(
        self, collection: str, identifier: str, changes: Mapping[str, Any]
    ) -> None:
        """Merge changes into a record."""
        response = await self._request(
            "PATCH", f"/{collection}/{identifier}", json=dict(changes)
        )
        self._raise_for_status(response, collection, identifier)

    async def delete(self, collection: str, identifier: str, *, permanent: bool = False) -> None:
        """Delete a record (soft unless permanent). Missing records are not an error."""
        params = {"permanent": "true"} if permanent else None
        response = await self._request(
            "DELETE", f"/{collection}/{identifier}", params=params
        )
        self._raise_for_status(response, collection, identifier)

    async def search(
        self,
        collection: str,
        filters: Optional[Mapping[str, Any]] = None,
        *,
        limit: Optional[int] = None,
        skip: Optional[int] = None,
        sort: Optional[str] = None,
        sort_desc: Optional[str] = None,
        fields: Optional[Sequence[str]] = None,
    ) -> List[Dict[str, Any]]:
        """Search live records.

        Args:
            collection: Collection name
            filters: Query filters, e.g. {"app": "uploader", "date$gte": 1700000000000}
            limit: Page size
            skip: Records to skip
            sort: Ascending sort field
            sort_desc: Descending sort field
            fields: Fields to return (all when None)
        """
        params: Dict[str, Any] = {}
        for key, value in (filters or {}).items():
            if isinstance(value, bool):
                value = "true" if value else "false"
            elif isinstance(value, (list, tuple)):
                value = "|".join(str(v) for v in value)
            params[key] = str(value)
        if limit is not None:
            params["limit"] = str(limit)
        if skip is not None:
            params["skip"] = str(skip)
        if sort is not None:
            params["sort"] = sort
        if sort_desc is not None:
            params["sort$desc"] = sort_desc
        if fields:
            params["fields"] = ",".join(fields)

        response = await self._request("GET", f"/{collection}", params=params)
        self._raise_for_status(response, collection)
        return response.json()

    async def history(
        self, collection: str, since: int = 0, *, limit: Optional[int] = None
    ) -> List[Dict[str, Any]]:
        """Records changed after `since` (Unix ms), deletions included.

        Deleted records come back as {"identifier", "srvModified", "isValid": False}.
        """
        params = {"limit": str(limit)} if limit is not None else None
        response = await self._request("GET", f"/{collection}/history/{since}", params=params)
        self._raise_for_status(response, collection)
        return response.json()
