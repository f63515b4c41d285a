"""
HTTP server implementation for VStore.

This module exposes the lifecycle store as the v3 REST API:

    GET    {base}/version
    GET    {base}/status
    GET    {base}/lastModified
    POST   {base}/{collection}
    GET    {base}/{collection}                      search
    GET    {base}/{collection}/history[/{since}]
    GET    {base}/{collection}/{identifier}
    PUT    {base}/{collection}/{identifier}
    PATCH  {base}/{collection}/{identifier}
    DELETE {base}/{collection}/{identifier}[?permanent=true]

Invariants:
    - Unknown collections are 404 with an empty body, before any auth check
    - Auth failures are 401 with {"status": 401, "message": ...}
    - Status codes come from the fixed lookup tables below, never from
      ad-hoc branching in handlers
    - 204/304/404/410 responses have empty bodies
    - Every response, error responses included, carries CORS headers

How to change safely:
    - Register fixed paths (history, version) before parameterized ones
    - Keep the status tables in sync with WriteResult and ReadOutcome
"""

from __future__ import annotations

import email.utils
import json
import logging
from collections.abc import Callable
from dataclasses import dataclass
from functools import partial
from typing import Any

from aiohttp import web

from .._version import API_VERSION, __version__
from ..apply.legacy import LegacyCollection
from ..apply.lifecycle_store import LifecycleStore, WriteResult
from ..apply.scopes import AccessContext, Scope
from ..config import ApiConfig, HttpConfig
from ..errors import AuthorizationError, NotFoundError, StoreError, ValidationError
from ..query import (
    ReadOutcome,
    datetime_to_ms,
    evaluate,
    parse_fields,
    parse_limit,
    parse_search_params,
    project,
)
from ..storage import Record
from .auth import TokenResolver, extract_token

logger = logging.getLogger(__name__)

READ_STATUS: dict[ReadOutcome, int] = {
    ReadOutcome.OK: 200,
    ReadOutcome.NOT_MODIFIED: 304,
    ReadOutcome.NOT_FOUND: 404,
    ReadOutcome.GONE: 410,
}

CREATE_STATUS: dict[WriteResult, int] = {
    WriteResult.CREATED: 201,
    WriteResult.ALREADY_EXISTS: 201,
}

UPDATE_STATUS: dict[WriteResult, int] = {
    WriteResult.UPDATED: 200,
    WriteResult.CREATED: 201,
    WriteResult.GONE: 410,
    WriteResult.NOT_FOUND: 404,
}

PATCH_STATUS: dict[WriteResult, int] = {
    WriteResult.UPDATED: 200,
    WriteResult.GONE: 410,
    WriteResult.NOT_FOUND: 404,
}

# Deletes never fail on a missing target
DELETE_STATUS: dict[WriteResult, int] = {
    WriteResult.DELETED: 204,
    WriteResult.NOT_FOUND: 204,
}


@dataclass
class ApiContext:
    """Everything a handler needs.

    Attributes:
        store: Lifecycle store
        resolver: Token resolver
        api: API behavior configuration
        http: HTTP configuration
        legacy: Legacy insertion path (exposed for tooling and tests)
    """

    store: LifecycleStore
    resolver: TokenResolver
    api: ApiConfig
    http: HttpConfig
    legacy: LegacyCollection | None = None


CTX_KEY = web.AppKey("ctx", ApiContext)


def create_http_app(
    store: LifecycleStore,
    resolver: TokenResolver,
    api_config: ApiConfig | None = None,
    http_config: HttpConfig | None = None,
) -> web.Application:
    """Create an HTTP application for VStore.

    Args:
        store: Lifecycle store (storage must be connected)
        resolver: Token resolver
        api_config: API behavior configuration
        http_config: HTTP server configuration

    Returns:
        aiohttp Application instance
    """
    http_config = http_config or HttpConfig()
    ctx = ApiContext(
        store=store,
        resolver=resolver,
        api=api_config or ApiConfig(),
        http=http_config,
        legacy=LegacyCollection(store.storage, store.registry),
    )
    base = http_config.base_path

    app = web.Application()
    app[CTX_KEY] = ctx

    app.router.add_get(f"{base}/version", partial(handle_version, ctx=ctx))
    app.router.add_get(f"{base}/status", partial(handle_status, ctx=ctx))
    app.router.add_get(f"{base}/lastModified", partial(handle_last_modified, ctx=ctx))
    app.router.add_get(
        f"{base}/{{collection}}/history/{{since}}", partial(handle_history, ctx=ctx)
    )
    app.router.add_get(f"{base}/{{collection}}/history", partial(handle_history, ctx=ctx))
    app.router.add_get(f"{base}/{{collection}}", partial(handle_search, ctx=ctx))
    app.router.add_post(f"{base}/{{collection}}", partial(handle_create, ctx=ctx))
    app.router.add_get(f"{base}/{{collection}}/{{identifier}}", partial(handle_read, ctx=ctx))
    app.router.add_put(f"{base}/{{collection}}/{{identifier}}", partial(handle_update, ctx=ctx))
    app.router.add_patch(f"{base}/{{collection}}/{{identifier}}", partial(handle_patch, ctx=ctx))
    app.router.add_delete(
        f"{base}/{{collection}}/{{identifier}}", partial(handle_delete, ctx=ctx)
    )

    @web.middleware
    async def cors_middleware(request: web.Request, handler: Callable) -> web.StreamResponse:
        if request.method == "OPTIONS":
            response = web.Response()
        else:
            try:
                response = await handler(request)
            except web.HTTPException as e:
                response = e

        origin = request.headers.get("Origin", "*")
        if "*" in http_config.cors_origins or origin in http_config.cors_origins:
            response.headers["Access-Control-Allow-Origin"] = origin
        response.headers["Access-Control-Allow-Methods"] = (
            "GET, POST, PUT, PATCH, DELETE, OPTIONS"
        )
        response.headers["Access-Control-Allow-Headers"] = (
            "Content-Type, Authorization, If-Modified-Since, Last-Modified"
        )

        return response

    app.middlewares.append(cors_middleware)

    @web.middleware
    async def error_middleware(request: web.Request, handler: Callable) -> web.StreamResponse:
        try:
            return await handler(request)
        except web.HTTPException:
            raise
        except NotFoundError:
            return web.Response(status=404)
        except AuthorizationError as e:
            logger.info(
                "Request not authorized",
                extra={"path": request.path, "method": request.method, "reason": e.reason},
            )
            return web.json_response(e.to_dict(), status=e.status)
        except StoreError as e:
            if e.status >= 500:
                logger.error(f"HTTP handler store error: {e}", exc_info=True)
            return web.json_response(e.to_dict(), status=e.status)
        except Exception as e:
            logger.error(f"HTTP handler error: {e}", exc_info=True)
            return web.json_response(
                {"status": 500, "message": "Internal server error", "code": "INTERNAL"},
                status=500,
            )

    # Runs inside cors_middleware so error responses carry CORS headers too.
    app.middlewares.append(error_middleware)

    return app


async def resolve_access(request: web.Request, ctx: ApiContext) -> AccessContext:
    """Resolve the caller or fail with 401.

    Raises:
        AuthorizationError: If no token was presented or it is unknown
    """
    token = extract_token(request)
    if not token:
        raise AuthorizationError("missing token")
    access = await ctx.resolver.resolve(token)
    if access is None:
        raise AuthorizationError("unknown token")
    return access


def _collection(request: web.Request, ctx: ApiContext) -> str:
    """Validate the collection path segment (404 when unknown)."""
    name = request.match_info["collection"]
    ctx.store.registry.get(name)
    return name


async def _json_object(request: web.Request) -> dict[str, Any]:
    try:
        body = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        raise ValidationError("Invalid JSON body")
    if not isinstance(body, dict):
        raise ValidationError("Request body must be a JSON object")
    return body


def _format_http_date(ms: int) -> str:
    return email.utils.formatdate(ms / 1000, usegmt=True)


def _parse_http_date(value: str) -> int:
    try:
        return datetime_to_ms(email.utils.parsedate_to_datetime(value))
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid HTTP date: {value}", field_name="Last-Modified")


def _history_item(record: Record, fields: tuple[str, ...] | None) -> dict[str, Any]:
    if not record.is_live:
        return {"identifier": record.identifier, "srvModified": record.srv_modified, "isValid": False}
    return project(record, fields)


async def handle_version(request: web.Request, ctx: ApiContext) -> web.Response:
    """Handle GET {base}/version - Server and API version (no auth)."""
    return web.json_response(
        {
            "version": __version__,
            "apiVersion": API_VERSION,
            "srvDate": ctx.store.clock(),
            "storage": {"storage": ctx.store.storage.name},
        }
    )


async def handle_status(request: web.Request, ctx: ApiContext) -> web.Response:
    """Handle GET {base}/status - Version plus the caller's permissions."""
    access = await resolve_access(request, ctx)
    guard = ctx.store.guard

    permissions = {}
    for definition in ctx.store.registry:
        letters = "".join(
            scope.value[0]
            for scope in (Scope.CREATE, Scope.READ, Scope.UPDATE, Scope.DELETE)
            if guard.allows(access, definition.name, scope)
        )
        if letters:
            permissions[definition.name] = letters

    return web.json_response(
        {
            "version": __version__,
            "apiVersion": API_VERSION,
            "srvDate": ctx.store.clock(),
            "storage": {"storage": ctx.store.storage.name},
            "apiPermissions": permissions,
        }
    )


async def handle_last_modified(request: web.Request, ctx: ApiContext) -> web.Response:
    """Handle GET {base}/lastModified - Newest srvModified per collection."""
    access = await resolve_access(request, ctx)
    stamps = await ctx.store.last_modified(access)
    return web.json_response({"srvDate": ctx.store.clock(), "collections": stamps})


async def handle_create(request: web.Request, ctx: ApiContext) -> web.Response:
    """Handle POST {base}/{collection} - Create (idempotent)."""
    collection = _collection(request, ctx)
    access = await resolve_access(request, ctx)
    document = await _json_object(request)

    outcome = await ctx.store.create(collection, document, access)

    location = f"{ctx.http.base_path}/{collection}/{outcome.identifier}"
    return web.Response(status=CREATE_STATUS[outcome.result], headers={"Location": location})


async def handle_read(request: web.Request, ctx: ApiContext) -> web.Response:
    """Handle GET {base}/{collection}/{identifier} - Conditional read."""
    collection = _collection(request, ctx)
    access = await resolve_access(request, ctx)
    identifier = request.match_info["identifier"]

    record = await ctx.store.get(collection, identifier, access)

    marker = request.if_modified_since
    outcome = evaluate(record, datetime_to_ms(marker) if marker is not None else None)
    if outcome != ReadOutcome.OK:
        return web.Response(status=READ_STATUS[outcome])

    fields = parse_fields(request.query.get("fields"))
    response = web.json_response(project(record, fields), status=READ_STATUS[outcome])
    response.headers["Last-Modified"] = _format_http_date(record.event_time)
    return response


async def handle_update(request: web.Request, ctx: ApiContext) -> web.Response:
    """Handle PUT {base}/{collection}/{identifier} - Replace or create."""
    collection = _collection(request, ctx)
    access = await resolve_access(request, ctx)
    identifier = request.match_info["identifier"]
    document = await _json_object(request)

    result = await ctx.store.update(collection, identifier, document, access)
    return web.Response(status=UPDATE_STATUS[result])


async def handle_patch(request: web.Request, ctx: ApiContext) -> web.Response:
    """Handle PATCH {base}/{collection}/{identifier} - Partial update."""
    collection = _collection(request, ctx)
    access = await resolve_access(request, ctx)
    identifier = request.match_info["identifier"]
    changes = await _json_object(request)

    result = await ctx.store.patch(collection, identifier, changes, access)
    return web.Response(status=PATCH_STATUS[result])


async def handle_delete(request: web.Request, ctx: ApiContext) -> web.Response:
    """Handle DELETE {base}/{collection}/{identifier} - Soft delete or purge."""
    collection = _collection(request, ctx)
    access = await resolve_access(request, ctx)
    identifier = request.match_info["identifier"]
    permanent = request.query.get("permanent", "false").lower() == "true"

    if permanent:
        result = await ctx.store.purge(collection, identifier, access)
    else:
        result = await ctx.store.soft_delete(collection, identifier, access)
    return web.Response(status=DELETE_STATUS[result])


async def handle_search(request: web.Request, ctx: ApiContext) -> web.Response:
    """Handle GET {base}/{collection} - Search live records."""
    collection = _collection(request, ctx)
    access = await resolve_access(request, ctx)

    query = parse_search_params(
        request.query,
        ctx.store.registry.get(collection),
        default_limit=ctx.api.default_limit,
        max_limit=ctx.api.max_limit,
    )
    records = await ctx.store.search(collection, query, access)
    return web.json_response([project(record, query.fields) for record in records])


async def handle_history(request: web.Request, ctx: ApiContext) -> web.Response:
    """Handle GET {base}/{collection}/history[/{since}] - Changes since a time."""
    collection = _collection(request, ctx)
    access = await resolve_access(request, ctx)

    raw_since = request.match_info.get("since")
    if raw_since is not None:
        try:
            since = int(raw_since)
        except ValueError:
            raise ValidationError(f"Invalid history marker: {raw_since}", field_name="since")
    elif "Last-Modified" in request.headers:
        since = _parse_http_date(request.headers["Last-Modified"])
    else:
        since = 0

    limit = parse_limit(request.query, ctx.api.default_limit, ctx.api.max_limit)
    fields = parse_fields(request.query.get("fields"))

    records = await ctx.store.history(collection, since, limit, access)
    response = web.json_response([_history_item(record, fields) for record in records])
    if records:
        newest = max(record.srv_modified for record in records)
        response.headers["Last-Modified"] = _format_http_date(newest)
        response.headers["ETag"] = f'W/"{newest}"'
    return response


async def run_http_server(app: web.Application, host: str = "0.0.0.0", port: int = 1337) -> web.AppRunner:
    """Start serving an application.

    Args:
        app: Application from create_http_app
        host: Host to bind to
        port: Port to listen on

    Returns:
        The runner; call ``await runner.cleanup()`` to stop
    """
    runner = web.AppRunner(app)
    await runner.setup()

    site = web.TCPSite(runner, host, port)
    await site.start()

    logger.info(f"HTTP server running on http://{host}:{port}")
    return runner
