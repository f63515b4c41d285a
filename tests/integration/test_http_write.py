"""
Integration tests for the HTTP write, search and sync endpoints.

Tests cover:
- Idempotent create over HTTP
- PUT (replace/create/gone), PATCH, DELETE status mapping
- Search parameters
- History with tombstones and sync headers
- lastModified, version and status
- Validation and authorization failures
"""

import email.utils

import pytest
from aiohttp.test_utils import TestClient, TestServer

from vstore.vstore_server import API_VERSION, __version__
from vstore.vstore_server.api import StaticTokenResolver, create_http_app
from vstore.vstore_server.apply import LifecycleStore, calculate_identifier
from vstore.vstore_server.config import ApiConfig
from vstore.vstore_server.schema import CollectionRegistry
from vstore.vstore_server.storage import InMemoryRecordStorage

URL = "/api/v3/treatments"

TOKENS = {
    "admin": {"subject": "admin", "permissions": ["*"]},
    "reader": {"subject": "reader", "permissions": ["api:*:read"]},
    "updater": {"subject": "updater", "permissions": ["api:treatments:read,update"]},
}


class FakeClock:
    """Millisecond clock that advances by one second per call."""

    def __init__(self, start: int = 1_700_000_000_000) -> None:
        self.now = start

    def __call__(self) -> int:
        self.now += 1000
        return self.now


def make_doc(**changes):
    doc = {
        "device": "pump-1",
        "app": "loop",
        "date": 1_690_000_000_000,
        "eventType": "Meal Bolus",
        "insulin": 2.5,
    }
    doc.update(changes)
    return doc


def identifier_of(doc):
    return calculate_identifier(doc, ("eventType",))


class TestHttpWrite:
    """Write and sync scenarios against a live application."""

    @pytest.fixture
    def clock(self):
        return FakeClock()

    @pytest.fixture
    async def client(self, clock):
        storage = InMemoryRecordStorage()
        await storage.connect()
        store = LifecycleStore(storage, CollectionRegistry.with_builtins(), clock=clock)
        app = create_http_app(
            store,
            StaticTokenResolver(TOKENS),
            api_config=ApiConfig(default_limit=3, max_limit=5),
        )
        async with TestClient(TestServer(app)) as client:
            yield client
        await storage.close()

    async def create(self, client, doc, token="admin"):
        resp = await client.post(URL, json=doc, headers={"Authorization": f"Bearer {token}"})
        assert resp.status == 201
        return resp.headers["Location"].rsplit("/", 1)[-1]

    # Create

    @pytest.mark.asyncio
    async def test_create_twice(self, client):
        """Repeating a create returns 201 without changing the record."""
        first = await self.create(client, make_doc())
        second = await self.create(client, make_doc(insulin=9))

        assert first == second == identifier_of(make_doc())
        resp = await client.get(f"{URL}/{first}?token=admin")
        assert (await resp.json())["insulin"] == 2.5

    @pytest.mark.asyncio
    async def test_create_mismatched_identifier(self, client):
        resp = await client.post(f"{URL}?token=admin", json=make_doc(identifier="f" * 32))
        assert resp.status == 400
        body = await resp.json()
        assert body["status"] == 400
        assert body["details"] == {"field": "identifier"}

    @pytest.mark.asyncio
    async def test_create_malformed(self, client):
        resp = await client.post(f"{URL}?token=admin", json={"device": "pump-1", "date": 1})
        assert resp.status == 400
        assert (await resp.json())["code"] == "MALFORMED_RECORD"

    @pytest.mark.asyncio
    async def test_create_invalid_json(self, client):
        resp = await client.post(
            f"{URL}?token=admin", data=b"{nope", headers={"Content-Type": "application/json"}
        )
        assert resp.status == 400

    @pytest.mark.asyncio
    async def test_create_body_not_utf8(self, client):
        resp = await client.post(
            f"{URL}?token=admin", data=b"\xff\xfe{", headers={"Content-Type": "application/json"}
        )
        assert resp.status == 400
        assert (await resp.json())["status"] == 400

    @pytest.mark.asyncio
    async def test_create_array_body(self, client):
        resp = await client.post(f"{URL}?token=admin", json=[make_doc()])
        assert resp.status == 400

    @pytest.mark.asyncio
    async def test_create_without_scope(self, client):
        resp = await client.post(f"{URL}?token=reader", json=make_doc())
        assert resp.status == 401

    # Update

    @pytest.mark.asyncio
    async def test_put_existing(self, client):
        identifier = await self.create(client, make_doc())

        resp = await client.put(f"{URL}/{identifier}?token=updater", json=make_doc(insulin=3))
        assert resp.status == 200

        body = await (await client.get(f"{URL}/{identifier}?token=reader")).json()
        assert body["insulin"] == 3
        assert body["subject"] == "admin"
        assert body["modifiedBy"] == "updater"

    @pytest.mark.asyncio
    async def test_put_absent_creates(self, client):
        doc = make_doc()
        resp = await client.put(f"{URL}/{identifier_of(doc)}?token=admin", json=doc)
        assert resp.status == 201

    @pytest.mark.asyncio
    async def test_put_absent_without_create_scope(self, client):
        doc = make_doc()
        resp = await client.put(f"{URL}/{identifier_of(doc)}?token=updater", json=doc)
        assert resp.status == 401

    @pytest.mark.asyncio
    async def test_put_soft_deleted(self, client):
        identifier = await self.create(client, make_doc())
        await client.delete(f"{URL}/{identifier}?token=admin")

        resp = await client.put(f"{URL}/{identifier}?token=admin", json=make_doc())
        assert resp.status == 410
        assert await resp.read() == b""

    @pytest.mark.asyncio
    async def test_put_changing_identity(self, client):
        identifier = await self.create(client, make_doc())
        resp = await client.put(
            f"{URL}/{identifier}?token=admin", json=make_doc(eventType="Correction Bolus")
        )
        assert resp.status == 400

    # Patch

    @pytest.mark.asyncio
    async def test_patch(self, client):
        identifier = await self.create(client, make_doc())

        resp = await client.patch(f"{URL}/{identifier}?token=updater", json={"notes": "pizza"})
        assert resp.status == 200

        body = await (await client.get(f"{URL}/{identifier}?token=reader")).json()
        assert body["notes"] == "pizza"
        assert body["insulin"] == 2.5

    @pytest.mark.asyncio
    async def test_patch_missing(self, client):
        resp = await client.patch(f"{URL}/{'0' * 32}?token=admin", json={"notes": "x"})
        assert resp.status == 404

    @pytest.mark.asyncio
    async def test_patch_soft_deleted(self, client):
        identifier = await self.create(client, make_doc())
        await client.delete(f"{URL}/{identifier}?token=admin")
        resp = await client.patch(f"{URL}/{identifier}?token=admin", json={"notes": "x"})
        assert resp.status == 410

    @pytest.mark.asyncio
    async def test_patch_identity_field(self, client):
        identifier = await self.create(client, make_doc())
        resp = await client.patch(f"{URL}/{identifier}?token=admin", json={"eventType": "Note"})
        assert resp.status == 400

    # Delete

    @pytest.mark.asyncio
    async def test_delete_missing(self, client):
        resp = await client.delete(f"{URL}/{'0' * 32}?token=admin")
        assert resp.status == 204

    @pytest.mark.asyncio
    async def test_delete_without_scope(self, client):
        identifier = await self.create(client, make_doc())
        resp = await client.delete(f"{URL}/{identifier}?token=updater")
        assert resp.status == 401

    # Search

    @pytest.mark.asyncio
    async def test_search_defaults(self, client):
        for n in range(5):
            await self.create(client, make_doc(date=1000 + n))

        resp = await client.get(f"{URL}?token=reader")

        assert resp.status == 200
        body = await resp.json()
        assert [doc["date"] for doc in body] == [1004, 1003, 1002]

    @pytest.mark.asyncio
    async def test_search_filters_and_fields(self, client):
        for n in range(4):
            await self.create(client, make_doc(date=1000 + n, insulin=n))

        resp = await client.get(
            f"{URL}?insulin$gte=2&sort=date&fields=date,insulin&token=reader"
        )

        assert await resp.json() == [{"date": 1002, "insulin": 2}, {"date": 1003, "insulin": 3}]

    @pytest.mark.asyncio
    async def test_search_skips_soft_deleted(self, client):
        kept = await self.create(client, make_doc(date=1))
        dropped = await self.create(client, make_doc(date=2))
        await client.delete(f"{URL}/{dropped}?token=admin")

        body = await (await client.get(f"{URL}?token=reader")).json()

        assert [doc["identifier"] for doc in body] == [kept]

    @pytest.mark.asyncio
    async def test_search_limit_capped(self, client):
        for n in range(7):
            await self.create(client, make_doc(date=n))
        body = await (await client.get(f"{URL}?limit=100&token=reader")).json()
        assert len(body) == 5

    @pytest.mark.asyncio
    async def test_search_bad_limit(self, client):
        resp = await client.get(f"{URL}?limit=abc&token=reader")
        assert resp.status == 400

    # History

    @pytest.mark.asyncio
    async def test_history_with_tombstones(self, client):
        first = await self.create(client, make_doc(date=1))
        second = await self.create(client, make_doc(date=2))
        await client.delete(f"{URL}/{first}?token=admin")

        resp = await client.get(f"{URL}/history?token=reader")

        assert resp.status == 200
        body = await resp.json()
        assert [doc["identifier"] for doc in body] == [second, first]
        assert body[0]["insulin"] == 2.5
        tombstone = body[1]
        assert tombstone["isValid"] is False
        assert set(tombstone) == {"identifier", "srvModified", "isValid"}

        newest = tombstone["srvModified"]
        assert resp.headers["ETag"] == f'W/"{newest}"'
        assert resp.headers["Last-Modified"] == email.utils.formatdate(newest / 1000, usegmt=True)

    @pytest.mark.asyncio
    async def test_history_since(self, client):
        first = await self.create(client, make_doc(date=1))
        second = await self.create(client, make_doc(date=2))
        body = await (await client.get(f"{URL}/{first}?token=reader")).json()

        resp = await client.get(f"{URL}/history/{body['srvModified']}?token=reader")

        assert [doc["identifier"] for doc in await resp.json()] == [second]

    @pytest.mark.asyncio
    async def test_history_since_header(self, client):
        await self.create(client, make_doc(date=1))
        resp = await client.get(f"{URL}/history?token=reader")
        marker = resp.headers["Last-Modified"]

        later = await client.get(f"{URL}/history?token=reader", headers={"Last-Modified": marker})

        assert later.status == 200
        assert await later.json() == []
        assert "ETag" not in later.headers

    @pytest.mark.asyncio
    async def test_history_limit(self, client):
        for n in range(4):
            await self.create(client, make_doc(date=n))
        body = await (await client.get(f"{URL}/history?limit=2&token=reader")).json()
        assert len(body) == 2

    @pytest.mark.asyncio
    async def test_history_bad_marker(self, client):
        resp = await client.get(f"{URL}/history/yesterday?token=reader")
        assert resp.status == 400

    # Server-wide endpoints

    @pytest.mark.asyncio
    async def test_last_modified(self, client, clock):
        identifier = await self.create(client, make_doc())
        record = await (await client.get(f"{URL}/{identifier}?token=reader")).json()

        resp = await client.get("/api/v3/lastModified?token=reader")

        assert resp.status == 200
        body = await resp.json()
        assert body["collections"] == {"treatments": record["srvModified"]}
        assert body["srvDate"] > record["srvModified"]

    @pytest.mark.asyncio
    async def test_last_modified_requires_token(self, client):
        resp = await client.get("/api/v3/lastModified")
        assert resp.status == 401

    @pytest.mark.asyncio
    async def test_version_without_token(self, client):
        resp = await client.get("/api/v3/version")
        assert resp.status == 200
        body = await resp.json()
        assert body["version"] == __version__
        assert body["apiVersion"] == API_VERSION
        assert body["storage"] == {"storage": "memory"}

    @pytest.mark.asyncio
    async def test_status_permissions(self, client):
        resp = await client.get("/api/v3/status?token=updater")
        body = await resp.json()
        assert body["apiPermissions"] == {"treatments": "ru"}

    @pytest.mark.asyncio
    async def test_cors_preflight(self, client):
        resp = await client.options(URL, headers={"Origin": "https://app.example"})
        assert resp.status == 200
        assert resp.headers["Access-Control-Allow-Origin"] == "https://app.example"

    @pytest.mark.asyncio
    async def test_cors_on_auth_failure(self, client):
        """Browsers can read the structured 401 body."""
        resp = await client.get(f"{URL}/{'0' * 32}", headers={"Origin": "https://app.example"})
        assert resp.status == 401
        assert resp.headers["Access-Control-Allow-Origin"] == "https://app.example"
        assert (await resp.json())["status"] == 401

    @pytest.mark.asyncio
    async def test_cors_on_validation_and_not_found(self, client):
        headers = {"Origin": "https://app.example"}
        bad = await client.post(f"{URL}?token=admin", json=[], headers=headers)
        missing = await client.get("/api/v3/food/x?token=admin", headers=headers)

        assert bad.status == 400
        assert missing.status == 404
        for resp in (bad, missing):
            assert resp.headers["Access-Control-Allow-Origin"] == "https://app.example"

