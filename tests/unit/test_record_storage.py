"""
Unit tests for record storage engines.

Both engines run the same contract tests:
- Insert-if-absent
- Conditional replace and soft delete (LIVE only)
- Physical removal
- Scans and max_modified

SQLite-specific tests cover persistence and error translation.
"""

import tempfile

import pytest

from vstore.vstore_server.config import StorageBackend, StorageConfig
from vstore.vstore_server.storage import (
    DeletionState,
    InMemoryRecordStorage,
    Origin,
    Record,
    RecordStorage,
    ScanOptions,
    SqliteRecordStorage,
    StorageConnectionError,
    create_storage,
)


def make_record(identifier="a" * 32, collection="devicestatus", srv_modified=100, **changes):
    record = Record(
        collection=collection,
        identifier=identifier,
        payload={"device": "phone", "app": "uploader", "date": 10},
        event_time=10,
        srv_created=srv_modified,
        srv_modified=srv_modified,
    )
    return record.copy(**changes)


class TestRecordStorageContract:
    """Behavior shared by every storage engine."""

    @pytest.fixture(params=["sqlite", "memory"])
    async def storage(self, request):
        if request.param == "memory":
            storage = InMemoryRecordStorage()
            await storage.connect()
            yield storage
            await storage.close()
        else:
            with tempfile.TemporaryDirectory() as tmpdir:
                storage = SqliteRecordStorage(tmpdir, wal_mode=False)
                await storage.connect()
                yield storage
                await storage.close()

    @pytest.mark.asyncio
    async def test_protocol(self, storage):
        assert isinstance(storage, RecordStorage)
        assert storage.is_connected

    @pytest.mark.asyncio
    async def test_insert_and_get(self, storage):
        record = make_record(origin=Origin.LEGACY)
        assert await storage.insert_if_absent(record) is True
        assert await storage.get("devicestatus", record.identifier) == record

    @pytest.mark.asyncio
    async def test_insert_existing(self, storage):
        await storage.insert_if_absent(make_record())
        assert await storage.insert_if_absent(make_record(payload={"other": 1})) is False
        stored = await storage.get("devicestatus", "a" * 32)
        assert stored.payload["device"] == "phone"

    @pytest.mark.asyncio
    async def test_nested_payload_is_not_shared(self, storage):
        """Mutating nested values on a record never reaches stored state."""
        record = make_record(payload={"pump": {"battery": 1}, "tags": ["a"]})
        await storage.insert_if_absent(record)
        record.payload["pump"]["battery"] = 50

        got = await storage.get("devicestatus", record.identifier)
        got.payload["pump"]["battery"] = 99
        got.payload["tags"].append("b")

        stored = await storage.get("devicestatus", record.identifier)
        assert stored.payload == {"pump": {"battery": 1}, "tags": ["a"]}

    @pytest.mark.asyncio
    async def test_replace_live_nested_payload_is_not_shared(self, storage):
        await storage.insert_if_absent(make_record())
        payload = {"pump": {"battery": 7}}
        await storage.replace_live("devicestatus", "a" * 32, payload, 10, 200)
        payload["pump"]["battery"] = 0

        stored = await storage.get("devicestatus", "a" * 32)
        assert stored.payload["pump"] == {"battery": 7}

    @pytest.mark.asyncio
    async def test_same_identifier_in_two_collections(self, storage):
        assert await storage.insert_if_absent(make_record(collection="devicestatus"))
        assert await storage.insert_if_absent(make_record(collection="entries"))

    @pytest.mark.asyncio
    async def test_get_missing(self, storage):
        assert await storage.get("devicestatus", "missing") is None

    @pytest.mark.asyncio
    async def test_replace_live(self, storage):
        await storage.insert_if_absent(make_record())
        assert await storage.replace_live("devicestatus", "a" * 32, {"x": 1}, 20, 200)

        stored = await storage.get("devicestatus", "a" * 32)
        assert stored.payload == {"x": 1}
        assert stored.event_time == 20
        assert stored.srv_modified == 200
        assert stored.srv_created == 100

    @pytest.mark.asyncio
    async def test_srv_modified_never_goes_backwards(self, storage):
        await storage.insert_if_absent(make_record(srv_modified=500))
        await storage.replace_live("devicestatus", "a" * 32, {"x": 1}, 20, 400)
        assert (await storage.get("devicestatus", "a" * 32)).srv_modified == 500

    @pytest.mark.asyncio
    async def test_replace_requires_live(self, storage):
        assert not await storage.replace_live("devicestatus", "a" * 32, {}, 1, 1)

        await storage.insert_if_absent(make_record())
        await storage.mark_deleted("devicestatus", "a" * 32, 200)
        assert not await storage.replace_live("devicestatus", "a" * 32, {}, 1, 300)

    @pytest.mark.asyncio
    async def test_mark_deleted(self, storage):
        await storage.insert_if_absent(make_record())

        assert await storage.mark_deleted("devicestatus", "a" * 32, 200)
        assert not await storage.mark_deleted("devicestatus", "a" * 32, 300)

        stored = await storage.get("devicestatus", "a" * 32)
        assert stored.state == DeletionState.SOFT_DELETED
        assert stored.srv_modified == 200
        assert stored.payload["device"] == "phone"

    @pytest.mark.asyncio
    async def test_remove(self, storage):
        await storage.insert_if_absent(make_record())
        assert await storage.remove("devicestatus", "a" * 32)
        assert not await storage.remove("devicestatus", "a" * 32)
        assert await storage.get("devicestatus", "a" * 32) is None

    @pytest.mark.asyncio
    async def test_scan(self, storage):
        for n, modified in enumerate([300, 100, 200]):
            await storage.insert_if_absent(make_record(identifier=f"id{n}", srv_modified=modified))
        await storage.insert_if_absent(make_record(identifier="other", collection="entries"))
        await storage.mark_deleted("devicestatus", "id2", 400)

        live = await storage.scan("devicestatus", ScanOptions())
        assert [r.identifier for r in live] == ["id1", "id0"]

        everything = await storage.scan("devicestatus", ScanOptions(include_deleted=True))
        assert [r.identifier for r in everything] == ["id1", "id0", "id2"]

        recent = await storage.scan(
            "devicestatus", ScanOptions(modified_after=100, include_deleted=True, limit=1)
        )
        assert [r.identifier for r in recent] == ["id0"]

    @pytest.mark.asyncio
    async def test_max_modified(self, storage):
        assert await storage.max_modified("devicestatus") is None
        await storage.insert_if_absent(make_record(identifier="a", srv_modified=100))
        await storage.insert_if_absent(make_record(identifier="b", srv_modified=300))
        await storage.mark_deleted("devicestatus", "a", 500)
        assert await storage.max_modified("devicestatus") == 500


class TestSqliteRecordStorage:
    """SQLite-specific behavior."""

    @pytest.fixture
    def data_dir(self):
        """Create temporary data directory."""
        with tempfile.TemporaryDirectory() as tmpdir:
            yield tmpdir

    @pytest.mark.asyncio
    async def test_persists_across_instances(self, data_dir):
        first = SqliteRecordStorage(data_dir)
        await first.connect()
        await first.insert_if_absent(make_record())
        await first.close()

        second = SqliteRecordStorage(data_dir)
        await second.connect()
        assert await second.get("devicestatus", "a" * 32) == make_record()

    @pytest.mark.asyncio
    async def test_not_connected(self, data_dir):
        storage = SqliteRecordStorage(data_dir)
        with pytest.raises(StorageConnectionError):
            await storage.get("devicestatus", "a" * 32)

    @pytest.mark.asyncio
    async def test_stats(self, data_dir):
        storage = SqliteRecordStorage(data_dir, wal_mode=False)
        await storage.connect()
        await storage.insert_if_absent(make_record(identifier="a"))
        await storage.insert_if_absent(make_record(identifier="b"))
        await storage.insert_if_absent(make_record(identifier="c", collection="entries"))

        assert await storage.get_stats() == {"devicestatus": 2, "entries": 1}


class TestCreateStorage:
    """Tests for the storage factory."""

    def test_sqlite(self, tmp_path):
        storage = create_storage(StorageConfig(data_dir=str(tmp_path)))
        assert isinstance(storage, SqliteRecordStorage)

    def test_memory(self):
        storage = create_storage(StorageConfig(backend=StorageBackend.MEMORY))
        assert isinstance(storage, InMemoryRecordStorage)
