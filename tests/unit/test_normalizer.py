"""
Unit tests for document normalization.

Tests cover:
- Shape classification
- Current-format documents (identifier derivation, server field stripping)
- Legacy documents (primary key identity, created_at fallback)
"""

import pytest

from vstore.vstore_server.apply.identity import calculate_identifier
from vstore.vstore_server.apply.normalizer import (
    FromCurrentApi,
    FromLegacyApi,
    classify,
    normalize,
    parse_legacy_timestamp,
    strip_server_fields,
)
from vstore.vstore_server.errors import MalformedRecordError, ValidationError
from vstore.vstore_server.schema import CollectionDef
from vstore.vstore_server.storage import Origin

DEVICESTATUS = CollectionDef(name="devicestatus")
TREATMENTS = CollectionDef(name="treatments", extra_identity_fields=("eventType",))


class TestClassify:
    """Tests for classify."""

    def test_legacy_when_only_primary_key(self):
        incoming = classify({"_id": "65a1b2c3d4e5f60718293a4b", "device": "x"})
        assert isinstance(incoming, FromLegacyApi)
        assert incoming.primary_key == "65a1b2c3d4e5f60718293a4b"

    def test_current_when_identifier_present(self):
        incoming = classify({"_id": "abc", "identifier": "def"})
        assert isinstance(incoming, FromCurrentApi)

    def test_current_by_default(self):
        assert isinstance(classify({"device": "x"}), FromCurrentApi)


class TestNormalizeCurrent:
    """Tests for current-format documents."""

    def test_derives_identifier(self):
        doc = {"device": "phone", "app": "uploader", "date": 1700000000000}
        canonical = normalize(FromCurrentApi(doc), DEVICESTATUS)

        assert canonical.identifier == calculate_identifier(doc)
        assert canonical.event_time == 1700000000000
        assert canonical.origin == Origin.CURRENT

    def test_uses_collection_identity_fields(self):
        doc = {"device": "phone", "app": "uploader", "date": 1, "eventType": "Note"}
        canonical = normalize(FromCurrentApi(doc), TREATMENTS)
        assert canonical.identifier == calculate_identifier(doc, ("eventType",))

    def test_matching_identifier_accepted(self):
        doc = {"device": "phone", "app": "uploader", "date": 1}
        doc["identifier"] = calculate_identifier(doc)
        canonical = normalize(FromCurrentApi(doc), DEVICESTATUS)
        assert canonical.identifier == doc["identifier"]
        assert "identifier" not in canonical.payload

    def test_mismatched_identifier_rejected(self):
        doc = {"device": "phone", "app": "uploader", "date": 1, "identifier": "f" * 32}
        with pytest.raises(ValidationError) as exc_info:
            normalize(FromCurrentApi(doc), DEVICESTATUS)
        assert exc_info.value.field_name == "identifier"

    def test_server_fields_stripped(self):
        doc = {
            "device": "phone",
            "app": "uploader",
            "date": 1,
            "srvCreated": 5,
            "srvModified": 6,
            "subject": "mallory",
            "isValid": False,
            "battery": 80,
        }
        payload = normalize(FromCurrentApi(doc), DEVICESTATUS).payload
        assert payload == {"device": "phone", "app": "uploader", "date": 1, "battery": 80}

    def test_float_date_stored_as_int(self):
        doc = {"device": "phone", "app": "uploader", "date": 1700000000000.0}
        canonical = normalize(FromCurrentApi(doc), DEVICESTATUS)
        assert canonical.payload["date"] == 1700000000000
        assert isinstance(canonical.payload["date"], int)

    def test_missing_date_is_malformed(self):
        with pytest.raises(MalformedRecordError):
            normalize(FromCurrentApi({"device": "phone", "app": "uploader"}), DEVICESTATUS)

    def test_non_object_rejected(self):
        with pytest.raises(ValidationError):
            normalize(FromCurrentApi(["not", "an", "object"]), DEVICESTATUS)


class TestNormalizeLegacy:
    """Tests for legacy documents."""

    def test_primary_key_is_identifier(self):
        doc = {
            "_id": "65a1b2c3d4e5f60718293a4b",
            "device": "phone",
            "app": "uploader",
            "created_at": "2024-01-01T00:00:00.000Z",
        }
        canonical = normalize(FromLegacyApi("65a1b2c3d4e5f60718293a4b", doc), DEVICESTATUS)

        assert canonical.identifier == "65a1b2c3d4e5f60718293a4b"
        assert canonical.origin == Origin.LEGACY
        assert "_id" not in canonical.payload
        assert canonical.payload["created_at"] == "2024-01-01T00:00:00.000Z"

    def test_event_time_from_created_at(self):
        doc = {"device": "phone", "app": "uploader", "created_at": "2024-01-01T00:00:00Z"}
        canonical = normalize(FromLegacyApi("k", doc), DEVICESTATUS)
        assert canonical.event_time == 1704067200000

    def test_date_preferred_over_created_at(self):
        doc = {
            "device": "phone",
            "app": "uploader",
            "date": 1700000000000,
            "created_at": "2024-01-01T00:00:00Z",
        }
        assert normalize(FromLegacyApi("k", doc), DEVICESTATUS).event_time == 1700000000000

    def test_missing_timestamp_is_malformed(self):
        with pytest.raises(MalformedRecordError):
            normalize(FromLegacyApi("k", {"device": "phone", "app": "uploader"}), DEVICESTATUS)

    @pytest.mark.parametrize("missing", ["device", "app"])
    def test_missing_device_or_app_is_malformed(self, missing):
        doc = {"device": "phone", "app": "uploader", "created_at": "2024-01-01T00:00:00Z"}
        del doc[missing]
        with pytest.raises(MalformedRecordError):
            normalize(FromLegacyApi("k", doc), DEVICESTATUS)


class TestHelpers:
    """Tests for module helpers."""

    def test_parse_naive_timestamp_as_utc(self):
        assert parse_legacy_timestamp("2024-01-01T00:00:00") == 1704067200000

    def test_parse_offset_timestamp(self):
        assert parse_legacy_timestamp("2024-01-01T01:00:00+01:00") == 1704067200000

    def test_parse_garbage(self):
        with pytest.raises(MalformedRecordError):
            parse_legacy_timestamp("yesterday")

    def test_strip_server_fields(self):
        assert strip_server_fields({"_id": 1, "identifier": 2, "a": 3}) == {"a": 3}
