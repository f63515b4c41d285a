"""
Unit tests for projection and conditional reads.

Tests cover:
- fields parameter parsing
- Full view and projection
- Read outcome for each lifecycle state and freshness marker
"""

from datetime import datetime, timezone

import pytest

from vstore.vstore_server.query import (
    ALL_FIELDS,
    ReadOutcome,
    datetime_to_ms,
    evaluate,
    full_view,
    parse_fields,
    project,
)
from vstore.vstore_server.storage import DeletionState, Origin, Record


def make_record(**changes):
    record = Record(
        collection="devicestatus",
        identifier="a" * 32,
        payload={"device": "phone", "app": "uploader", "date": 1000, "subject": "uploader"},
        event_time=1000,
        srv_created=2000,
        srv_modified=3000,
    )
    return record.copy(**changes)


class TestParseFields:
    """Tests for parse_fields."""

    @pytest.mark.parametrize("param", [None, "", "_all", "date,_all", " , "])
    def test_all_fields(self, param):
        assert parse_fields(param) is ALL_FIELDS

    def test_named_fields_in_order(self):
        assert parse_fields("date, device,date") == ("date", "device")


class TestProjection:
    """Tests for full_view and project."""

    def test_full_view_adds_server_fields(self):
        view = full_view(make_record())
        assert view["identifier"] == "a" * 32
        assert view["srvCreated"] == 2000
        assert view["srvModified"] == 3000
        assert view["device"] == "phone"

    def test_full_view_hides_internal_fields(self):
        record = make_record(
            payload={"device": "phone", "_id": "legacy", "isValid": True},
            origin=Origin.LEGACY,
        )
        view = full_view(record)
        assert "_id" not in view
        assert "isValid" not in view

    def test_project_selected_fields(self):
        projected = project(make_record(), ("date", "device", "subject"))
        assert projected == {"date": 1000, "device": "phone", "subject": "uploader"}

    def test_project_omits_unknown_fields(self):
        assert project(make_record(), ("date", "nothing")) == {"date": 1000}

    def test_project_all(self):
        assert project(make_record(), ALL_FIELDS) == full_view(make_record())


class TestEvaluate:
    """Tests for conditional read evaluation."""

    def test_absent(self):
        assert evaluate(None) == ReadOutcome.NOT_FOUND

    def test_purged(self):
        assert evaluate(make_record(state=DeletionState.PURGED)) == ReadOutcome.NOT_FOUND

    def test_soft_deleted(self):
        assert evaluate(make_record(state=DeletionState.SOFT_DELETED)) == ReadOutcome.GONE

    def test_soft_deleted_wins_over_marker(self):
        record = make_record(state=DeletionState.SOFT_DELETED)
        assert evaluate(record, if_modified_since=0) == ReadOutcome.GONE

    def test_live_without_marker(self):
        assert evaluate(make_record()) == ReadOutcome.OK

    def test_marker_after_event_time(self):
        assert evaluate(make_record(), if_modified_since=5000) == ReadOutcome.NOT_MODIFIED

    def test_marker_equal_to_event_time(self):
        assert evaluate(make_record(), if_modified_since=1000) == ReadOutcome.NOT_MODIFIED

    def test_marker_before_event_time(self):
        assert evaluate(make_record(), if_modified_since=999) == ReadOutcome.OK

    def test_freshness_uses_event_time_not_srv_modified(self):
        """A marker between event time and srvModified is still a cache hit."""
        assert evaluate(make_record(), if_modified_since=2500) == ReadOutcome.NOT_MODIFIED


class TestDatetimeToMs:
    """Tests for datetime_to_ms."""

    def test_aware(self):
        dt = datetime(2024, 1, 1, tzinfo=timezone.utc)
        assert datetime_to_ms(dt) == 1704067200000

    def test_naive_is_utc(self):
        assert datetime_to_ms(datetime(2024, 1, 1)) == 1704067200000
