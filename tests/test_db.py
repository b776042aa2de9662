"""
Unit tests for LocalEventDatabase — local base events and settings blobs.
"""

import sqlite3
from datetime import date

import pytest

from tests.conftest import make_event
from tests.conftest import make_remote
from timeline_calendar.db import SCHEMA_VERSION
from timeline_calendar.db import LocalEventDatabase
from timeline_calendar.db import event_from_json
from timeline_calendar.db import event_to_json
from timeline_calendar.models import CalendarError
from timeline_calendar.models import Count
from timeline_calendar.models import Frequency
from timeline_calendar.models import Never
from timeline_calendar.models import RecurrenceRule
from timeline_calendar.models import UntilDate
from timeline_calendar.sync.utils import remote_to_event


class TestCodec:
    @pytest.mark.parametrize(
        "end",
        [Never(), UntilDate(date(2026, 6, 30)), Count(12)],
    )
    def test_recurrence_survives_storage(self, end):
        rule = RecurrenceRule(Frequency.WEEKLY, 2, frozenset({1, 4}), end)
        event = make_event(is_recurring=True, recurrence=rule, color="#112233")
        assert event_from_json(event_to_json(event)) == event

    def test_payload_is_stable(self):
        """Keys are sorted so identical events serialise identically."""
        assert event_to_json(make_event()) == event_to_json(make_event())


class TestLocalEvents:
    def test_upsert_and_load(self, local_db):
        local_db.upsert_event(make_event("a"))
        local_db.upsert_event(make_event("b", title="Other"))
        local_db.commit()
        assert [e.id for e in local_db.load_events()] == ["a", "b"]
        assert local_db.count_events() == 2

    def test_upsert_on_conflict_updates_not_errors(self, local_db):
        """Storing the same id twice replaces the payload instead of raising."""
        local_db.upsert_event(make_event("a", title="Old"))
        local_db.upsert_event(make_event("a", title="New"))
        local_db.commit()
        assert local_db.count_events() == 1
        assert local_db.get_event("a").title == "New"

    def test_upsert_preserves_created_at(self, local_db):
        local_db.upsert_event(make_event("a"))
        local_db.commit()
        created = local_db.conn.execute(
            "SELECT created_at FROM local_events WHERE id = 'a'"
        ).fetchone()[0]
        local_db.upsert_event(make_event("a", title="Renamed"))
        local_db.commit()
        row = local_db.conn.execute(
            "SELECT created_at FROM local_events WHERE id = 'a'"
        ).fetchone()
        assert row[0] == created

    def test_remote_events_are_refused(self, local_db):
        with pytest.raises(CalendarError):
            local_db.upsert_event(remote_to_event(make_remote("abc")))

    def test_delete(self, local_db):
        local_db.upsert_event(make_event("a"))
        local_db.commit()
        assert local_db.delete_event("a")
        assert not local_db.delete_event("a")
        assert local_db.get_event("a") is None

    def test_unreadable_rows_are_skipped(self, local_db):
        local_db.conn.execute(
            "INSERT INTO local_events (id, payload, created_at, updated_at) "
            "VALUES ('bad', '{\"id\": \"bad\"}', 0, 0)"
        )
        local_db.upsert_event(make_event("good"))
        local_db.commit()
        assert [e.id for e in local_db.load_events()] == ["good"]

    def test_data_survives_reopen(self, db_path):
        with LocalEventDatabase(db_path) as db:
            db.upsert_event(make_event("a"))
            db.commit()
        with LocalEventDatabase(db_path) as db:
            assert db.get_event("a") == make_event("a")


class TestSettingsBlobs:
    def test_round_trip(self, local_db):
        local_db.put_settings_blob("u1", {"currentView": "month", "theme": "dark"})
        local_db.commit()
        assert local_db.get_settings_blob("u1") == {"currentView": "month", "theme": "dark"}

    def test_missing_blob(self, local_db):
        assert local_db.get_settings_blob("nobody") is None


class TestSchemaVersion:
    def test_version_is_stamped(self, local_db):
        version = local_db.conn.execute("PRAGMA user_version").fetchone()[0]
        assert version == SCHEMA_VERSION

    def test_newer_schema_is_rejected(self, db_path):
        conn = sqlite3.connect(str(db_path))
        conn.execute(f"PRAGMA user_version = {SCHEMA_VERSION + 1}")
        conn.commit()
        conn.close()
        with pytest.raises(CalendarError):
            LocalEventDatabase(db_path).connect()
