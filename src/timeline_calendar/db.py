"""
SQLite persistence for locally authored events and settings blobs.

Only base events are stored; occurrences of a recurring series are
regenerated by the recurrence expander when the store is loaded.
"""

import json
import logging
import sqlite3
import time
from datetime import date
from pathlib import Path
from typing import Any

from timeline_calendar.models import CalendarError
from timeline_calendar.models import Count
from timeline_calendar.models import Event
from timeline_calendar.models import LocalSource
from timeline_calendar.models import Never
from timeline_calendar.models import RecurrenceRule
from timeline_calendar.models import UntilDate

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1


# ---------------------------------------------------------------------------
# JSON codec for local events
# ---------------------------------------------------------------------------


def _rule_to_dict(rule: RecurrenceRule) -> dict[str, Any]:
    data: dict[str, Any] = {
        "frequency": rule.frequency.value,
        "interval": rule.interval,
        "days_of_week": sorted(rule.days_of_week),
    }
    if isinstance(rule.end, UntilDate):
        data["end"] = {"type": "date", "until": rule.end.until.isoformat()}
    elif isinstance(rule.end, Count):
        data["end"] = {"type": "count", "count": rule.end.count}
    else:
        data["end"] = {"type": "never"}
    return data


def _rule_from_dict(data: dict[str, Any]) -> RecurrenceRule:
    end_data = data.get("end") or {}
    end_type = end_data.get("type", "never")
    if end_type == "date":
        end = UntilDate(date.fromisoformat(end_data["until"]))
    elif end_type == "count":
        end = Count(int(end_data["count"]))
    else:
        end = Never()
    return RecurrenceRule(
        data["frequency"],
        int(data.get("interval", 1)),
        frozenset(data.get("days_of_week") or ()),
        end,
    )


def event_to_json(event: Event) -> str:
    data = {
        "id": event.id,
        "title": event.title,
        "start": event.start.isoformat(),
        "end": event.end.isoformat(),
        "start_time": event.start_time,
        "end_time": event.end_time,
        "is_all_day": event.is_all_day,
        "is_multi_day": event.is_multi_day,
        "color": event.color,
        "description": event.description,
        "location": event.location,
        "is_recurring": event.is_recurring,
        "recurrence": _rule_to_dict(event.recurrence) if event.recurrence else None,
    }
    return json.dumps(data, sort_keys=True)


def event_from_json(payload: str) -> Event:
    data = json.loads(payload)
    recurrence = data.get("recurrence")
    return Event(
        id=data["id"],
        title=data["title"],
        start=date.fromisoformat(data["start"]),
        end=date.fromisoformat(data["end"]),
        start_time=data["start_time"],
        end_time=data["end_time"],
        is_all_day=data["is_all_day"],
        is_multi_day=data["is_multi_day"],
        color=data["color"],
        description=data.get("description", ""),
        location=data.get("location", ""),
        source=LocalSource(),
        is_recurring=data.get("is_recurring", False),
        recurrence=_rule_from_dict(recurrence) if recurrence else None,
    )


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------


class LocalEventDatabase:
    """Manages the SQLite database holding local events and settings."""

    def __init__(self, db_path: Path):
        self.db_path = db_path
        self.conn: sqlite3.Connection | None = None

    def __enter__(self):
        self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def connect(self):
        """Initialize and connect to the database."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.conn = sqlite3.connect(str(self.db_path))
        self.conn.row_factory = sqlite3.Row  # Enable column access by name
        self._init_schema()

    def _init_schema(self):
        self.conn.executescript("""
            CREATE TABLE IF NOT EXISTS local_events (
                id TEXT PRIMARY KEY,
                payload TEXT NOT NULL,
                created_at INTEGER NOT NULL,
                updated_at INTEGER NOT NULL
            );
            CREATE TABLE IF NOT EXISTS settings (
                user_key TEXT PRIMARY KEY,
                payload TEXT NOT NULL,
                updated_at INTEGER NOT NULL
            );
        """)
        version = self.conn.execute("PRAGMA user_version").fetchone()[0]
        if version > SCHEMA_VERSION:
            raise CalendarError(
                f"Database {self.db_path} has schema version {version}; "
                f"this build understands up to {SCHEMA_VERSION}."
            )
        if version < SCHEMA_VERSION:
            self.conn.execute(f"PRAGMA user_version = {SCHEMA_VERSION}")
        self.conn.commit()

    # ------------------------------------------------------------------ #
    # Local events                                                         #
    # ------------------------------------------------------------------ #

    def load_events(self) -> list[Event]:
        """All stored base events, oldest first. Unreadable rows are skipped."""
        events = []
        cursor = self.conn.execute("SELECT id, payload FROM local_events ORDER BY created_at, id")
        for row in cursor.fetchall():
            try:
                events.append(event_from_json(row["payload"]))
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"Skipping unreadable local event {row['id']}: {e}")
        return events

    def get_event(self, event_id: str) -> Event | None:
        row = self.conn.execute(
            "SELECT payload FROM local_events WHERE id = ?", (event_id,)
        ).fetchone()
        return event_from_json(row["payload"]) if row else None

    def upsert_event(self, event: Event):
        """Insert or replace a base event, preserving its created_at."""
        if event.is_remote:
            raise CalendarError(f"Refusing to store remote event {event.id} locally")
        timestamp = int(time.time())
        self.conn.execute(
            "INSERT INTO local_events (id, payload, created_at, updated_at) "
            "VALUES (?, ?, ?, ?) "
            "ON CONFLICT(id) DO UPDATE SET payload = excluded.payload, "
            "updated_at = excluded.updated_at",
            (event.id, event_to_json(event), timestamp, timestamp),
        )

    def delete_event(self, event_id: str) -> bool:
        cursor = self.conn.execute("DELETE FROM local_events WHERE id = ?", (event_id,))
        return cursor.rowcount > 0

    def count_events(self) -> int:
        return self.conn.execute("SELECT COUNT(*) FROM local_events").fetchone()[0]

    # ------------------------------------------------------------------ #
    # Settings blobs                                                       #
    # ------------------------------------------------------------------ #

    def get_settings_blob(self, user_key: str) -> dict[str, Any] | None:
        row = self.conn.execute(
            "SELECT payload FROM settings WHERE user_key = ?", (user_key,)
        ).fetchone()
        return json.loads(row["payload"]) if row else None

    def put_settings_blob(self, user_key: str, blob: dict[str, Any]):
        self.conn.execute(
            "INSERT INTO settings (user_key, payload, updated_at) VALUES (?, ?, ?) "
            "ON CONFLICT(user_key) DO UPDATE SET payload = excluded.payload, "
            "updated_at = excluded.updated_at",
            (user_key, json.dumps(blob, sort_keys=True), int(time.time())),
        )

    def commit(self):
        """Commit pending transactions."""
        if self.conn:
            self.conn.commit()

    def close(self):
        """Close the database connection."""
        if self.conn:
            self.conn.close()
            self.conn = None
