"""
Shared pytest fixtures and event helpers.
"""

import logging
from datetime import date
from datetime import datetime
from datetime import timezone

import pytest

from timeline_calendar.db import LocalEventDatabase
from timeline_calendar.gateway import Calendar
from timeline_calendar.gateway import RemoteEvent
from timeline_calendar.models import CalendarConfig
from timeline_calendar.models import Event
from timeline_calendar.models import SyncStats
from timeline_calendar.models import TimeWindow
from timeline_calendar.store import EventStore
from tests.fake_gateway import FakeGateway

UTC = timezone.utc

WORK_CAL_ID = "work@example.com"
HOME_CAL_ID = "home@example.com"
TEST_TOKEN = "test-token"


def make_event(event_id: str = "e1", title: str = "Test Event", **overrides) -> Event:
    """Return a local timed event on 2026-03-02 (a Monday), 09:00–10:00."""
    fields = {
        "id": event_id,
        "title": title,
        "start": date(2026, 3, 2),
        "end": date(2026, 3, 2),
        "start_time": "09:00",
        "end_time": "10:00",
    }
    fields.update(overrides)
    return Event(**fields)


def make_remote(
    remote_id: str,
    calendar_id: str = WORK_CAL_ID,
    title: str = "Remote Event",
    start: datetime | date = datetime(2026, 3, 2, 9, 0, tzinfo=UTC),
    end: datetime | date | None = None,
    **overrides,
) -> RemoteEvent:
    """Return a remote timed event (one hour by default) in UTC."""
    if end is None:
        end = start.replace(hour=start.hour + 1) if isinstance(start, datetime) else start
    return RemoteEvent(
        remote_id=remote_id,
        calendar_id=calendar_id,
        title=title,
        start=start,
        end=end,
        **overrides,
    )


def window(first: date, last: date) -> TimeWindow:
    """UTC window spanning whole days ``first`` .. ``last``."""
    return TimeWindow(
        datetime(first.year, first.month, first.day, tzinfo=UTC),
        datetime(last.year, last.month, last.day, 23, 59, 59, tzinfo=UTC),
    )


MARCH_2026 = window(date(2026, 3, 1), date(2026, 3, 31))


@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "test_timeline.db"


@pytest.fixture
def local_db(db_path):
    with LocalEventDatabase(db_path) as db:
        yield db


@pytest.fixture
def calendar_config(db_path):
    return CalendarConfig(
        db_path=db_path,
        provider="none",
        access_token=TEST_TOKEN,
        occurrence_cap=100,
        verbose=False,
    )


@pytest.fixture
def sync_logger():
    return logging.getLogger("test_sync")


@pytest.fixture
def sync_stats():
    return SyncStats()


@pytest.fixture
def store():
    return EventStore()


@pytest.fixture
def calendars():
    return [
        Calendar(WORK_CAL_ID, "Work", "#3B82F6", primary=True, access_role="owner", visible=True),
        Calendar(HOME_CAL_ID, "Home", None, access_role="owner", visible=True),
    ]


@pytest.fixture
def gateway(calendars):
    return FakeGateway(calendars)
