"""
Smoke tests for the rich views.
"""

from datetime import date

from rich.console import Console

from tests.conftest import WORK_CAL_ID
from tests.conftest import make_event
from timeline_calendar.gateway import Calendar
from timeline_calendar.render import agenda_table
from timeline_calendar.render import calendars_table
from timeline_calendar.render import day_table


def render(renderable) -> str:
    console = Console(width=160, record=True)
    console.print(renderable)
    return console.export_text()


def test_agenda_filters_by_range():
    events = [
        make_event("a", "Inside"),
        make_event("b", "Later", start=date(2026, 3, 9), end=date(2026, 3, 9)),
    ]
    text = render(agenda_table(events, date(2026, 3, 1), date(2026, 3, 7)))
    assert "Inside" in text
    assert "Later" not in text


def test_day_table_shows_side_by_side_slots():
    events = [
        make_event("a", "First"),
        make_event("b", "Second", start_time="09:30", end_time="10:30"),
    ]
    text = render(day_table(events, date(2026, 3, 2)))
    assert "0.0/50.0" in text
    assert "50.0/50.0" in text


def test_all_day_events_have_no_slot():
    event = make_event("a", "Holiday", is_all_day=True, start_time="00:00", end_time="23:59")
    text = render(day_table([event], date(2026, 3, 2)))
    assert "all day" in text


def test_calendars_table_marks_shown():
    text = render(calendars_table([Calendar(WORK_CAL_ID, "Work")], [WORK_CAL_ID]))
    assert "✓" in text
    assert "Work" in text
