"""
End-to-end tests of the command line against a temporary local database.
"""

from datetime import date

import pytest
from typer.testing import CliRunner

from timeline_calendar.cli import app
from timeline_calendar.db import LocalEventDatabase
from timeline_calendar.models import Frequency
from timeline_calendar.settings import SettingsRepository

runner = CliRunner()


@pytest.fixture
def invoke(tmp_path, monkeypatch):
    """Run the CLI with an isolated database and no config file."""
    monkeypatch.delenv("TIMELINE_CALENDAR_TOKEN", raising=False)
    db = tmp_path / "cli.db"
    config = tmp_path / "missing.conf"

    def _invoke(*args, input=None):
        return runner.invoke(
            app, ["--db", str(db), "--config", str(config), *args], input=input
        )

    _invoke.db_path = db
    return _invoke


def stored_events(db_path):
    with LocalEventDatabase(db_path) as db:
        return db.load_events()


class TestAdd:
    def test_add_local_event(self, invoke):
        result = invoke("add", "Standup", "--date", "2026-03-02", "--start", "09:00", "--end", "09:30")
        assert result.exit_code == 0, result.output
        assert "Created" in result.output
        (event,) = stored_events(invoke.db_path)
        assert event.title == "Standup"
        assert (event.start, event.start_time, event.end_time) == (date(2026, 3, 2), "09:00", "09:30")

    def test_add_recurring_event(self, invoke):
        result = invoke(
            "add", "Gym", "--date", "2026-03-02", "--repeat", "weekly", "--on", "mo,th", "--count", "4"
        )
        assert result.exit_code == 0, result.output
        (event,) = stored_events(invoke.db_path)
        assert event.recurrence.frequency is Frequency.WEEKLY
        assert event.recurrence.days_of_week == frozenset({1, 4})

    def test_color_is_remembered(self, invoke):
        invoke("add", "Standup", "--date", "2026-03-02", "--color", "bg-red-600")
        with LocalEventDatabase(invoke.db_path) as db:
            settings = SettingsRepository(db).load_or_default("default")
        assert settings.recent_colors == ["bg-red-600"]

    def test_invalid_event_exits_with_error(self, invoke):
        result = invoke("add", "Backwards", "--date", "2026-03-02", "--start", "11:00", "--end", "10:00")
        assert result.exit_code == 1
        assert "Error" in result.output
        assert stored_events(invoke.db_path) == []

    def test_invalid_date(self, invoke):
        result = invoke("add", "Standup", "--date", "March 2nd")
        assert result.exit_code == 1
        assert "Invalid date" in result.output


class TestViews:
    def test_agenda_lists_occurrences(self, invoke):
        invoke("add", "Gym", "--date", "2026-03-02", "--repeat", "daily", "--count", "3")
        result = invoke("agenda", "--from", "2026-03-01", "--days", "7")
        assert result.exit_code == 0, result.output
        assert result.output.count("Gym") == 3

    def test_agenda_week_starts_on_sunday(self, invoke):
        result = invoke("agenda", "--from", "2026-03-04", "--view", "week")
        assert result.exit_code == 0, result.output
        assert "2026-03-01 – 2026-03-07" in result.output

    def test_agenda_view_is_remembered(self, invoke):
        invoke("add", "Early", "--date", "2026-03-02")
        invoke("add", "Late", "--date", "2026-03-30")
        result = invoke("agenda", "--from", "2026-03-15", "--view", "month")
        assert result.exit_code == 0, result.output
        assert "2026-03-01 – 2026-03-31" in result.output
        with LocalEventDatabase(invoke.db_path) as db:
            settings = SettingsRepository(db).load_or_default("default")
        assert settings.current_view == "month"

        result = invoke("agenda", "--from", "2026-03-15")
        assert "Early" in result.output
        assert "Late" in result.output

    def test_agenda_day_view(self, invoke):
        invoke("add", "One", "--date", "2026-03-02")
        invoke("add", "Two", "--date", "2026-03-03")
        result = invoke("agenda", "--from", "2026-03-03", "--view", "day")
        assert result.exit_code == 0, result.output
        assert "Two" in result.output
        assert "One" not in result.output

    def test_day_view(self, invoke):
        invoke("add", "One", "--date", "2026-03-02", "--start", "09:00", "--end", "10:00")
        invoke("add", "Two", "--date", "2026-03-02", "--start", "09:30", "--end", "10:30")
        result = invoke("day", "2026-03-02")
        assert result.exit_code == 0, result.output
        assert "One" in result.output
        assert "Two" in result.output

    def test_calendars_without_provider(self, invoke):
        result = invoke("calendars")
        assert result.exit_code == 0
        assert "No remote calendars" in result.output

    def test_status(self, invoke):
        invoke("add", "Standup", "--date", "2026-03-02")
        result = invoke("status")
        assert result.exit_code == 0, result.output
        assert "Local events" in result.output


class TestEditing:
    def test_edit_title(self, invoke):
        invoke("add", "Standup", "--date", "2026-03-02")
        (event,) = stored_events(invoke.db_path)
        result = invoke("edit", event.id, "--title", "Retro", "--around", "2026-03-02")
        assert result.exit_code == 0, result.output
        (edited,) = stored_events(invoke.db_path)
        assert edited.title == "Retro"

    def test_edit_unknown_event(self, invoke):
        result = invoke("edit", "nope", "--title", "x", "--around", "2026-03-02")
        assert result.exit_code == 1
        assert "nope" in result.output

    def test_move_snaps_and_keeps_duration(self, invoke):
        invoke("add", "Standup", "--date", "2026-03-02", "--start", "09:00", "--end", "10:00")
        (event,) = stored_events(invoke.db_path)
        result = invoke("move", event.id, "30", "--around", "2026-03-02")
        assert result.exit_code == 0, result.output
        (moved,) = stored_events(invoke.db_path)
        assert (moved.start_time, moved.end_time) == ("09:30", "10:30")

    def test_delete_occurrence_deletes_series(self, invoke):
        invoke("add", "Gym", "--date", "2026-03-02", "--repeat", "daily", "--count", "3")
        (base,) = stored_events(invoke.db_path)
        result = invoke("delete", f"{base.id}-2", "--around", "2026-03-04", "--yes")
        assert result.exit_code == 0, result.output
        assert stored_events(invoke.db_path) == []

    def test_delete_asks_for_confirmation(self, invoke):
        invoke("add", "Standup", "--date", "2026-03-02")
        (event,) = stored_events(invoke.db_path)
        result = invoke("delete", event.id, "--around", "2026-03-02", input="n\n")
        assert result.exit_code == 1
        assert len(stored_events(invoke.db_path)) == 1


class TestCalendarVisibility:
    def test_show_and_hide(self, invoke):
        assert invoke("show", "work@example.com").exit_code == 0
        assert invoke("show", "home@example.com").exit_code == 0
        assert invoke("hide", "work@example.com").exit_code == 0
        with LocalEventDatabase(invoke.db_path) as db:
            settings = SettingsRepository(db).load_or_default("default")
        assert settings.visible_calendars == {"home@example.com"}
