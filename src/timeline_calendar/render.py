"""
Rich renderables for the terminal views.
"""

from collections.abc import Iterable
from datetime import date

from rich.table import Table
from rich.text import Text

from timeline_calendar.gateway import Calendar
from timeline_calendar.layout import BASE_Z_INDEX
from timeline_calendar.layout import events_on_day
from timeline_calendar.layout import layout_day
from timeline_calendar.models import Event
from timeline_calendar.models import RemoteSource
from timeline_calendar.timeutil import event_geometry
from timeline_calendar.timeutil import slot_height


def _source_label(event: Event) -> Text:
    if isinstance(event.source, RemoteSource):
        return Text(event.source.calendar_id, style="cyan")
    return Text("local", style="dim")


def _when(event: Event) -> str:
    if event.is_all_day:
        return "all day"
    return f"{event.start_time}–{event.end_time}"


def _sort_key(event: Event) -> tuple:
    return (event.start, not event.is_all_day, event.start_time, event.title)


def agenda_table(events: Iterable[Event], start: date, end: date) -> Table:
    """Events touching ``[start, end]``, one row each, in date order."""
    table = Table(show_header=True, header_style="bold cyan", box=None, padding=(0, 2))
    table.add_column("Date")
    table.add_column("Time")
    table.add_column("Title")
    table.add_column("Calendar")
    table.add_column("ID", style="dim", overflow="fold")

    shown = sorted((e for e in events if e.start <= end and e.end >= start), key=_sort_key)
    for event in shown:
        title = Text(event.title)
        if event.is_recurring:
            title.append(" ↻", style="magenta")
        span = f"{event.start}" if not event.is_multi_day else f"{event.start} → {event.end}"
        table.add_row(span, _when(event), title, _source_label(event), event.id)
    return table


def day_table(
    events: Iterable[Event],
    day: date,
    base_z: int = BASE_Z_INDEX,
    compactness: int = 50,
) -> Table:
    """One day column: time, vertical geometry and overlap slot per event."""
    todays = events_on_day(events, day)
    slots = layout_day(todays, base_z)
    hour_height = slot_height(compactness)

    table = Table(show_header=True, header_style="bold cyan", box=None, padding=(0, 2))
    table.add_column("Time")
    table.add_column("Title")
    table.add_column("Top/Height px", justify="right")
    table.add_column("Left/Width %", justify="right")
    table.add_column("Z", justify="right")

    for event in sorted(todays, key=_sort_key):
        slot = slots.get(event.id)
        if slot is None:
            table.add_row(_when(event), event.title, "", "", "")
            continue
        top, height = event_geometry(event.start_time, event.end_time, hour_height)
        table.add_row(
            _when(event),
            event.title,
            f"{top:.0f}/{height:.0f}",
            f"{slot.left:.1f}/{slot.width:.1f}",
            str(slot.z_index),
        )
    return table


def calendars_table(calendars: Iterable[Calendar], shown_ids: Iterable[str]) -> Table:
    shown = set(shown_ids)
    table = Table(show_header=True, header_style="bold cyan", box=None, padding=(0, 2))
    table.add_column("Shown")
    table.add_column("Name")
    table.add_column("Role")
    table.add_column("ID", style="dim", overflow="fold")
    for calendar in calendars:
        mark = Text("✓", style="green") if calendar.id in shown else Text("")
        name = Text(calendar.summary, style="bold" if calendar.primary else "")
        table.add_row(mark, name, calendar.access_role, calendar.id)
    return table
