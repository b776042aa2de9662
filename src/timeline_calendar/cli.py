"""
Command-line interface for Timeline Calendar.
"""

import asyncio
import logging
from configparser import ConfigParser
from dataclasses import dataclass
from dataclasses import field
from dataclasses import replace
from datetime import date
from datetime import datetime
from datetime import time
from datetime import timedelta
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from timeline_calendar.coverage import view_days
from timeline_calendar.db import LocalEventDatabase
from timeline_calendar.drag import DragMachine
from timeline_calendar.drag import Idle
from timeline_calendar.gateway import CalendarGateway
from timeline_calendar.models import DEFAULT_CONFIG
from timeline_calendar.models import DEFAULT_DB
from timeline_calendar.models import AuthError
from timeline_calendar.models import CalendarConfig
from timeline_calendar.models import CalendarError
from timeline_calendar.models import CalendarView
from timeline_calendar.models import Count
from timeline_calendar.models import Event
from timeline_calendar.models import Never
from timeline_calendar.models import NotFoundError
from timeline_calendar.models import RecurrenceRule
from timeline_calendar.models import TimeWindow
from timeline_calendar.models import UntilDate
from timeline_calendar.models import UpdateScope
from timeline_calendar.recurrence import base_id_of
from timeline_calendar.render import agenda_table
from timeline_calendar.render import calendars_table
from timeline_calendar.render import day_table
from timeline_calendar.settings import SettingsRepository
from timeline_calendar.settings import remember_color
from timeline_calendar.sync import TimelineSynchronizer
from timeline_calendar.timeutil import slot_height

# ---------------------------------------------------------------------------
# Typer app
# ---------------------------------------------------------------------------

app = typer.Typer(
    no_args_is_help=True,
    rich_markup_mode="rich",
    help="Local and remote calendar events on one timeline.",
)

console = Console()
logger = logging.getLogger(__name__)

CONFIG_SECTION = "timeline-calendar"
TOKEN_ENVVAR = "TIMELINE_CALENDAR_TOKEN"


# ---------------------------------------------------------------------------
# Global state shared across subcommands
# ---------------------------------------------------------------------------


@dataclass
class _State:
    config_path: Path = field(default_factory=lambda: DEFAULT_CONFIG)
    db: Path = field(default_factory=lambda: DEFAULT_DB)
    provider: str | None = None
    token: str | None = None
    verbose: bool = False


state = _State()


@app.callback()
def _global(
    config: Annotated[
        Path,
        typer.Option("--config", "-c", help=f"Config file path (default: {DEFAULT_CONFIG})"),
    ] = DEFAULT_CONFIG,
    db: Annotated[
        Path,
        typer.Option("--db", help=f"Local event database (default: {DEFAULT_DB})"),
    ] = DEFAULT_DB,
    provider: Annotated[
        str | None,
        typer.Option("--provider", "-p", help="Remote provider: none, google or eds"),
    ] = None,
    token: Annotated[
        str | None,
        typer.Option("--token", envvar=TOKEN_ENVVAR, help="Provider access token"),
    ] = None,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Enable verbose debug output"),
    ] = False,
) -> None:
    state.config_path = config
    state.db = db
    state.provider = provider
    state.token = token
    state.verbose = verbose
    _setup_logging(verbose)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=True, show_path=False, console=console)],
    )


def _load_config_file(config_path: Path) -> dict[str, str]:
    if not config_path.exists():
        return {}
    parser = ConfigParser()
    parser.read(config_path)
    if CONFIG_SECTION not in parser:
        return {}
    return dict(parser[CONFIG_SECTION])


def _int_setting(values: dict[str, str], key: str, default: int) -> int:
    raw = values.get(key)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        console.print(f"[bold red]Error:[/] {key} in {state.config_path} must be a number")
        raise typer.Exit(1) from None


def _build_config() -> CalendarConfig:
    values = _load_config_file(state.config_path)
    provider = (state.provider or values.get("provider") or "none").lower()
    if provider not in ("none", "google", "eds"):
        raise typer.BadParameter(f"Unknown provider {provider!r} (expected none, google or eds)")
    return CalendarConfig(
        db_path=state.db,
        provider=provider,
        access_token=state.token or values.get("access_token") or None,
        user_key=values.get("user_key") or "default",
        occurrence_cap=_int_setting(values, "occurrence_cap", 100),
        fetch_padding_months=_int_setting(values, "fetch_padding_months", 1),
        base_z_index=_int_setting(values, "base_z_index", 20),
        compactness=_int_setting(values, "compactness", 50),
        verbose=state.verbose,
    )


def _make_gateway(cfg: CalendarConfig) -> CalendarGateway | None:
    if cfg.provider == "google":
        from timeline_calendar.google_gateway import GoogleCalendarGateway

        return GoogleCalendarGateway()
    if cfg.provider == "eds":
        from timeline_calendar.eds_gateway import EDSCalendarGateway

        return EDSCalendarGateway()
    return None


def _parse_date(value: str | None, option: str) -> date:
    if not value:
        return date.today()
    try:
        return date.fromisoformat(value)
    except ValueError:
        console.print(f"[bold red]Error:[/] Invalid date for {option}: {value!r}")
        raise typer.Exit(1) from None


def _day_window(first: date, last: date) -> TimeWindow:
    return TimeWindow(
        datetime.combine(first, time.min).astimezone(),
        datetime.combine(last, time.max).astimezone(),
    )


def _run(coro):
    """Drive a coroutine and turn calendar errors into exit code 1."""
    try:
        return asyncio.run(coro)
    except AuthError as e:
        console.print(f"[bold red]Not signed in:[/] {e}")
        console.print(
            f"[dim]Provide a fresh token with [cyan]--token[/] or ${TOKEN_ENVVAR}.[/dim]"
        )
        raise typer.Exit(1) from None
    except CalendarError as e:
        console.print(f"[bold red]Error:[/] {e}")
        raise typer.Exit(1) from None
    except KeyboardInterrupt:
        console.print("[yellow]Interrupted by user[/]")
        raise typer.Exit(130) from None


async def _open_session(cfg: CalendarConfig, db: LocalEventDatabase) -> TimelineSynchronizer:
    session = TimelineSynchronizer(cfg, gateway=_make_gateway(cfg), db=db)
    settings = SettingsRepository(db).load_or_default(cfg.user_key)
    session.chosen_calendars = set(settings.visible_calendars)
    session.load_local()
    return session


async def _with_session(cfg: CalendarConfig, window: TimeWindow, action=None):
    """Open a session, make ``window`` available, then run ``action(session)``."""
    with LocalEventDatabase(cfg.db_path) as db:
        session = await _open_session(cfg, db)
        try:
            try:
                await session.navigate(window)
            except CalendarError as e:
                logger.warning(f"Remote events unavailable: {e}")
            result = await action(session) if action is not None else None
        finally:
            await session.aclose()
        return session, result


def _weekdays(value: str | None) -> frozenset[int]:
    if not value:
        return frozenset()
    names = ("su", "mo", "tu", "we", "th", "fr", "sa")
    days = set()
    for part in value.split(","):
        part = part.strip().lower()[:2]
        if part.isdigit():
            days.add(int(part))
        elif part in names:
            days.add(names.index(part))
        else:
            raise typer.BadParameter(f"Unknown weekday {part!r}")
    return frozenset(days)


def _build_rule(
    repeat: str | None,
    interval: int,
    on: str | None,
    until: str | None,
    count: int | None,
) -> RecurrenceRule | None:
    if not repeat:
        return None
    if until:
        end = UntilDate(_parse_date(until, "--until"))
    elif count:
        end = Count(count)
    else:
        end = Never()
    return RecurrenceRule(repeat.lower(), interval, _weekdays(on), end)


def _require_event(session: TimelineSynchronizer, event_id: str, near: date) -> Event:
    current = session.store.get(event_id)
    if current is not None:
        return current
    if session.store.last_error is not None:
        raise session.store.last_error
    raise NotFoundError(f"No event with id {event_id!r} near {near}")


def _print_notice(session: TimelineSynchronizer) -> None:
    error = session.store.last_error
    if isinstance(error, AuthError):
        console.print(f"[yellow]Not signed in, showing local events only:[/] {error}")
    elif error is not None:
        console.print(f"[yellow]Sync {session.store.status.value}:[/] {error}")


# ---------------------------------------------------------------------------
# Shared options
# ---------------------------------------------------------------------------

_DATE = Annotated[str | None, typer.Option("--date", "-d", help="Start date (YYYY-MM-DD)")]
_END_DATE = Annotated[
    str | None, typer.Option("--end-date", help="Last date of a multi-day event")
]
_START = Annotated[str | None, typer.Option("--start", "-s", help="Start time HH:MM")]
_END = Annotated[str | None, typer.Option("--end", "-e", help="End time HH:MM")]
_ALL_DAY = Annotated[bool | None, typer.Option("--all-day/--timed", help="All-day event")]
_COLOR = Annotated[str | None, typer.Option("--color", help="Display color, e.g. bg-red-600")]
_DESCRIPTION = Annotated[str | None, typer.Option("--description", help="Event description")]
_LOCATION = Annotated[str | None, typer.Option("--location", help="Event location")]
_REPEAT = Annotated[
    str | None, typer.Option("--repeat", "-r", help="daily, weekly, monthly or yearly")
]
_INTERVAL = Annotated[int, typer.Option("--interval", help="Repeat every N periods")]
_ON = Annotated[
    str | None, typer.Option("--on", help="Weekdays for weekly rules, e.g. mo,we,fr")
]
_UNTIL = Annotated[str | None, typer.Option("--until", help="Last date of the series")]
_COUNT = Annotated[int | None, typer.Option("--count", help="Number of occurrences")]
_AROUND = Annotated[
    str | None,
    typer.Option("--around", help="Date near the event, used to fetch remote events"),
]
_SCOPE = Annotated[
    UpdateScope | None,
    typer.Option("--scope", help="For recurring remote events: this, future or all"),
]


# ---------------------------------------------------------------------------
# Subcommands
# ---------------------------------------------------------------------------


@app.command()
def add(
    title: Annotated[str, typer.Argument(help="Event title")],
    on_date: _DATE = None,
    end_date: _END_DATE = None,
    start: _START = None,
    end: _END = None,
    all_day: _ALL_DAY = None,
    color: _COLOR = None,
    description: _DESCRIPTION = None,
    location: _LOCATION = None,
    repeat: _REPEAT = None,
    interval: _INTERVAL = 1,
    on: _ON = None,
    until: _UNTIL = None,
    count: _COUNT = None,
    calendar: Annotated[
        str | None,
        typer.Option("--calendar", help="Create in this remote calendar instead of locally"),
    ] = None,
) -> None:
    """Create an event, locally or in a remote calendar."""
    cfg = _build_config()
    first = _parse_date(on_date, "--date")
    last = _parse_date(end_date, "--end-date") if end_date else first

    async def _create(session: TimelineSynchronizer) -> Event:
        rule = _build_rule(repeat, interval, on, until, count)
        event = Event(
            id="",
            title=title,
            start=first,
            end=last,
            start_time=start or "09:00",
            end_time=end or "10:00",
            is_all_day=bool(all_day),
            color=color or "bg-blue-600",
            description=description or "",
            location=location or "",
            is_recurring=rule is not None,
            recurrence=rule,
        )
        created = await session.create_event(event, calendar)
        if color:
            repo = SettingsRepository(session.db)
            repo.save(cfg.user_key, remember_color(repo.load_or_default(cfg.user_key), color))
        return created

    window = _day_window(first, last) if calendar else _day_window(first, first)
    if not calendar:
        cfg = replace(cfg, provider="none")
    _, created = _run(_with_session(cfg, window, _create))
    console.print(f"[green]Created[/] {created.title} [dim]({created.id})[/dim]")


@app.command()
def edit(
    event_id: Annotated[str, typer.Argument(help="Event ID as shown by agenda")],
    title: Annotated[str | None, typer.Option("--title", "-t", help="New title")] = None,
    on_date: _DATE = None,
    end_date: _END_DATE = None,
    start: _START = None,
    end: _END = None,
    all_day: _ALL_DAY = None,
    color: _COLOR = None,
    description: _DESCRIPTION = None,
    location: _LOCATION = None,
    repeat: _REPEAT = None,
    interval: _INTERVAL = 1,
    on: _ON = None,
    until: _UNTIL = None,
    count: _COUNT = None,
    scope: _SCOPE = None,
    around: _AROUND = None,
) -> None:
    """Edit an event. Local recurring events are always edited as a series."""
    cfg = _build_config()
    near = _parse_date(around, "--around")

    async def _edit(session: TimelineSynchronizer) -> Event:
        current = _require_event(session, event_id, near)
        changes: dict = {}
        if title is not None:
            changes["title"] = title
        if on_date:
            changes["start"] = _parse_date(on_date, "--date")
            changes["end"] = changes["start"] + (current.end - current.start)
        if end_date:
            changes["end"] = _parse_date(end_date, "--end-date")
        if start is not None:
            changes["start_time"] = start
        if end is not None:
            changes["end_time"] = end
        if all_day is not None:
            changes["is_all_day"] = all_day
        if color is not None:
            changes["color"] = color
        if description is not None:
            changes["description"] = description
        if location is not None:
            changes["location"] = location
        if repeat is not None:
            rule = _build_rule(repeat, interval, on, until, count)
            changes["recurrence"] = rule
            changes["is_recurring"] = rule is not None
        return await session.update_event(replace(current, **changes), scope)

    _, updated = _run(_with_session(cfg, _day_window(near, near), _edit))
    console.print(f"[green]Updated[/] {updated.title} [dim]({updated.id})[/dim]")


@app.command()
def move(
    event_id: Annotated[str, typer.Argument(help="Event ID as shown by agenda")],
    minutes: Annotated[int, typer.Argument(help="Minutes to move by (negative = earlier)")],
    around: _AROUND = None,
) -> None:
    """Reschedule a timed event, snapping its new start to the quarter hour."""
    cfg = _build_config()
    near = _parse_date(around, "--around")
    hour_height = slot_height(cfg.compactness)

    async def _move(session: TimelineSynchronizer):
        current = _require_event(session, event_id, near)
        machine = DragMachine(hour_height)
        dragging = machine.press(Idle(), current, 0)
        _, change = machine.release(dragging, minutes / 60 * hour_height)
        if change is None:
            return None
        edited = replace(current, start_time=change.start_time, end_time=change.end_time)
        scope = UpdateScope.THIS if current.is_remote and current.is_recurring else None
        return await session.update_event(edited, scope)

    _, updated = _run(_with_session(cfg, _day_window(near, near), _move))
    if updated is None:
        console.print("[yellow]Nothing to move.[/]")
        return
    console.print(
        f"[green]Moved[/] {updated.title} to {updated.start_time}–{updated.end_time}"
    )


@app.command()
def delete(
    event_id: Annotated[str, typer.Argument(help="Event ID as shown by agenda")],
    around: _AROUND = None,
    yes: Annotated[bool, typer.Option("--yes", "-y", help="Skip confirmation prompt")] = False,
) -> None:
    """Delete an event; any member of a local series deletes the series."""
    cfg = _build_config()
    near = _parse_date(around, "--around")
    if not yes:
        typer.confirm(f"Delete {event_id}?", abort=True)

    async def _delete(session: TimelineSynchronizer) -> str:
        current = _require_event(session, event_id, near)
        await session.delete_event(event_id)
        return current.id if current.is_remote else base_id_of(current)

    _, deleted = _run(_with_session(cfg, _day_window(near, near), _delete))
    console.print(f"[green]Deleted[/] {deleted}")


def _current_view(cfg: CalendarConfig, view: CalendarView | None) -> CalendarView:
    """Remember ``view`` when given, else return the saved one."""
    with LocalEventDatabase(cfg.db_path) as db:
        repo = SettingsRepository(db)
        settings = repo.load_or_default(cfg.user_key)
        if view is not None:
            settings.current_view = view.value
            repo.save(cfg.user_key, settings)
            return view
    try:
        return CalendarView(settings.current_view)
    except ValueError:
        logger.warning(f"Unknown saved view {settings.current_view!r}, using week")
        return CalendarView.WEEK


@app.command()
def agenda(
    from_date: Annotated[
        str | None, typer.Option("--from", help="Day to show (YYYY-MM-DD, default today)")
    ] = None,
    view: Annotated[
        CalendarView | None,
        typer.Option("--view", help="Show the day, week (from Sunday) or month around --from"),
    ] = None,
    days: Annotated[
        int | None, typer.Option("--days", help="Show this many days from --from instead")
    ] = None,
) -> None:
    """List events for a day, week or month, or a range of days.

    The view is remembered for later calls that give neither ``--view``
    nor ``--days``.
    """
    cfg = _build_config()
    anchor = _parse_date(from_date, "--from")
    if days is not None:
        first, last = anchor, anchor + timedelta(days=max(days, 1) - 1)
    else:
        try:
            current = _current_view(cfg, view)
        except CalendarError as e:
            console.print(f"[bold red]Error:[/] {e}")
            raise typer.Exit(1) from None
        first, last = view_days(current, anchor)
    session, _ = _run(_with_session(cfg, _day_window(first, last)))
    _print_notice(session)
    console.print(
        Panel(
            agenda_table(session.store.events, first, last),
            title=f"[bold]Agenda {first} – {last}[/bold]",
        )
    )


@app.command()
def day(
    on_date: Annotated[str | None, typer.Argument(help="Day to lay out (YYYY-MM-DD)")] = None,
) -> None:
    """Show one day column with overlap layout and geometry."""
    cfg = _build_config()
    target = _parse_date(on_date, "DATE")
    session, _ = _run(_with_session(cfg, _day_window(target, target)))
    _print_notice(session)
    console.print(
        Panel(
            day_table(session.store.events, target, cfg.base_z_index, cfg.compactness),
            title=f"[bold]{target:%A %Y-%m-%d}[/bold]",
        )
    )


@app.command()
def calendars() -> None:
    """List remote calendars and whether they are shown."""
    cfg = _build_config()

    async def _list():
        with LocalEventDatabase(cfg.db_path) as db:
            session = await _open_session(cfg, db)
            try:
                found = await session.load_calendars()
            finally:
                await session.aclose()
            return found, session.calendar_ids()

    found, shown = _run(_list())
    if not found:
        console.print(f"[yellow]No remote calendars (provider: {cfg.provider}).[/]")
        return
    console.print(Panel(calendars_table(found, shown), title="[bold]Calendars[/bold]"))


def _toggle_calendar(calendar_id: str, visible: bool) -> None:
    cfg = _build_config()
    try:
        with LocalEventDatabase(cfg.db_path) as db:
            repo = SettingsRepository(db)
            settings = repo.load_or_default(cfg.user_key)
            if visible:
                settings.visible_calendars.add(calendar_id)
            else:
                settings.visible_calendars.discard(calendar_id)
            repo.save(cfg.user_key, settings)
    except CalendarError as e:
        console.print(f"[bold red]Error:[/] {e}")
        raise typer.Exit(1) from None


@app.command()
def show(calendar_id: Annotated[str, typer.Argument(help="Calendar ID")]) -> None:
    """Add a calendar to the shown set."""
    _toggle_calendar(calendar_id, True)
    console.print(f"[green]Showing[/] {calendar_id}")


@app.command()
def hide(calendar_id: Annotated[str, typer.Argument(help="Calendar ID")]) -> None:
    """Remove a calendar from the shown set."""
    _toggle_calendar(calendar_id, False)
    console.print(f"[green]Hidden[/] {calendar_id}")


@app.command()
def status() -> None:
    """Show configuration, local store and saved settings."""
    cfg = _build_config()

    cfg_info = Text()
    cfg_info.append("  Config:    ", style="bold")
    cfg_info.append(f"{state.config_path}")
    if not state.config_path.exists():
        cfg_info.append("  (not found)", style="dim")
    cfg_info.append("\n  Database:  ", style="bold")
    cfg_info.append(f"{cfg.db_path}")
    cfg_info.append("\n  Provider:  ", style="bold")
    cfg_info.append(cfg.provider, style="cyan")
    cfg_info.append("\n  Token:     ", style="bold")
    cfg_info.append("set" if cfg.access_token else "not set", style="dim")
    console.print(Panel(cfg_info, title="[bold]Timeline Calendar — Status[/bold]"))

    if not cfg.db_path.exists():
        console.print("[yellow]No local database yet — nothing stored.[/]")
        return

    with LocalEventDatabase(cfg.db_path) as db:
        local_count = db.count_events()
        settings = SettingsRepository(db).load_or_default(cfg.user_key)

    table = Table.grid(padding=(0, 2))
    table.add_column(style="bold")
    table.add_column()
    table.add_row("Local events", str(local_count))
    table.add_row("View", settings.current_view)
    table.add_row("Shown calendars", ", ".join(sorted(settings.visible_calendars)) or "(defaults)")
    table.add_row("Recent colors", ", ".join(settings.recent_colors) or "-")
    console.print(Panel(table, title=f"[bold]{cfg.user_key}[/bold]", expand=False))


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def main() -> None:
    app()
