"""
Stateless reconciliation helpers: identity, provider/event conversion,
draft validation and the fetch merge.
"""

import logging
from collections.abc import Iterable
from collections.abc import Mapping
from dataclasses import replace
from datetime import date
from datetime import datetime
from datetime import time
from datetime import timedelta
from datetime import tzinfo

from timeline_calendar.gateway import Calendar
from timeline_calendar.gateway import EventDraft
from timeline_calendar.gateway import RemoteEvent
from timeline_calendar.models import ALL_DAY_END
from timeline_calendar.models import ALL_DAY_START
from timeline_calendar.models import Event
from timeline_calendar.models import RemoteSource
from timeline_calendar.models import TimeWindow
from timeline_calendar.models import ValidationError
from timeline_calendar.recurrence import base_id_of
from timeline_calendar.recurrence import rule_from_rrule
from timeline_calendar.recurrence import rule_to_rrule
from timeline_calendar.timeutil import time_to_minutes

_logger = logging.getLogger(__name__)

DEFAULT_COLOR = "bg-blue-600"

# Google Calendar event colorId -> display color class.
GOOGLE_COLOR_IDS = {
    "1": "bg-blue-600",
    "2": "bg-green-600",
    "3": "bg-purple-600",
    "4": "bg-red-600",
    "5": "bg-yellow-600",
    "6": "bg-pink-600",
    "7": "bg-teal-600",
    "8": "bg-gray-600",
    "9": "bg-indigo-600",
    "10": "bg-stone-600",
    "11": "bg-orange-600",
}
_COLOR_CLASS_TO_ID = {v: k for k, v in GOOGLE_COLOR_IDS.items()}


# ---------------------------------------------------------------------------
# Identity
# ---------------------------------------------------------------------------


def identity_key(event: Event) -> tuple[str, ...]:
    """``(calendar_id, remote_id)`` for remote events, ``(id,)`` for local ones."""
    if isinstance(event.source, RemoteSource):
        return (event.source.calendar_id, event.source.remote_id)
    return (event.id,)


def remote_event_id(calendar_id: str, remote_id: str) -> str:
    return f"{calendar_id}:{remote_id}"


def merge_by_identity(events: Iterable[Event], incoming: Iterable[Event]) -> list[Event]:
    """Replace events sharing an identity with ``incoming``; append the rest."""
    incoming = list(incoming)
    keys = {identity_key(e) for e in incoming}
    kept = [e for e in events if identity_key(e) not in keys]
    return kept + incoming


# ---------------------------------------------------------------------------
# Time helpers
# ---------------------------------------------------------------------------


def _localize(moment: datetime, tz: tzinfo | None) -> datetime:
    """Attach ``tz``; with no zone, the naive value is read as local time."""
    return moment.replace(tzinfo=tz) if tz is not None else moment.astimezone()


def _to_zone(moment: datetime, tz: tzinfo | None) -> datetime:
    return moment.astimezone(tz) if tz is not None else moment.astimezone()


def _clock(value: str) -> time:
    minutes = time_to_minutes(value)
    return time(minutes // 60 % 24, minutes % 60)


def event_bounds(event: Event, tz: tzinfo | None = None) -> tuple[datetime, datetime]:
    """Aware start/end instants of ``event``."""
    start = _localize(datetime.combine(event.start, _clock(event.start_time)), tz)
    end = _localize(datetime.combine(event.end, _clock(event.end_time)), tz)
    return start, end


# ---------------------------------------------------------------------------
# Provider -> Event
# ---------------------------------------------------------------------------


def _color_for(remote: RemoteEvent, calendars: Mapping[str, Calendar]) -> str:
    if remote.calendar_color:
        return remote.calendar_color
    calendar = calendars.get(remote.calendar_id)
    if calendar is not None and calendar.background_color:
        return calendar.background_color
    if remote.color_id:
        return GOOGLE_COLOR_IDS.get(remote.color_id, DEFAULT_COLOR)
    return DEFAULT_COLOR


def remote_to_event(
    remote: RemoteEvent,
    calendars: Mapping[str, Calendar] | None = None,
    tz: tzinfo | None = None,
) -> Event:
    """Convert a provider record into a remote-sourced Event.

    All-day ends arrive exclusive and are stored inclusive. Timed instants
    are shown in ``tz`` (local time when None). An RRULE outside the
    supported subset leaves the event without a rule; the provider still
    owns the series.
    """
    if remote.all_day:
        start_day = remote.start.date() if isinstance(remote.start, datetime) else remote.start
        end_day = remote.end.date() if isinstance(remote.end, datetime) else remote.end
        end_day = max(start_day, end_day - timedelta(days=1))
        start_time, end_time = ALL_DAY_START, ALL_DAY_END
    else:
        start_at = _to_zone(remote.start, tz)
        end_at = _to_zone(remote.end, tz)
        start_day, end_day = start_at.date(), end_at.date()
        start_time, end_time = f"{start_at:%H:%M}", f"{end_at:%H:%M}"

    recurrence = None
    if remote.rrule:
        try:
            recurrence = rule_from_rrule(remote.rrule)
        except ValidationError as e:
            _logger.debug("Keeping %s without local expansion: %s", remote.remote_id, e)

    return Event(
        id=remote_event_id(remote.calendar_id, remote.remote_id),
        title=remote.title or "Untitled Event",
        start=start_day,
        end=end_day,
        start_time=start_time,
        end_time=end_time,
        is_all_day=remote.all_day,
        is_multi_day=end_day > start_day,
        color=_color_for(remote, calendars or {}),
        description=remote.description,
        location=remote.location,
        source=RemoteSource(remote.calendar_id, remote.remote_id),
        is_recurring=bool(remote.recurring_event_id or remote.rrule),
        recurrence=recurrence,
        recurring_event_id=remote.recurring_event_id,
    )


# ---------------------------------------------------------------------------
# Event -> provider
# ---------------------------------------------------------------------------


def validate_event(event: Event) -> None:
    """Raise ValidationError for drafts that must never reach a gateway."""
    if not event.title.strip():
        raise ValidationError("Event title is required")
    if event.end < event.start:
        raise ValidationError(f"Event ends ({event.end}) before it starts ({event.start})")
    if not event.is_multi_day and event.end != event.start:
        raise ValidationError("Single-day event must end on its start date")
    try:
        start_minutes = time_to_minutes(event.start_time)
        end_minutes = time_to_minutes(event.end_time)
    except ValueError as e:
        raise ValidationError(f"Malformed event time: {e}") from e
    if not event.is_all_day and not event.is_multi_day and end_minutes <= start_minutes:
        raise ValidationError(
            f"Event must end after it starts ({event.start_time} - {event.end_time})"
        )
    if event.is_recurring and event.recurrence is None and not event.is_remote:
        raise ValidationError("Recurring local event needs a recurrence rule")


def normalize_event(event: Event) -> Event:
    """Apply the all-day sentinel times and derive the multi-day flag."""
    if event.is_all_day:
        event = replace(event, start_time=ALL_DAY_START, end_time=ALL_DAY_END)
    return replace(event, is_multi_day=event.end > event.start)


def draft_from_event(
    event: Event, original: Event | None = None, tz: tzinfo | None = None
) -> EventDraft:
    """Provider payload for ``event``.

    ``original`` is the pre-edit event; its start locates the edited
    instance inside a series.
    """
    if event.is_all_day:
        start: date | datetime = event.start
        end: date | datetime = event.end + timedelta(days=1)
    else:
        start, end = event_bounds(event, tz)

    original_start = None
    if original is not None and original.is_recurring:
        if original.is_all_day:
            original_start = original.start
        else:
            original_start = event_bounds(original, tz)[0]

    return EventDraft(
        title=event.title,
        start=start,
        end=end,
        all_day=event.is_all_day,
        description=event.description,
        location=event.location,
        color_id=_COLOR_CLASS_TO_ID.get(event.color),
        rrule=rule_to_rrule(event.recurrence) if event.recurrence else None,
        recurring_event_id=event.recurring_event_id,
        original_start=original_start,
    )


# ---------------------------------------------------------------------------
# Fetch merge
# ---------------------------------------------------------------------------


def apply_fetch(
    events: Iterable[Event],
    calendar_ids: Iterable[str],
    window: TimeWindow,
    fetched: Iterable[Event],
    tz: tzinfo | None = None,
) -> list[Event]:
    """Merge a fresh fetch into ``events``.

    Remote events of ``calendar_ids`` that intersect ``window`` are replaced
    wholesale by ``fetched``: anything the provider no longer returns for
    that window disappears. Events elsewhere, of other calendars, or local
    ones are kept untouched.
    """
    calendars = set(calendar_ids)
    fetched = list(fetched)
    fetched_ids = {e.id for e in fetched}

    kept = []
    for event in events:
        source = event.source
        if isinstance(source, RemoteSource) and source.calendar_id in calendars:
            if event.id in fetched_ids or window.intersects(*event_bounds(event, tz)):
                continue
        kept.append(event)
    return kept + fetched


def _day(value: date | datetime, tz: tzinfo | None) -> date:
    return _to_zone(value, tz).date() if isinstance(value, datetime) else value


def excluded_days(
    remotes: Iterable[RemoteEvent], tz: tzinfo | None = None
) -> dict[str, set[date]]:
    """Days each provider series must not generate, keyed by master event id.

    An EXDATE removes the day outright. An override (an instance carrying
    ``original_start``) arrives as its own record and replaces the generated
    instance of that day.
    """
    days: dict[str, set[date]] = {}
    for remote in remotes:
        if remote.exdates:
            key = remote_event_id(remote.calendar_id, remote.remote_id)
            days.setdefault(key, set()).update(_day(d, tz) for d in remote.exdates)
        if remote.original_start is not None and remote.recurring_event_id:
            key = remote_event_id(remote.calendar_id, remote.recurring_event_id)
            days.setdefault(key, set()).add(_day(remote.original_start, tz))
    return days


def drop_excluded(events: Iterable[Event], excluded: Mapping[str, set[date]]) -> list[Event]:
    """Remove series members that fall on one of their series' excluded days."""
    return [e for e in events if e.start not in excluded.get(base_id_of(e), ())]


def visible_calendar_ids(calendars: Iterable[Calendar], chosen: Iterable[str] = ()) -> list[str]:
    """Calendars to fetch: the user's explicit choice, else provider defaults."""
    calendars = list(calendars)
    chosen = set(chosen)
    if chosen:
        return [c.id for c in calendars if c.id in chosen]
    return [c.id for c in calendars if c.visible]
