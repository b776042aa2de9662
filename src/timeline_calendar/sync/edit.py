"""
Create, update and delete, local or remote.

Remote changes go to the gateway first and touch the store only after the
provider accepted them, so a failure leaves the event list exactly as it
was. Local changes apply immediately and are persisted as base events.
"""

import uuid
from collections.abc import Iterable
from collections.abc import Mapping
from dataclasses import replace
from datetime import tzinfo

from timeline_calendar.db import LocalEventDatabase
from timeline_calendar.gateway import Calendar
from timeline_calendar.gateway import CalendarGateway
from timeline_calendar.models import CalendarConfig
from timeline_calendar.models import Event
from timeline_calendar.models import LocalSource
from timeline_calendar.models import NotFoundError
from timeline_calendar.models import RemoteSource
from timeline_calendar.models import UpdateScope
from timeline_calendar.models import ValidationError
from timeline_calendar.recurrence import base_id_of
from timeline_calendar.recurrence import expand
from timeline_calendar.recurrence import series_ids
from timeline_calendar.store import EventStore
from timeline_calendar.sync.utils import draft_from_event
from timeline_calendar.sync.utils import identity_key
from timeline_calendar.sync.utils import merge_by_identity
from timeline_calendar.sync.utils import normalize_event
from timeline_calendar.sync.utils import remote_to_event
from timeline_calendar.sync.utils import validate_event


def _replace_event(events: Iterable[Event], old_id: str, new_events: list[Event]) -> list[Event]:
    new_ids = {e.id for e in new_events}
    return [e for e in events if e.id != old_id and e.id not in new_ids] + new_events


def _require(store: EventStore, event_id: str) -> Event:
    event = store.get(event_id)
    if event is None:
        raise NotFoundError(f"No event with id {event_id!r}")
    return event


def _persist(db: LocalEventDatabase | None, event: Event) -> None:
    if db is not None:
        db.upsert_event(event)
        db.commit()


def _check_free_ids(
    events: Iterable[Event], series: list[Event], members: Iterable[str] = ()
) -> None:
    """Raise ValidationError when ``series`` would reuse an unrelated event's id."""
    own = set(members)
    taken = {e.id for e in events if e.id not in own}
    clashes = sorted(e.id for e in series if e.id in taken)
    if clashes:
        raise ValidationError(f"Event id(s) already in use: {', '.join(clashes)}")


async def create_event(
    config: CalendarConfig,
    logger,
    store: EventStore,
    gateway: CalendarGateway | None,
    event: Event,
    calendar_id: str | None = None,
    db: LocalEventDatabase | None = None,
    calendars: Mapping[str, Calendar] | None = None,
    tz: tzinfo | None = None,
) -> Event:
    """Add ``event`` locally, or to ``calendar_id`` on the provider."""
    event = normalize_event(event)
    validate_event(event)

    if calendar_id is None:
        event = replace(
            event, id=event.id or uuid.uuid4().hex, source=LocalSource(), series_id=None
        )
        series = expand(event, config.occurrence_cap)
        _check_free_ids(store.events, series)
        _persist(db, event)
        store.replace_events([*store.events, *series])
        logger.info(f"Created local event {event.id}: {event.title}")
        return event

    if gateway is None:
        raise ValidationError("No calendar provider configured")
    remote = await gateway.create_event(
        config.access_token, calendar_id, draft_from_event(event, tz=tz)
    )
    created = remote_to_event(remote, calendars, tz)
    store.replace_events(merge_by_identity(store.events, expand(created, config.occurrence_cap)))
    logger.info(f"Created {created.id} in {calendar_id}: {created.title}")
    return created


async def update_event(
    config: CalendarConfig,
    logger,
    store: EventStore,
    gateway: CalendarGateway | None,
    edited: Event,
    scope: UpdateScope | None = None,
    db: LocalEventDatabase | None = None,
    calendars: Mapping[str, Calendar] | None = None,
    tz: tzinfo | None = None,
) -> Event:
    """Replace the event with ``edited.id`` by ``edited``.

    Remote occurrences of a series need an explicit ``scope``. Local series
    are always edited as a whole: only the base is stored, so the edit is
    moved onto the base by the same day offset and the series regenerated.
    """
    current = _require(store, edited.id)
    edited = normalize_event(edited)
    validate_event(edited)

    if isinstance(current.source, RemoteSource):
        return await _update_remote(
            config, logger, store, gateway, current, edited, scope, calendars, tz
        )
    return _update_local(config, logger, store, current, edited, db)


async def _update_remote(
    config: CalendarConfig,
    logger,
    store: EventStore,
    gateway: CalendarGateway | None,
    current: Event,
    edited: Event,
    scope: UpdateScope | None,
    calendars: Mapping[str, Calendar] | None,
    tz: tzinfo | None,
) -> Event:
    if current.is_recurring and scope is None:
        raise ValidationError(
            f"'{current.title}' is recurring: choose to update this event, "
            "this and following events, or all events"
        )
    if gateway is None:
        raise ValidationError("No calendar provider configured")
    scope = scope or UpdateScope.THIS
    source = current.source
    edited = replace(edited, source=source, recurring_event_id=current.recurring_event_id)
    draft = draft_from_event(edited, original=current, tz=tz)

    remote = await gateway.update_event(
        config.access_token, source.calendar_id, source.remote_id, draft, scope
    )
    updated = remote_to_event(remote, calendars, tz)
    store.replace_events(
        _replace_event(store.events, current.id, expand(updated, config.occurrence_cap))
    )
    logger.info(f"Updated {current.id} ({scope.value}) in {source.calendar_id}")
    return updated


def _update_local(
    config: CalendarConfig,
    logger,
    store: EventStore,
    current: Event,
    edited: Event,
    db: LocalEventDatabase | None,
) -> Event:
    if not (current.is_recurring or edited.is_recurring):
        updated = replace(edited, source=LocalSource(), series_id=None)
        _persist(db, updated)
        store.replace_events(_replace_event(store.events, current.id, [updated]))
        logger.info(f"Updated local event {updated.id}")
        return updated

    base_id = base_id_of(current)
    base = store.get(base_id) or current
    shift = edited.start - current.start
    start = base.start + shift
    updated = replace(
        edited,
        id=base_id,
        series_id=None,
        source=LocalSource(),
        start=start,
        end=start + (edited.end - edited.start),
        recurrence=edited.recurrence if edited.is_recurring else None,
    )
    members = series_ids(store.events, base_id)
    series = expand(updated, config.occurrence_cap)
    _check_free_ids(store.events, series, members)
    _persist(db, updated)
    store.replace_events([e for e in store.events if e.id not in members] + series)
    logger.info(f"Updated local series {base_id}, {len(members)} occurrence(s) regenerated")
    return updated


async def delete_event(
    config: CalendarConfig,
    logger,
    store: EventStore,
    gateway: CalendarGateway | None,
    event_id: str,
    db: LocalEventDatabase | None = None,
) -> None:
    """Delete an event; deleting any member of a local series deletes the series."""
    current = _require(store, event_id)

    if isinstance(current.source, RemoteSource):
        if gateway is None:
            raise ValidationError("No calendar provider configured")
        await gateway.delete_event(
            config.access_token, current.source.calendar_id, current.source.remote_id
        )
        key = identity_key(current)
        store.replace_events(e for e in store.events if identity_key(e) != key)
        logger.info(f"Deleted {event_id} from {current.source.calendar_id}")
        return

    base_id = base_id_of(current)
    if db is not None:
        db.delete_event(base_id)
        db.commit()
    members = series_ids(store.events, base_id)
    store.replace_events(e for e in store.events if e.id not in members)
    logger.info(f"Deleted local event {base_id}")
