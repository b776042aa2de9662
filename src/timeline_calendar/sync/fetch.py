"""
Window fetch: ask the provider for one window across several calendars and
merge the answer into the store.
"""

import asyncio
from collections.abc import Mapping
from collections.abc import Sequence
from datetime import tzinfo

from timeline_calendar.gateway import Calendar
from timeline_calendar.gateway import CalendarGateway
from timeline_calendar.gateway import RemoteEvent
from timeline_calendar.models import CalendarConfig
from timeline_calendar.models import CalendarError
from timeline_calendar.models import SyncStats
from timeline_calendar.models import TimeWindow
from timeline_calendar.recurrence import expand_all
from timeline_calendar.store import EventStore
from timeline_calendar.sync.utils import apply_fetch
from timeline_calendar.sync.utils import drop_excluded
from timeline_calendar.sync.utils import excluded_days
from timeline_calendar.sync.utils import remote_to_event


async def run_fetch(
    config: CalendarConfig,
    stats: SyncStats,
    logger,
    store: EventStore,
    gateway: CalendarGateway,
    calendar_ids: Sequence[str],
    window: TimeWindow,
    calendars: Mapping[str, Calendar] | None = None,
    tz: tzinfo | None = None,
) -> bool:
    """Fetch ``window`` for every calendar concurrently and reconcile.

    Returns True when the window was recorded as covered. Responses older
    than one already applied for the same calendar are dropped, and the
    window then stays uncovered so a later navigation asks again. A failed
    fetch records nothing and re-raises, preferring a CalendarError when
    several calendars fail; the store leaves the syncing state either way.
    """
    sequence = store.begin_fetch()
    logger.info(
        f"Fetching {len(calendar_ids)} calendar(s) for "
        f"{window.start:%Y-%m-%d} – {window.end:%Y-%m-%d} (request #{sequence})"
    )
    try:
        results = await asyncio.gather(
            *(gateway.list_events(config.access_token, cid, window) for cid in calendar_ids),
            return_exceptions=True,
        )
        failures = [r for r in results if isinstance(r, BaseException)]
        if failures:
            raise next((f for f in failures if isinstance(f, CalendarError)), failures[0])
        covered = _reconcile(
            config, stats, logger, store, calendar_ids, window, results, sequence, calendars, tz
        )
    except BaseException as e:
        logger.error(f"Fetch #{sequence} failed: {e}")
        stats.errors += 1
        store.finish_fetch(e)
        raise
    store.finish_fetch()
    return covered


def _reconcile(
    config: CalendarConfig,
    stats: SyncStats,
    logger,
    store: EventStore,
    calendar_ids: Sequence[str],
    window: TimeWindow,
    results: Sequence[list[RemoteEvent]],
    sequence: int,
    calendars: Mapping[str, Calendar] | None,
    tz: tzinfo | None,
) -> bool:
    accepted: list[str] = []
    fetched = []
    for calendar_id, remote_events in zip(calendar_ids, results):
        if not store.accepts(calendar_id, sequence):
            logger.debug("Discarding stale response #%d for %s", sequence, calendar_id)
            stats.discarded += 1
            continue
        accepted.append(calendar_id)
        converted = [remote_to_event(r, calendars, tz) for r in remote_events]
        expanded = expand_all(converted, config.occurrence_cap)
        fetched.extend(drop_excluded(expanded, excluded_days(remote_events, tz)))
        stats.fetched += len(remote_events)

    before = store.events
    merged = apply_fetch(before, accepted, window, fetched, tz)
    stats.replaced += len(fetched)
    stats.removed += len(before) + len(fetched) - len(merged)
    store.replace_events(merged)
    for calendar_id in accepted:
        store.mark_applied(calendar_id, sequence)

    covered = len(accepted) == len(calendar_ids)
    if covered:
        store.coverage.record(window)
    return covered
