"""
TimelineSynchronizer — thin orchestrator that delegates to sync submodules.
"""

import logging
from datetime import tzinfo

from timeline_calendar.coverage import CoverageTracker
from timeline_calendar.coverage import fetch_window
from timeline_calendar.db import LocalEventDatabase
from timeline_calendar.gateway import Calendar
from timeline_calendar.gateway import CalendarGateway
from timeline_calendar.models import CalendarConfig
from timeline_calendar.models import CalendarError
from timeline_calendar.models import Event
from timeline_calendar.models import SyncStats
from timeline_calendar.models import TimeWindow
from timeline_calendar.models import UpdateScope
from timeline_calendar.recurrence import expand_all
from timeline_calendar.store import EventStore
from timeline_calendar.sync.edit import create_event
from timeline_calendar.sync.edit import delete_event
from timeline_calendar.sync.edit import update_event
from timeline_calendar.sync.fetch import run_fetch
from timeline_calendar.sync.utils import visible_calendar_ids


class TimelineSynchronizer:
    """Merges local events with one remote provider for a calendar session."""

    def __init__(
        self,
        config: CalendarConfig,
        gateway: CalendarGateway | None = None,
        db: LocalEventDatabase | None = None,
        store: EventStore | None = None,
        tz: tzinfo | None = None,
    ):
        self.config = config
        self.gateway = gateway
        self.db = db
        self.tz = tz
        self.logger = logging.getLogger(__name__)
        self.stats = SyncStats()
        self.store = store or EventStore(coverage=CoverageTracker(config.fetch_padding_months))
        self.calendars: dict[str, Calendar] = {}
        self.chosen_calendars: set[str] = set()

    # ------------------------------------------------------------------ #
    # Loading                                                              #
    # ------------------------------------------------------------------ #

    def load_local(self) -> int:
        """Replace the local part of the store with the database's events."""
        if self.db is None:
            return 0
        bases = self.db.load_events()
        occurrences = expand_all(bases, self.config.occurrence_cap)
        remote = [e for e in self.store.events if e.is_remote]
        self.store.replace_events([*occurrences, *remote])
        self.logger.debug("Loaded %d local base event(s)", len(bases))
        return len(bases)

    async def load_calendars(self) -> list[Calendar]:
        if self.gateway is None:
            return []
        self.store.begin_fetch()
        try:
            calendars = await self.gateway.list_calendars(self.config.access_token)
        except BaseException as e:
            self.logger.error(f"Listing calendars failed: {e}")
            self.stats.errors += 1
            self.store.finish_fetch(e)
            raise
        self.store.finish_fetch()
        self.calendars = {c.id: c for c in calendars}
        return calendars

    def calendar_ids(self) -> list[str]:
        return visible_calendar_ids(self.calendars.values(), self.chosen_calendars)

    # ------------------------------------------------------------------ #
    # Navigation                                                           #
    # ------------------------------------------------------------------ #

    async def navigate(self, visible: TimeWindow) -> SyncStats:
        """Make sure ``visible`` is covered, fetching a padded window if not."""
        if self.gateway is None:
            return self.stats
        window = self.store.coverage.needs_fetch(visible)
        if window is None:
            return self.stats
        await self._fetch(window)
        return self.stats

    async def refresh(self, visible: TimeWindow) -> SyncStats:
        """Re-fetch around ``visible`` even when it is already covered."""
        if self.gateway is not None:
            await self._fetch(fetch_window(visible, self.config.fetch_padding_months))
        return self.stats

    async def refresh_calendar(self, calendar_id: str) -> None:
        """Re-fetch every covered window of one calendar."""
        for window in self.store.coverage.windows:
            await run_fetch(
                self.config, self.stats, self.logger, self.store, self.gateway,
                [calendar_id], window, self.calendars, self.tz,
            )

    async def _fetch(self, window: TimeWindow) -> None:
        if not self.calendars:
            await self.load_calendars()
        await run_fetch(
            self.config, self.stats, self.logger, self.store, self.gateway,
            self.calendar_ids(), window, self.calendars, self.tz,
        )

    # ------------------------------------------------------------------ #
    # Edits                                                                #
    # ------------------------------------------------------------------ #

    async def create_event(self, event: Event, calendar_id: str | None = None) -> Event:
        return await create_event(
            self.config, self.logger, self.store, self.gateway, event,
            calendar_id, self.db, self.calendars, self.tz,
        )

    async def update_event(self, edited: Event, scope: UpdateScope | None = None) -> Event:
        """Apply an edit; provider-side series changes trigger a re-fetch."""
        current = self.store.get(edited.id)
        updated = await update_event(
            self.config, self.logger, self.store, self.gateway, edited,
            scope, self.db, self.calendars, self.tz,
        )
        if current is not None and current.is_remote and current.is_recurring:
            if scope != UpdateScope.THIS or current.recurrence is not None:
                try:
                    await self.refresh_calendar(current.source.calendar_id)
                except CalendarError as e:
                    # The edit itself succeeded; the store carries the error state.
                    self.logger.warning(f"Re-fetch after editing {current.id} failed: {e}")
        return updated

    async def delete_event(self, event_id: str) -> None:
        await delete_event(
            self.config, self.logger, self.store, self.gateway, event_id, self.db
        )

    async def aclose(self) -> None:
        if self.gateway is not None:
            await self.gateway.aclose()
