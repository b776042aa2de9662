"""
EventStore — the single owner of the merged event list, the coverage set and
the sync status. Reconciliation code replaces the event list wholesale via
``replace_events``; nothing else mutates it.
"""

import logging
from collections.abc import Iterable

from timeline_calendar.coverage import CoverageTracker
from timeline_calendar.models import Event
from timeline_calendar.models import SyncStateError
from timeline_calendar.models import SyncStatus

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS: dict[SyncStatus, frozenset[SyncStatus]] = {
    SyncStatus.IDLE: frozenset({SyncStatus.SYNCING}),
    SyncStatus.SYNCING: frozenset({SyncStatus.SYNCED, SyncStatus.ERROR}),
    SyncStatus.SYNCED: frozenset({SyncStatus.SYNCING}),
    SyncStatus.ERROR: frozenset({SyncStatus.SYNCING}),
}


def check_transition(current: SyncStatus, target: SyncStatus) -> SyncStatus:
    """Return ``target`` if the lifecycle allows ``current -> target``."""
    if target not in ALLOWED_TRANSITIONS[current]:
        raise SyncStateError(f"Invalid sync transition: {current.value} -> {target.value}")
    return target


class EventStore:
    """Owned calendar state for one session."""

    def __init__(self, events: Iterable[Event] = (), coverage: CoverageTracker | None = None):
        self._events: tuple[Event, ...] = tuple(events)
        self.coverage = coverage or CoverageTracker()
        self.status = SyncStatus.IDLE
        self.last_error: BaseException | None = None
        self._sequence = 0
        self._applied: dict[str, int] = {}
        self._in_flight = 0
        self._batch_failed = False

    # ------------------------------------------------------------------ #
    # Events                                                               #
    # ------------------------------------------------------------------ #

    @property
    def events(self) -> tuple[Event, ...]:
        return self._events

    def replace_events(self, events: Iterable[Event]) -> None:
        self._events = tuple(events)

    def get(self, event_id: str) -> Event | None:
        for event in self._events:
            if event.id == event_id:
                return event
        return None

    # ------------------------------------------------------------------ #
    # Sync lifecycle                                                       #
    # ------------------------------------------------------------------ #

    def transition(self, target: SyncStatus) -> None:
        previous = self.status
        self.status = check_transition(self.status, target)
        logger.debug("Sync status %s -> %s", previous.value, target.value)

    def begin_fetch(self) -> int:
        """Register an in-flight fetch and return its request sequence number."""
        if self.status != SyncStatus.SYNCING:
            self.transition(SyncStatus.SYNCING)
            self._batch_failed = False
            self.last_error = None
        self._in_flight += 1
        self._sequence += 1
        return self._sequence

    def finish_fetch(self, error: BaseException | None = None) -> None:
        """Settle one in-flight fetch; the last one decides synced vs error."""
        self._in_flight -= 1
        if error is not None:
            self._batch_failed = True
            self.last_error = error
        if self._in_flight == 0:
            self.transition(SyncStatus.ERROR if self._batch_failed else SyncStatus.SYNCED)

    def accepts(self, calendar_id: str, sequence: int) -> bool:
        """False when a newer response for ``calendar_id`` was already applied."""
        return sequence > self._applied.get(calendar_id, 0)

    def mark_applied(self, calendar_id: str, sequence: int) -> None:
        self._applied[calendar_id] = max(sequence, self._applied.get(calendar_id, 0))
