"""
Tests for EventStore: sync lifecycle and request-sequence bookkeeping.
"""

import pytest

from tests.conftest import make_event
from timeline_calendar.models import SyncStateError
from timeline_calendar.models import SyncStatus
from timeline_calendar.models import TransportError
from timeline_calendar.store import check_transition
from timeline_calendar.store import EventStore


class TestTransitions:
    @pytest.mark.parametrize(
        "current,target",
        [
            (SyncStatus.IDLE, SyncStatus.SYNCING),
            (SyncStatus.SYNCING, SyncStatus.SYNCED),
            (SyncStatus.SYNCING, SyncStatus.ERROR),
            (SyncStatus.ERROR, SyncStatus.SYNCING),
            (SyncStatus.SYNCED, SyncStatus.SYNCING),
        ],
    )
    def test_allowed(self, current, target):
        assert check_transition(current, target) is target

    @pytest.mark.parametrize(
        "current,target",
        [
            (SyncStatus.IDLE, SyncStatus.SYNCED),
            (SyncStatus.IDLE, SyncStatus.ERROR),
            (SyncStatus.SYNCED, SyncStatus.ERROR),
            (SyncStatus.ERROR, SyncStatus.SYNCED),
            (SyncStatus.SYNCING, SyncStatus.IDLE),
            (SyncStatus.SYNCING, SyncStatus.SYNCING),
        ],
    )
    def test_rejected(self, current, target):
        with pytest.raises(SyncStateError):
            check_transition(current, target)

    def test_store_transition_raises_and_keeps_status(self):
        store = EventStore()
        with pytest.raises(SyncStateError):
            store.transition(SyncStatus.SYNCED)
        assert store.status is SyncStatus.IDLE


class TestFetchLifecycle:
    def test_successful_fetch(self):
        store = EventStore()
        store.begin_fetch()
        assert store.status is SyncStatus.SYNCING
        store.finish_fetch()
        assert store.status is SyncStatus.SYNCED
        assert store.last_error is None

    def test_failed_fetch_records_error(self):
        store = EventStore()
        store.begin_fetch()
        error = TransportError("boom")
        store.finish_fetch(error)
        assert store.status is SyncStatus.ERROR
        assert store.last_error is error

    def test_error_is_retryable(self):
        store = EventStore()
        store.begin_fetch()
        store.finish_fetch(TransportError("boom"))
        store.begin_fetch()
        assert store.status is SyncStatus.SYNCING
        assert store.last_error is None
        store.finish_fetch()
        assert store.status is SyncStatus.SYNCED

    def test_overlapping_fetches_settle_once(self):
        store = EventStore()
        store.begin_fetch()
        store.begin_fetch()
        store.finish_fetch(TransportError("first"))
        assert store.status is SyncStatus.SYNCING
        store.finish_fetch()
        assert store.status is SyncStatus.ERROR

    def test_sequences_are_monotonic(self):
        store = EventStore()
        first = store.begin_fetch()
        second = store.begin_fetch()
        assert second > first


class TestSequenceGuard:
    def test_older_response_rejected_after_newer_applied(self):
        store = EventStore()
        old = store.begin_fetch()
        new = store.begin_fetch()
        assert store.accepts("cal", new)
        store.mark_applied("cal", new)
        assert not store.accepts("cal", old)

    def test_calendars_are_tracked_independently(self):
        store = EventStore()
        old = store.begin_fetch()
        new = store.begin_fetch()
        store.mark_applied("a", new)
        assert store.accepts("b", old)


class TestEvents:
    def test_replace_and_get(self):
        store = EventStore()
        store.replace_events([make_event("a"), make_event("b")])
        assert store.get("b").id == "b"
        assert store.get("missing") is None
        assert isinstance(store.events, tuple)
