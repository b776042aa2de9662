"""
Tracking of time windows already synchronised with the remote provider.
"""

import calendar
import logging
from collections.abc import Iterable
from datetime import date
from datetime import datetime
from datetime import timedelta

from timeline_calendar.models import CalendarView
from timeline_calendar.models import TimeWindow

logger = logging.getLogger(__name__)


def merge(windows: Iterable[TimeWindow], new: TimeWindow) -> list[TimeWindow]:
    """Insert ``new`` and coalesce overlapping or touching windows.

    Returns a new list sorted by start; the input is not modified.
    """
    ordered = sorted([*windows, new], key=lambda w: (w.start, w.end))
    merged: list[TimeWindow] = []
    for window in ordered:
        if merged and window.start <= merged[-1].end:
            last = merged[-1]
            merged[-1] = TimeWindow(last.start, max(last.end, window.end))
        else:
            merged.append(window)
    return merged


def is_covered(windows: Iterable[TimeWindow], query: TimeWindow) -> bool:
    """True when a single window contains ``query`` entirely.

    A query spread over several windows counts as not covered; the caller
    re-fetches a little more than strictly needed instead.
    """
    return any(window.contains(query) for window in windows)


def _shift_months(moment: datetime, months: int) -> datetime:
    total = moment.month - 1 + months
    year = moment.year + total // 12
    month = total % 12 + 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


def fetch_window(visible: TimeWindow, pad_months: int = 1) -> TimeWindow:
    """Enlarge ``visible`` by ``pad_months`` on each side."""
    return TimeWindow(
        _shift_months(visible.start, -pad_months),
        _shift_months(visible.end, pad_months),
    )


def view_days(view: CalendarView, anchor: date) -> tuple[date, date]:
    """First and last day ``view`` shows around ``anchor``.

    Weeks run Sunday to Saturday; a month view spans the whole calendar
    month of ``anchor``.
    """
    if view is CalendarView.DAY:
        return anchor, anchor
    if view is CalendarView.WEEK:
        first = anchor - timedelta(days=(anchor.weekday() + 1) % 7)
        return first, first + timedelta(days=6)
    last_day = calendar.monthrange(anchor.year, anchor.month)[1]
    return anchor.replace(day=1), anchor.replace(day=last_day)


class CoverageTracker:
    """Coverage set for one session.

    The set only grows. Windows are recorded after a successful fetch,
    never when a fetch is merely requested.
    """

    def __init__(self, pad_months: int = 1, windows: Iterable[TimeWindow] = ()):
        self.pad_months = pad_months
        self._windows: list[TimeWindow] = []
        for window in windows:
            self._windows = merge(self._windows, window)

    @property
    def windows(self) -> tuple[TimeWindow, ...]:
        return tuple(self._windows)

    def is_covered(self, window: TimeWindow) -> bool:
        return is_covered(self._windows, window)

    def needs_fetch(self, visible: TimeWindow) -> TimeWindow | None:
        """Return the padded window to request, or None when already covered."""
        if self.is_covered(visible):
            logger.debug("Window %s – %s already covered", visible.start, visible.end)
            return None
        return fetch_window(visible, self.pad_months)

    def record(self, window: TimeWindow) -> None:
        self._windows = merge(self._windows, window)
        logger.debug("Coverage now %d window(s)", len(self._windows))
