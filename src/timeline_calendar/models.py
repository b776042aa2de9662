"""
Pure data models — no provider, httpx or sqlite imports.
"""

import enum
from dataclasses import dataclass
from dataclasses import field
from datetime import date
from datetime import datetime
from pathlib import Path
from typing import Any

DEFAULT_DB = Path.home() / ".local/share/timeline-calendar.db"
DEFAULT_CONFIG = Path.home() / ".config/timeline-calendar.conf"

# Canonical time-of-day carried by all-day events for duration math.
ALL_DAY_START = "00:00"
ALL_DAY_END = "23:59"


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class CalendarError(Exception):
    """Base exception for calendar errors."""

    pass


class TransportError(CalendarError):
    """Provider unreachable or returned a server-side failure. Retryable."""

    pass


class AuthError(CalendarError):
    """Credential expired or rejected. Requires re-authentication."""

    pass


class ValidationError(CalendarError):
    """Malformed recurrence rule or event draft; never reaches a gateway."""

    pass


class NotFoundError(CalendarError):
    """Requested object (settings blob, event) does not exist."""

    pass


class SyncStateError(CalendarError):
    """Illegal sync lifecycle transition."""

    pass


# ---------------------------------------------------------------------------
# Recurrence
# ---------------------------------------------------------------------------


class Frequency(str, enum.Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    YEARLY = "yearly"


@dataclass(frozen=True)
class Never:
    """Series without an end; bounded by the expander's occurrence cap."""


@dataclass(frozen=True)
class UntilDate:
    until: date


@dataclass(frozen=True)
class Count:
    count: int


EndCondition = Never | UntilDate | Count


@dataclass(frozen=True)
class RecurrenceRule:
    """Restricted recurrence rule.

    ``days_of_week`` uses 0=Sunday .. 6=Saturday and is only consulted for
    weekly rules.
    """

    frequency: Frequency
    interval: int = 1
    days_of_week: frozenset[int] = frozenset()
    end: EndCondition = field(default_factory=Never)

    def __post_init__(self):
        try:
            object.__setattr__(self, "frequency", Frequency(self.frequency))
        except ValueError:
            raise ValidationError(f"Unknown recurrence frequency: {self.frequency!r}") from None
        if not isinstance(self.interval, int) or self.interval < 1:
            raise ValidationError(f"Recurrence interval must be >= 1, got {self.interval!r}")
        days = frozenset(self.days_of_week)
        bad = sorted(d for d in days if not isinstance(d, int) or not 0 <= d <= 6)
        if bad:
            raise ValidationError(f"Weekday indices must be 0-6, got {bad}")
        object.__setattr__(self, "days_of_week", days)
        if isinstance(self.end, Count) and self.end.count < 1:
            raise ValidationError(f"Recurrence count must be >= 1, got {self.end.count}")
        if not isinstance(self.end, (Never, UntilDate, Count)):
            raise ValidationError(f"Unsupported end condition: {self.end!r}")


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------


class Origin(str, enum.Enum):
    LOCAL = "local"
    REMOTE = "remote"


@dataclass(frozen=True)
class LocalSource:
    """Event authored in the local store."""

    @property
    def origin(self) -> Origin:
        return Origin.LOCAL


@dataclass(frozen=True)
class RemoteSource:
    """Event whose source of truth is the remote provider."""

    calendar_id: str
    remote_id: str

    @property
    def origin(self) -> Origin:
        return Origin.REMOTE


EventSource = LocalSource | RemoteSource


@dataclass(frozen=True)
class Event:
    """A dated calendar entry.

    Times are ``HH:MM`` strings. All-day events carry the 00:00/23:59
    sentinel; single-day events have ``end == start``. Occurrences produced
    by the recurrence expander name their base in ``series_id``; stored
    events and bases leave it unset.
    """

    id: str
    title: str
    start: date
    end: date
    start_time: str = "09:00"
    end_time: str = "10:00"
    is_all_day: bool = False
    is_multi_day: bool = False
    color: str = "bg-blue-600"
    description: str = ""
    location: str = ""
    source: EventSource = field(default_factory=LocalSource)
    is_recurring: bool = False
    recurrence: RecurrenceRule | None = None
    recurring_event_id: str | None = None
    # Base id of the series this generated occurrence belongs to.
    series_id: str | None = None

    @property
    def origin(self) -> Origin:
        return self.source.origin

    @property
    def is_remote(self) -> bool:
        return isinstance(self.source, RemoteSource)


# ---------------------------------------------------------------------------
# Windows, layout, sync
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TimeWindow:
    """Closed span ``[start, end]`` of instants."""

    start: datetime
    end: datetime

    def __post_init__(self):
        if self.end < self.start:
            raise ValidationError(f"Window ends before it starts: {self.start} > {self.end}")

    def contains(self, other: "TimeWindow") -> bool:
        return other.start >= self.start and other.end <= self.end

    def intersects(self, start: datetime, end: datetime) -> bool:
        return start <= self.end and end >= self.start


@dataclass(frozen=True)
class LayoutSlot:
    """Horizontal placement of one event in a day column (percentages)."""

    width: float
    left: float
    z_index: int


class SyncStatus(str, enum.Enum):
    IDLE = "idle"
    SYNCING = "syncing"
    SYNCED = "synced"
    ERROR = "error"


class UpdateScope(str, enum.Enum):
    THIS = "this"
    FUTURE = "future"
    ALL = "all"


class CalendarView(str, enum.Enum):
    DAY = "day"
    WEEK = "week"
    MONTH = "month"


@dataclass
class SyncStats:
    """Statistics for one reconciliation pass."""

    fetched: int = 0
    replaced: int = 0
    removed: int = 0
    discarded: int = 0
    errors: int = 0


@dataclass
class CalendarConfig:
    """Configuration for a calendar session."""

    db_path: Path
    provider: str = "none"  # 'none', 'google', 'eds'
    access_token: str | None = None
    user_key: str = "default"
    occurrence_cap: int = 100
    fetch_padding_months: int = 1
    base_z_index: int = 20
    compactness: int = 50
    verbose: bool = False


@dataclass
class Settings:
    """Settings fields the core reads; everything else passes through."""

    current_view: str = "week"
    visible_calendars: set[str] = field(default_factory=set)
    recent_colors: list[str] = field(default_factory=list)
    extra: dict[str, Any] = field(default_factory=dict)
