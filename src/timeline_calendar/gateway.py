"""
Calendar provider interface and the records exchanged with it.
"""

from abc import ABC
from abc import abstractmethod
from dataclasses import dataclass
from datetime import date
from datetime import datetime

from timeline_calendar.models import TimeWindow
from timeline_calendar.models import UpdateScope


@dataclass(frozen=True)
class Calendar:
    id: str
    summary: str
    background_color: str | None = None
    primary: bool = False
    access_role: str = "reader"
    visible: bool = False


@dataclass(frozen=True)
class RemoteEvent:
    """One event instance as returned by a provider.

    ``start``/``end`` are dates for all-day events (end exclusive, as
    providers send them) and aware datetimes otherwise.

    ``exdates`` lists instances a series master skips; an override of one
    instance names the start it replaces in ``original_start``.
    """

    remote_id: str
    calendar_id: str
    title: str
    start: date | datetime
    end: date | datetime
    all_day: bool = False
    description: str = ""
    location: str = ""
    color_id: str | None = None
    calendar_color: str | None = None
    recurring_event_id: str | None = None
    rrule: str | None = None
    exdates: tuple[date | datetime, ...] = ()
    original_start: date | datetime | None = None


@dataclass(frozen=True)
class EventDraft:
    """Provider-neutral create/update payload.

    All-day drafts carry dates with an exclusive ``end``; timed drafts carry
    aware datetimes. ``recurring_event_id`` and ``original_start`` identify
    the series and instance when editing one occurrence.
    """

    title: str
    start: date | datetime
    end: date | datetime
    all_day: bool = False
    description: str = ""
    location: str = ""
    color_id: str | None = None
    rrule: str | None = None
    recurring_event_id: str | None = None
    original_start: date | datetime | None = None


class CalendarGateway(ABC):
    """Asynchronous access to a remote calendar provider.

    Implementations raise TransportError for network or server failures and
    AuthError for rejected credentials.
    """

    @abstractmethod
    async def list_calendars(self, auth_token: str | None) -> list[Calendar]: ...

    @abstractmethod
    async def list_events(
        self, auth_token: str | None, calendar_id: str, window: TimeWindow
    ) -> list[RemoteEvent]: ...

    @abstractmethod
    async def create_event(
        self, auth_token: str | None, calendar_id: str, draft: EventDraft
    ) -> RemoteEvent: ...

    @abstractmethod
    async def update_event(
        self,
        auth_token: str | None,
        calendar_id: str,
        remote_id: str,
        draft: EventDraft,
        scope: UpdateScope,
    ) -> RemoteEvent: ...

    @abstractmethod
    async def delete_event(self, auth_token: str | None, calendar_id: str, remote_id: str) -> None: ...

    async def aclose(self) -> None:
        """Release provider resources."""
        return None
