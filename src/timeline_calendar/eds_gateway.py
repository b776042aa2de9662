"""
Evolution Data Server gateway.

Calendars configured in GNOME Online Accounts (Google, Exchange, CalDAV) are
reached through EDS, which handles authentication itself; the ``auth_token``
argument of the gateway interface is ignored here. EDS returns recurring
series as master components carrying their RRULE, so those events are
unfolded locally by the recurrence expander; their EXDATEs and the
RECURRENCE-ID overrides returned alongside them prune that expansion.
"""

import asyncio
import logging
import re
import uuid
from datetime import date
from datetime import datetime
from datetime import timezone

import gi

gi.require_version("EDataServer", "1.2")
gi.require_version("ECal", "2.0")
gi.require_version("ICalGLib", "3.0")
from gi.repository import ECal
from gi.repository import EDataServer
from gi.repository import GLib
from gi.repository import ICalGLib

from timeline_calendar.gateway import Calendar
from timeline_calendar.gateway import CalendarGateway
from timeline_calendar.gateway import EventDraft
from timeline_calendar.gateway import RemoteEvent
from timeline_calendar.models import NotFoundError
from timeline_calendar.models import TimeWindow
from timeline_calendar.models import TransportError
from timeline_calendar.models import UpdateScope

logger = logging.getLogger(__name__)

# E_CAL_CLIENT_ERROR_OBJECT_NOT_FOUND = 1  (from e-cal-client-error-quark)
_EDS_NOT_FOUND_CODE = 1
_EDS_CLIENT_ERROR_DOMAIN = "e-cal-client-error-quark"

_EXDATE_DATE_RE = re.compile(r"^EXDATE[^:\n]*:(\d{8})", re.MULTILINE)

_MOD_TYPES = {
    UpdateScope.THIS: ECal.ObjModType.THIS,
    UpdateScope.FUTURE: ECal.ObjModType.THIS_AND_FUTURE,
    UpdateScope.ALL: ECal.ObjModType.ALL,
}


def is_not_found_error(e: Exception) -> bool:
    """Return True when EDS reports that a calendar object does not exist."""
    if isinstance(e, GLib.Error):
        domain = e.domain or ""
        if e.code == _EDS_NOT_FOUND_CODE and _EDS_CLIENT_ERROR_DOMAIN in domain:
            return True
    return "object not found" in str(e).lower()


def _ical_value(value: date | datetime) -> str:
    if isinstance(value, datetime):
        return value.astimezone(timezone.utc).strftime("%Y%m%dT%H%M%SZ")
    return value.strftime("%Y%m%d")


def _ical_line(name: str, value: date | datetime) -> str:
    if isinstance(value, datetime):
        return f"{name}:{_ical_value(value)}"
    return f"{name};VALUE=DATE:{_ical_value(value)}"


def _escape(text: str) -> str:
    return (
        text.replace("\\", "\\\\").replace(";", "\\;").replace(",", "\\,").replace("\n", "\\n")
    )


def draft_to_ical(uid: str, draft: EventDraft, recurrence_id: date | datetime | None = None) -> str:
    """Return a VEVENT iCal string (no VCALENDAR wrapper) for ``draft``."""
    lines = [
        "BEGIN:VEVENT",
        f"UID:{uid}",
        f"SUMMARY:{_escape(draft.title)}",
        _ical_line("DTSTART", draft.start),
        _ical_line("DTEND", draft.end),
        f"DTSTAMP:{datetime.now(timezone.utc):%Y%m%dT%H%M%SZ}",
    ]
    if recurrence_id is not None:
        lines.append(_ical_line("RECURRENCE-ID", recurrence_id))
    if draft.description:
        lines.append(f"DESCRIPTION:{_escape(draft.description)}")
    if draft.location:
        lines.append(f"LOCATION:{_escape(draft.location)}")
    if draft.rrule:
        rrule = draft.rrule if draft.rrule.upper().startswith("RRULE:") else f"RRULE:{draft.rrule}"
        lines.append(rrule)
    lines.append("END:VEVENT")
    return "\r\n".join(lines) + "\r\n"


def _from_ical_time(t: ICalGLib.Time) -> date | datetime:
    if t.is_date():
        return date(t.get_year(), t.get_month(), t.get_day())
    zone = t.get_timezone()
    ts = t.as_timet_with_zone(zone) if zone else t.as_timet()
    return datetime.fromtimestamp(ts, tz=timezone.utc).astimezone()


def _exdates(vevent: ICalGLib.Component) -> tuple[date | datetime, ...]:
    """EXDATE values of ``vevent``.

    Some EDS backends hand back EXDATEs that libical cannot read through
    the property API; the raw iCal text is scanned for their dates then.
    """
    values = []
    prop = vevent.get_first_property(ICalGLib.PropertyKind.EXDATE_PROPERTY)
    while prop:
        t = prop.get_exdate()
        if t is not None and not t.is_null_time():
            values.append(_from_ical_time(t))
        prop = vevent.get_next_property(ICalGLib.PropertyKind.EXDATE_PROPERTY)
    if not values:
        for m in _EXDATE_DATE_RE.finditer(vevent.as_ical_string() or ""):
            values.append(datetime.strptime(m.group(1), "%Y%m%d").date())
    return tuple(values)


def _vevent(comp: ICalGLib.Component) -> ICalGLib.Component | None:
    if comp.isa() == ICalGLib.ComponentKind.VCALENDAR_COMPONENT:
        return comp.get_first_component(ICalGLib.ComponentKind.VEVENT_COMPONENT)
    return comp


def component_to_remote_event(obj, calendar_id: str) -> RemoteEvent | None:
    """Convert an EDS object (string or Component) into a RemoteEvent."""
    comp = ICalGLib.Component.new_from_string(obj) if isinstance(obj, str) else obj
    vevent = _vevent(comp)
    if vevent is None:
        return None

    status = vevent.get_first_property(ICalGLib.PropertyKind.STATUS_PROPERTY)
    if status and (status.get_value_as_string() or "").strip().upper() == "CANCELLED":
        return None

    dtstart = vevent.get_dtstart()
    if dtstart is None or dtstart.is_null_time():
        return None
    dtend = vevent.get_dtend()
    if dtend is None or dtend.is_null_time():
        dtend = dtstart

    uid = vevent.get_uid()
    remote_id = uid
    rid = vevent.get_first_property(ICalGLib.PropertyKind.RECURRENCEID_PROPERTY)
    if rid:
        remote_id = f"{uid}@{rid.get_value_as_string()}"

    rrule = None
    rrule_prop = vevent.get_first_property(ICalGLib.PropertyKind.RRULE_PROPERTY)
    if rrule_prop:
        rrule = "RRULE:" + rrule_prop.get_value_as_string()

    original_start = None
    if rid:
        recurrence_id = vevent.get_recurrenceid()
        if recurrence_id is not None and not recurrence_id.is_null_time():
            original_start = _from_ical_time(recurrence_id)

    def text(kind) -> str:
        prop = vevent.get_first_property(kind)
        return (prop.get_value_as_string() or "") if prop else ""

    return RemoteEvent(
        remote_id=remote_id,
        calendar_id=calendar_id,
        title=vevent.get_summary() or "Untitled Event",
        start=_from_ical_time(dtstart),
        end=_from_ical_time(dtend),
        all_day=dtstart.is_date(),
        description=text(ICalGLib.PropertyKind.DESCRIPTION_PROPERTY),
        location=text(ICalGLib.PropertyKind.LOCATION_PROPERTY),
        recurring_event_id=uid if (rid or rrule) else None,
        rrule=rrule,
        exdates=_exdates(vevent) if rrule else (),
        original_start=original_start,
    )


class EDSCalendarGateway(CalendarGateway):
    """Gateway over the calendars registered with Evolution Data Server."""

    def __init__(self, registry: EDataServer.SourceRegistry | None = None, timeout: int = 10):
        self.registry = registry
        self.timeout = timeout
        self._clients: dict[str, ECal.Client] = {}

    # ------------------------------------------------------------------ #
    # Blocking helpers (run in a worker thread)                            #
    # ------------------------------------------------------------------ #

    def _registry(self) -> EDataServer.SourceRegistry:
        if self.registry is None:
            try:
                self.registry = EDataServer.SourceRegistry.new_sync(None)
            except GLib.Error as e:
                raise TransportError(f"EDS registry unreachable: {e.message}") from e
        return self.registry

    def _client(self, calendar_id: str) -> ECal.Client:
        client = self._clients.get(calendar_id)
        if client is not None:
            return client
        source = self._registry().ref_source(calendar_id)
        if not source:
            raise NotFoundError(f"Calendar with UID '{calendar_id}' not found in EDS")
        try:
            client = ECal.Client.connect_sync(
                source, ECal.ClientSourceType.EVENTS, self.timeout, None
            )
        except GLib.Error as e:
            raise TransportError(f"Failed to connect to calendar {calendar_id}: {e.message}") from e
        self._clients[calendar_id] = client
        return client

    def _list_calendars_sync(self) -> list[Calendar]:
        registry = self._registry()
        calendars = []
        for source in registry.list_sources(EDataServer.SOURCE_EXTENSION_CALENDAR):
            extension = source.get_extension(EDataServer.SOURCE_EXTENSION_CALENDAR)
            calendars.append(
                Calendar(
                    id=source.get_uid() or "",
                    summary=source.get_display_name() or "Unnamed Calendar",
                    background_color=extension.get_color(),
                    access_role="owner",
                    visible=bool(extension.get_selected()),
                )
            )
        return calendars

    def _list_events_sync(self, calendar_id: str, window: TimeWindow) -> list[RemoteEvent]:
        client = self._client(calendar_id)
        sexp = (
            f'(occur-in-time-range? (make-time "{_ical_value(window.start)}") '
            f'(make-time "{_ical_value(window.end)}"))'
        )
        try:
            _, objects = client.get_object_list_sync(sexp, None)
        except GLib.Error as e:
            raise TransportError(f"Failed to fetch events: {e.message}") from e
        events = []
        for obj in objects:
            event = component_to_remote_event(obj, calendar_id)
            if event is not None:
                events.append(event)
        return events

    def _get_sync(self, calendar_id: str, uid: str) -> RemoteEvent:
        client = self._client(calendar_id)
        try:
            _, comp = client.get_object_sync(uid, None, None)
        except GLib.Error as e:
            if is_not_found_error(e):
                raise NotFoundError(f"Event {uid} not found in {calendar_id}") from e
            raise TransportError(f"Failed to read event {uid}: {e.message}") from e
        event = component_to_remote_event(comp, calendar_id)
        if event is None:
            raise NotFoundError(f"Event {uid} has no usable start in {calendar_id}")
        return event

    def _create_sync(self, calendar_id: str, draft: EventDraft) -> RemoteEvent:
        client = self._client(calendar_id)
        comp = ICalGLib.Component.new_from_string(draft_to_ical(str(uuid.uuid4()), draft))
        try:
            success, out_uid = client.create_object_sync(comp, ECal.OperationFlags.NONE, None)
        except GLib.Error as e:
            raise TransportError(f"Failed to create event: {e.message}") from e
        if not success:
            raise TransportError("Failed to create event")
        return self._get_sync(calendar_id, out_uid or comp.get_uid())

    def _update_sync(
        self, calendar_id: str, remote_id: str, draft: EventDraft, scope: UpdateScope
    ) -> RemoteEvent:
        client = self._client(calendar_id)
        uid = remote_id.split("@", 1)[0]
        recurrence_id = draft.original_start if draft.recurring_event_id else None
        mod_type = _MOD_TYPES[scope] if recurrence_id is not None else ECal.ObjModType.ALL
        comp = ICalGLib.Component.new_from_string(draft_to_ical(uid, draft, recurrence_id))
        try:
            success = client.modify_object_sync(comp, mod_type, ECal.OperationFlags.NONE, None)
        except GLib.Error as e:
            if is_not_found_error(e):
                raise NotFoundError(f"Event {remote_id} not found in {calendar_id}") from e
            raise TransportError(f"Failed to modify event {remote_id}: {e.message}") from e
        if not success:
            raise TransportError(f"Failed to modify event {remote_id}")
        return self._get_sync(calendar_id, uid)

    def _delete_sync(self, calendar_id: str, remote_id: str) -> None:
        client = self._client(calendar_id)
        uid = remote_id.split("@", 1)[0]
        try:
            client.remove_object_sync(
                uid, None, ECal.ObjModType.ALL, ECal.OperationFlags.NONE, None
            )
        except GLib.Error as e:
            if is_not_found_error(e):
                logger.debug("Event %s already removed from %s", remote_id, calendar_id)
                return
            raise TransportError(f"Failed to remove event {remote_id}: {e.message}") from e

    # ------------------------------------------------------------------ #
    # CalendarGateway interface                                            #
    # ------------------------------------------------------------------ #

    async def list_calendars(self, auth_token: str | None) -> list[Calendar]:
        return await asyncio.to_thread(self._list_calendars_sync)

    async def list_events(
        self, auth_token: str | None, calendar_id: str, window: TimeWindow
    ) -> list[RemoteEvent]:
        return await asyncio.to_thread(self._list_events_sync, calendar_id, window)

    async def create_event(
        self, auth_token: str | None, calendar_id: str, draft: EventDraft
    ) -> RemoteEvent:
        return await asyncio.to_thread(self._create_sync, calendar_id, draft)

    async def update_event(
        self,
        auth_token: str | None,
        calendar_id: str,
        remote_id: str,
        draft: EventDraft,
        scope: UpdateScope,
    ) -> RemoteEvent:
        return await asyncio.to_thread(self._update_sync, calendar_id, remote_id, draft, scope)

    async def delete_event(self, auth_token: str | None, calendar_id: str, remote_id: str) -> None:
        await asyncio.to_thread(self._delete_sync, calendar_id, remote_id)
