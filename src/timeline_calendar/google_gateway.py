"""
Google Calendar v3 REST gateway on httpx.
"""

import logging
import re
from datetime import date
from datetime import datetime
from datetime import timedelta
from typing import Any
from urllib.parse import quote

import httpx

from timeline_calendar.gateway import Calendar
from timeline_calendar.gateway import CalendarGateway
from timeline_calendar.gateway import EventDraft
from timeline_calendar.gateway import RemoteEvent
from timeline_calendar.models import AuthError
from timeline_calendar.models import NotFoundError
from timeline_calendar.models import TimeWindow
from timeline_calendar.models import TransportError
from timeline_calendar.models import UpdateScope

logger = logging.getLogger(__name__)

GOOGLE_CALENDAR_API_BASE_URL = "https://www.googleapis.com/calendar/v3"

_PAGE_SIZE = 250

_AUTH_STATUS_CODES = frozenset({401, 403})
_GONE_STATUS_CODES = frozenset({404, 410})

# COUNT / UNTIL parts of an RRULE line, with their separating semicolon.
_RRULE_END_RE = re.compile(r";?(?:COUNT|UNTIL)=[^;]*", re.IGNORECASE)


def _parse_instant(value: str) -> datetime:
    # fromisoformat() only accepts a trailing "Z" from Python 3.11 on.
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    return datetime.fromisoformat(value)


def _safe_error_message(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        payload = None
    if isinstance(payload, dict):
        error = payload.get("error")
        if isinstance(error, dict) and isinstance(error.get("message"), str):
            return " ".join(error["message"].split())[:200]
        if isinstance(error, str) and error.strip():
            return " ".join(error.split())[:200]
    text = response.text.strip()
    return " ".join(text.split())[:200] if text else "request failed without an error payload"


def _event_time(value: date | datetime, all_day: bool) -> dict[str, str]:
    if all_day:
        day = value.date() if isinstance(value, datetime) else value
        return {"date": day.isoformat()}
    return {"dateTime": value.isoformat()}


def draft_to_body(draft: EventDraft) -> dict[str, Any]:
    """Google event resource for ``draft``."""
    body: dict[str, Any] = {
        "summary": draft.title,
        "description": draft.description,
        "location": draft.location,
        "start": _event_time(draft.start, draft.all_day),
        "end": _event_time(draft.end, draft.all_day),
    }
    if draft.color_id:
        body["colorId"] = draft.color_id
    if draft.rrule:
        body["recurrence"] = [draft.rrule]
    return body


def item_to_remote_event(item: dict[str, Any], calendar_id: str) -> RemoteEvent | None:
    """Convert a Google event resource; None for cancelled or dateless items."""
    if item.get("status") == "cancelled":
        return None
    start = item.get("start") or {}
    end = item.get("end") or {}
    all_day = "date" in start
    try:
        if all_day:
            start_value: date | datetime = date.fromisoformat(start["date"])
            end_value: date | datetime = date.fromisoformat(end["date"])
        else:
            start_value = _parse_instant(start["dateTime"])
            end_value = _parse_instant(end["dateTime"])
    except (KeyError, TypeError, ValueError):
        logger.warning("Skipping event %s without usable start/end", item.get("id"))
        return None

    rrule = None
    for line in item.get("recurrence") or []:
        if line.upper().startswith("RRULE:"):
            rrule = line
            break

    return RemoteEvent(
        remote_id=item["id"],
        calendar_id=calendar_id,
        title=item.get("summary") or "Untitled Event",
        start=start_value,
        end=end_value,
        all_day=all_day,
        description=item.get("description") or "",
        location=item.get("location") or "",
        color_id=item.get("colorId"),
        recurring_event_id=item.get("recurringEventId"),
        rrule=rrule,
    )


def truncate_recurrence(lines: list[str], last_day: date) -> list[str]:
    """Rewrite RRULE lines so the series ends on ``last_day``."""
    result = []
    for line in lines:
        if line.upper().startswith("RRULE:"):
            line = _RRULE_END_RE.sub("", line) + f";UNTIL={last_day:%Y%m%d}"
        result.append(line)
    return result


def _open_ended(rrule: str) -> str:
    return _RRULE_END_RE.sub("", rrule)


class GoogleCalendarGateway(CalendarGateway):
    """Google Calendar provider using a bearer access token per call."""

    def __init__(
        self,
        http_client: httpx.AsyncClient | None = None,
        base_url: str = GOOGLE_CALENDAR_API_BASE_URL,
    ):
        self._owns_http_client = http_client is None
        self._http_client = http_client or httpx.AsyncClient(timeout=30.0)
        self._base_url = base_url.rstrip("/")

    async def aclose(self) -> None:
        if self._owns_http_client:
            await self._http_client.aclose()

    # ------------------------------------------------------------------ #
    # Request plumbing                                                     #
    # ------------------------------------------------------------------ #

    async def _request(
        self,
        method: str,
        path: str,
        auth_token: str | None,
        *,
        params: dict[str, Any] | None = None,
        json_body: dict[str, Any] | None = None,
    ) -> httpx.Response:
        if not auth_token:
            raise AuthError("No access token available. Please sign in again.")
        try:
            response = await self._http_client.request(
                method,
                f"{self._base_url}{path}",
                params=params,
                json=json_body,
                headers={"Authorization": f"Bearer {auth_token}"},
            )
        except httpx.HTTPError as e:
            raise TransportError(f"Google Calendar request failed: {e}") from e

        logger.debug("%s %s -> %d", method, path, response.status_code)
        if response.status_code in _AUTH_STATUS_CODES:
            raise AuthError(
                f"Google Calendar rejected the credentials ({response.status_code}): "
                f"{_safe_error_message(response)}"
            )
        if response.status_code in _GONE_STATUS_CODES:
            raise NotFoundError(f"{method} {path}: {_safe_error_message(response)}")
        if response.status_code < 200 or response.status_code >= 300:
            raise TransportError(
                f"Google Calendar request failed ({response.status_code}): "
                f"{_safe_error_message(response)}"
            )
        return response

    async def _json(self, *args, **kwargs) -> dict[str, Any]:
        response = await self._request(*args, **kwargs)
        try:
            payload = response.json()
        except ValueError as e:
            raise TransportError("Google Calendar returned invalid JSON") from e
        if not isinstance(payload, dict):
            raise TransportError("Google Calendar returned an unexpected JSON payload shape")
        return payload

    @staticmethod
    def _events_path(calendar_id: str, event_id: str | None = None) -> str:
        path = f"/calendars/{quote(calendar_id, safe='')}/events"
        if event_id:
            path += f"/{quote(event_id, safe='')}"
        return path

    # ------------------------------------------------------------------ #
    # CalendarGateway interface                                            #
    # ------------------------------------------------------------------ #

    async def list_calendars(self, auth_token: str | None) -> list[Calendar]:
        payload = await self._json("GET", "/users/me/calendarList", auth_token)
        calendars = []
        for item in payload.get("items") or []:
            calendars.append(
                Calendar(
                    id=item["id"],
                    summary=item.get("summary") or item["id"],
                    background_color=item.get("backgroundColor"),
                    primary=bool(item.get("primary")),
                    access_role=item.get("accessRole") or "reader",
                    visible=bool(item.get("primary") or item.get("selected")),
                )
            )
        return calendars

    async def list_events(
        self, auth_token: str | None, calendar_id: str, window: TimeWindow
    ) -> list[RemoteEvent]:
        params: dict[str, Any] = {
            "timeMin": window.start.isoformat(),
            "timeMax": window.end.isoformat(),
            "singleEvents": "true",
            "orderBy": "startTime",
            "maxResults": _PAGE_SIZE,
        }
        events: list[RemoteEvent] = []
        while True:
            payload = await self._json(
                "GET", self._events_path(calendar_id), auth_token, params=params
            )
            for item in payload.get("items") or []:
                event = item_to_remote_event(item, calendar_id)
                if event is not None:
                    events.append(event)
            page_token = payload.get("nextPageToken")
            if not page_token:
                break
            params = {**params, "pageToken": page_token}
        logger.debug("Fetched %d event(s) from %s", len(events), calendar_id)
        return events

    async def create_event(
        self, auth_token: str | None, calendar_id: str, draft: EventDraft
    ) -> RemoteEvent:
        payload = await self._json(
            "POST", self._events_path(calendar_id), auth_token, json_body=draft_to_body(draft)
        )
        return self._converted(payload, calendar_id)

    async def update_event(
        self,
        auth_token: str | None,
        calendar_id: str,
        remote_id: str,
        draft: EventDraft,
        scope: UpdateScope,
    ) -> RemoteEvent:
        series_id = draft.recurring_event_id
        if scope == UpdateScope.THIS or not series_id:
            payload = await self._json(
                "PUT",
                self._events_path(calendar_id, remote_id),
                auth_token,
                params={"sendUpdates": "none"},
                json_body=draft_to_body(draft),
            )
            return self._converted(payload, calendar_id)

        master = await self._json("GET", self._events_path(calendar_id, series_id), auth_token)
        if scope == UpdateScope.ALL:
            return await self._update_series(auth_token, calendar_id, series_id, master, draft)
        return await self._split_series(auth_token, calendar_id, series_id, master, draft)

    async def _update_series(
        self,
        auth_token: str | None,
        calendar_id: str,
        series_id: str,
        master: dict[str, Any],
        draft: EventDraft,
    ) -> RemoteEvent:
        """Apply ``draft`` to the whole series, keeping the series' first date."""
        current = item_to_remote_event(master, calendar_id)
        if current is None:
            raise NotFoundError(f"Series {series_id} has no usable start")
        length = draft.end - draft.start
        first = current.start.date() if isinstance(current.start, datetime) else current.start
        start: date | datetime = first
        if not draft.all_day:
            start = datetime.combine(first, draft.start.timetz())
        body = draft_to_body(
            EventDraft(
                title=draft.title,
                start=start,
                end=start + length,
                all_day=draft.all_day,
                description=draft.description,
                location=draft.location,
                color_id=draft.color_id,
                rrule=draft.rrule or current.rrule,
            )
        )
        payload = await self._json(
            "PUT",
            self._events_path(calendar_id, series_id),
            auth_token,
            params={"sendUpdates": "all"},
            json_body=body,
        )
        return self._converted(payload, calendar_id)

    async def _split_series(
        self,
        auth_token: str | None,
        calendar_id: str,
        series_id: str,
        master: dict[str, Any],
        draft: EventDraft,
    ) -> RemoteEvent:
        """End the series before the edited instance and start a new one from it."""
        pivot = draft.original_start or draft.start
        pivot_day = pivot.date() if isinstance(pivot, datetime) else pivot
        recurrence = list(master.get("recurrence") or [])
        master["recurrence"] = truncate_recurrence(recurrence, pivot_day - timedelta(days=1))
        await self._json(
            "PUT",
            self._events_path(calendar_id, series_id),
            auth_token,
            params={"sendUpdates": "none"},
            json_body=master,
        )

        rrule = draft.rrule
        if rrule is None:
            rrule = next(
                (_open_ended(line) for line in recurrence if line.upper().startswith("RRULE:")),
                None,
            )
        body = draft_to_body(
            EventDraft(
                title=draft.title,
                start=draft.start,
                end=draft.end,
                all_day=draft.all_day,
                description=draft.description,
                location=draft.location,
                color_id=draft.color_id,
                rrule=rrule,
            )
        )
        payload = await self._json(
            "POST", self._events_path(calendar_id), auth_token, json_body=body
        )
        return self._converted(payload, calendar_id)

    async def delete_event(self, auth_token: str | None, calendar_id: str, remote_id: str) -> None:
        try:
            await self._request("DELETE", self._events_path(calendar_id, remote_id), auth_token)
        except NotFoundError:
            # Already gone on the provider side; the caller's goal is met.
            logger.debug("Event %s already deleted from %s", remote_id, calendar_id)

    @staticmethod
    def _converted(payload: dict[str, Any], calendar_id: str) -> RemoteEvent:
        event = item_to_remote_event(payload, calendar_id)
        if event is None:
            raise TransportError("Google Calendar returned an event without usable start/end")
        return event
