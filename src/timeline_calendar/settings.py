"""
Settings persistence collaborator.

The core only reads ``current_view``, ``visible_calendars`` and
``recent_colors``; any other key of the stored blob is carried through
untouched on save.
"""

import logging
import sqlite3

from timeline_calendar.db import LocalEventDatabase
from timeline_calendar.models import CalendarError
from timeline_calendar.models import NotFoundError
from timeline_calendar.models import Settings

logger = logging.getLogger(__name__)

RECENT_COLORS_LIMIT = 8

_CORE_KEYS = ("currentView", "visibleCalendars", "recentColors")


def settings_from_blob(blob: dict) -> Settings:
    extra = {k: v for k, v in blob.items() if k not in _CORE_KEYS}
    return Settings(
        current_view=blob.get("currentView") or "week",
        visible_calendars=set(blob.get("visibleCalendars") or ()),
        recent_colors=list(blob.get("recentColors") or ())[:RECENT_COLORS_LIMIT],
        extra=extra,
    )


def settings_to_blob(settings: Settings) -> dict:
    blob = dict(settings.extra)
    blob["currentView"] = settings.current_view
    blob["visibleCalendars"] = sorted(settings.visible_calendars)
    blob["recentColors"] = list(settings.recent_colors)
    return blob


def remember_color(settings: Settings, color: str) -> Settings:
    """Move ``color`` to the front of the recent-colors list."""
    colors = [color, *(c for c in settings.recent_colors if c != color)]
    settings.recent_colors = colors[:RECENT_COLORS_LIMIT]
    return settings


class SettingsRepository:
    """Loads and saves settings blobs keyed by user."""

    def __init__(self, db: LocalEventDatabase):
        self.db = db

    def load(self, user_key: str) -> Settings:
        """Return stored settings; raises NotFoundError when none exist."""
        blob = self.db.get_settings_blob(user_key)
        if blob is None:
            raise NotFoundError(f"No settings stored for {user_key!r}")
        return settings_from_blob(blob)

    def load_or_default(self, user_key: str) -> Settings:
        try:
            return self.load(user_key)
        except NotFoundError:
            logger.debug("No settings for %s, using defaults", user_key)
            return Settings()

    def save(self, user_key: str, settings: Settings) -> None:
        try:
            self.db.put_settings_blob(user_key, settings_to_blob(settings))
            self.db.commit()
        except sqlite3.Error as e:
            raise CalendarError(f"Failed to save settings for {user_key!r}: {e}") from e
