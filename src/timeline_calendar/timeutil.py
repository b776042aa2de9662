"""
Stateless time-of-day helpers shared by layout, recurrence and drag.
"""

import math

QUARTER_HOUR = 15
MINUTES_PER_DAY = 24 * 60


def time_to_minutes(value: str) -> int:
    """Convert ``HH:MM`` to minutes after midnight."""
    hours, minutes = value.split(":")
    return int(hours) * 60 + int(minutes)


def minutes_to_time(minutes: int | float) -> str:
    """Convert minutes after midnight to a zero-padded ``HH:MM`` string.

    Hours wrap modulo 24 and minutes modulo 60, so values past midnight
    fold back into the same day.
    """
    total = int(minutes)
    hours = (total // 60) % 24
    mins = total % 60
    return f"{hours:02d}:{mins:02d}"


def snap_to_quarter_hour(minutes: int | float) -> int:
    """Round to the nearest multiple of 15 minutes; ties round up."""
    return int(math.floor(minutes / QUARTER_HOUR + 0.5)) * QUARTER_HOUR


def clamp_non_negative(minutes: int | float) -> int | float:
    return max(0, minutes)


def duration_minutes(start: str, end: str) -> int:
    return time_to_minutes(end) - time_to_minutes(start)


def ranges_overlap(a_start: int, a_end: int, b_start: int, b_end: int) -> bool:
    """Half-open overlap test: touching ranges do not overlap."""
    return a_start < b_end and a_end > b_start


# ---------------------------------------------------------------------------
# Pixel geometry
# ---------------------------------------------------------------------------


def slot_height(compactness: int) -> int:
    """Height in pixels of one hour row for a 0-100 compactness setting."""
    return round(30 + (compactness / 100) * 50)


def event_geometry(start: str, end: str, hour_height: int) -> tuple[float, float]:
    """Return ``(top, height)`` in pixels for an event in a day column."""
    top = time_to_minutes(start) / 60 * hour_height
    height = duration_minutes(start, end) / 60 * hour_height
    return top, height


def shift_by_pixels(start: str, delta_y: float, hour_height: int) -> str:
    """Translate a vertical pointer delta into a new, snapped start time.

    The result never goes before 00:00.
    """
    pixels_per_minute = hour_height / 60
    moved = time_to_minutes(start) + delta_y / pixels_per_minute
    return minutes_to_time(snap_to_quarter_hour(clamp_non_negative(moved)))


def reschedule(start: str, end: str, new_start: str) -> tuple[str, str]:
    """Move ``start``/``end`` so the event begins at ``new_start``, keeping its length."""
    new_start_minutes = time_to_minutes(new_start)
    return new_start, minutes_to_time(new_start_minutes + duration_minutes(start, end))
