"""
Recurrence expansion and RRULE conversion for the supported rule subset.
"""

import calendar
import dataclasses
import logging
import re
from collections.abc import Iterable
from datetime import date
from datetime import timedelta

from timeline_calendar.models import Count
from timeline_calendar.models import Event
from timeline_calendar.models import Frequency
from timeline_calendar.models import Never
from timeline_calendar.models import RecurrenceRule
from timeline_calendar.models import UntilDate
from timeline_calendar.models import ValidationError

logger = logging.getLogger(__name__)

# Total occurrences (base included) produced for a series that never ends.
NEVER_ENDING_OCCURRENCE_CAP = 100

# RRULE BYDAY codes indexed by weekday (0=Sunday).
_BYDAY_CODES = ("SU", "MO", "TU", "WE", "TH", "FR", "SA")

_RRULE_UNTIL_RE = re.compile(r"^(\d{4})(\d{2})(\d{2})")


def _weekday(d: date) -> int:
    """Weekday index with 0=Sunday, matching ``RecurrenceRule.days_of_week``."""
    return (d.weekday() + 1) % 7


def _add_months(base: date, months: int) -> date:
    """Add calendar months, saturating the day to the target month's length."""
    total = base.month - 1 + months
    year = base.year + total // 12
    month = total % 12 + 1
    day = min(base.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def _next_weekly(cursor: date, rule: RecurrenceRule) -> date | None:
    """Walk forward day by day to the next selected weekday.

    With ``interval > 1`` the walk skips ``interval - 1`` whole weeks each
    time it crosses into a new week. The walk is bounded by ``7 * interval``
    steps; an empty weekday set yields no further occurrence.
    """
    if not rule.days_of_week:
        return None
    for _ in range(7 * rule.interval):
        cursor += timedelta(days=1)
        if rule.interval > 1 and _weekday(cursor) == 0:
            cursor += timedelta(weeks=rule.interval - 1)
        if _weekday(cursor) in rule.days_of_week:
            return cursor
    return None


def _nth_date(base: date, rule: RecurrenceRule, step: int) -> date:
    """Date of the ``step``-th occurrence for non-weekly frequencies."""
    if rule.frequency == Frequency.DAILY:
        return base + timedelta(days=rule.interval * step)
    if rule.frequency == Frequency.MONTHLY:
        return _add_months(base, rule.interval * step)
    return _add_months(base, 12 * rule.interval * step)


def _occurrence(base: Event, sequence: int, on: date) -> Event:
    delta = on - base.start
    return dataclasses.replace(
        base,
        id=f"{base.id}-{sequence}",
        series_id=base.id,
        start=on,
        end=base.end + delta,
    )


def expand(event: Event, max_occurrences: int = NEVER_ENDING_OCCURRENCE_CAP) -> list[Event]:
    """Unfold a recurring event into its occurrences.

    The base event is always the first element and keeps its id. Generated
    occurrences copy every field of the base, get the id ``{base_id}-{n}``
    with ``series_id`` set to the base id, and are shifted by the number of
    days the cursor moved, so multi-day spans keep their length.

    Weekly rules walk day by day to the next selected weekday. With
    ``interval > 1`` every crossing into a new week (Sunday) jumps
    ``interval - 1`` further weeks, so only every n-th week is visited.
    """
    rule = event.recurrence
    if not event.is_recurring or rule is None:
        return [event]

    if isinstance(rule.end, Count):
        limit = rule.end.count
    elif isinstance(rule.end, Never):
        limit = max_occurrences
    else:
        limit = None
    until = rule.end.until if isinstance(rule.end, UntilDate) else None

    occurrences = [event]
    cursor = event.start
    sequence = 1
    while limit is None or len(occurrences) < limit:
        try:
            if rule.frequency == Frequency.WEEKLY:
                next_date = _next_weekly(cursor, rule)
            else:
                next_date = _nth_date(event.start, rule, sequence)
        except (OverflowError, ValueError):
            logger.debug("Expansion of %s ran past the supported date range", event.id)
            break
        if next_date is None:
            break
        if until is not None and next_date > until:
            break
        occurrences.append(_occurrence(event, sequence, next_date))
        cursor = next_date
        sequence += 1

    logger.debug("Expanded %s into %d occurrence(s)", event.id, len(occurrences))
    return occurrences


def expand_all(
    events: Iterable[Event], max_occurrences: int = NEVER_ENDING_OCCURRENCE_CAP
) -> list[Event]:
    """Unfold every recurring event in ``events``; others pass through."""
    result: list[Event] = []
    for event in events:
        result.extend(expand(event, max_occurrences))
    return result


def is_series_member(event: Event, base_id: str) -> bool:
    """True for the base itself and for occurrences generated from it."""
    if event.series_id is not None:
        return event.series_id == base_id
    return event.id == base_id


def series_ids(events: Iterable[Event], base_id: str) -> set[str]:
    return {e.id for e in events if is_series_member(e, base_id)}


def base_id_of(event: Event) -> str:
    """Id of the stored base ``event`` was generated from (its own id for a base)."""
    return event.series_id or event.id


# ---------------------------------------------------------------------------
# RRULE text
# ---------------------------------------------------------------------------


def rule_to_rrule(rule: RecurrenceRule) -> str:
    """Render ``rule`` as an ``RRULE:`` line understood by calendar providers."""
    parts = [f"FREQ={rule.frequency.value.upper()}"]
    if rule.interval > 1:
        parts.append(f"INTERVAL={rule.interval}")
    if rule.frequency == Frequency.WEEKLY and rule.days_of_week:
        parts.append("BYDAY=" + ",".join(_BYDAY_CODES[d] for d in sorted(rule.days_of_week)))
    if isinstance(rule.end, UntilDate):
        parts.append(f"UNTIL={rule.end.until:%Y%m%d}")
    elif isinstance(rule.end, Count):
        parts.append(f"COUNT={rule.end.count}")
    return "RRULE:" + ";".join(parts)


def rule_from_rrule(text: str) -> RecurrenceRule:
    """Parse an ``RRULE`` line into a :class:`RecurrenceRule`.

    Raises ValidationError for rules outside the supported subset (for
    example BYMONTHDAY or FREQ=HOURLY).
    """
    body = text.strip()
    if body.upper().startswith("RRULE:"):
        body = body[len("RRULE:") :]

    fields: dict[str, str] = {}
    for part in body.split(";"):
        if not part:
            continue
        key, sep, value = part.partition("=")
        if not sep:
            raise ValidationError(f"Malformed RRULE part: {part!r}")
        fields[key.strip().upper()] = value.strip()

    try:
        frequency = Frequency(fields.pop("FREQ", "").lower())
    except ValueError:
        raise ValidationError(f"Unsupported RRULE frequency in {text!r}") from None

    interval = 1
    if "INTERVAL" in fields:
        try:
            interval = int(fields.pop("INTERVAL"))
        except ValueError:
            raise ValidationError(f"Malformed RRULE interval in {text!r}") from None

    days: set[int] = set()
    if "BYDAY" in fields:
        for code in fields.pop("BYDAY").split(","):
            code = code.strip().upper()
            if code not in _BYDAY_CODES:
                raise ValidationError(f"Unsupported BYDAY value {code!r} in {text!r}")
            days.add(_BYDAY_CODES.index(code))

    end = Never()
    if "UNTIL" in fields:
        m = _RRULE_UNTIL_RE.match(fields.pop("UNTIL"))
        try:
            end = UntilDate(date(int(m.group(1)), int(m.group(2)), int(m.group(3))))
        except (AttributeError, ValueError):
            raise ValidationError(f"Malformed RRULE UNTIL in {text!r}") from None
    elif "COUNT" in fields:
        try:
            end = Count(int(fields.pop("COUNT")))
        except ValueError:
            raise ValidationError(f"Malformed RRULE count in {text!r}") from None

    fields.pop("WKST", None)
    if fields:
        raise ValidationError(f"Unsupported RRULE parts {sorted(fields)} in {text!r}")

    return RecurrenceRule(frequency, interval, frozenset(days), end)
