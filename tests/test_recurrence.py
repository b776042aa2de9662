"""
Tests for recurrence expansion and RRULE conversion.
"""

from datetime import date
from datetime import timedelta

import pytest

from tests.conftest import make_event
from timeline_calendar.models import Count
from timeline_calendar.models import Frequency
from timeline_calendar.models import Never
from timeline_calendar.models import RecurrenceRule
from timeline_calendar.models import UntilDate
from timeline_calendar.models import ValidationError
from timeline_calendar.recurrence import NEVER_ENDING_OCCURRENCE_CAP
from timeline_calendar.recurrence import base_id_of
from timeline_calendar.recurrence import expand
from timeline_calendar.recurrence import expand_all
from timeline_calendar.recurrence import is_series_member
from timeline_calendar.recurrence import rule_from_rrule
from timeline_calendar.recurrence import rule_to_rrule
from timeline_calendar.recurrence import series_ids


def recurring(rule: RecurrenceRule, **overrides):
    return make_event("base", is_recurring=True, recurrence=rule, **overrides)


# ---------------------------------------------------------------------------
# RecurrenceRule validation
# ---------------------------------------------------------------------------


class TestRuleValidation:
    def test_frequency_accepts_strings(self):
        assert RecurrenceRule("weekly").frequency is Frequency.WEEKLY

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"frequency": "hourly"},
            {"frequency": "daily", "interval": 0},
            {"frequency": "weekly", "days_of_week": frozenset({7})},
            {"frequency": "daily", "end": Count(0)},
        ],
    )
    def test_invalid_rules_raise(self, kwargs):
        with pytest.raises(ValidationError):
            RecurrenceRule(**kwargs)


# ---------------------------------------------------------------------------
# Expansion
# ---------------------------------------------------------------------------


class TestExpand:
    def test_non_recurring_event_passes_through(self):
        event = make_event()
        assert expand(event) == [event]

    @pytest.mark.parametrize("frequency", list(Frequency))
    @pytest.mark.parametrize("n", [1, 2, 7, 30])
    def test_count_yields_exactly_n(self, frequency, n):
        days = frozenset({1, 3, 5}) if frequency == Frequency.WEEKLY else frozenset()
        event = recurring(RecurrenceRule(frequency, 1, days, Count(n)))
        assert len(expand(event)) == n

    def test_weekly_without_days_yields_base_only(self):
        event = recurring(RecurrenceRule(Frequency.WEEKLY, 1, frozenset(), Never()))
        assert expand(event) == [event]

    def test_base_keeps_id_and_occurrences_are_numbered(self):
        event = recurring(RecurrenceRule(Frequency.DAILY, end=Count(3)))
        ids = [e.id for e in expand(event)]
        assert ids == ["base", "base-1", "base-2"]

    def test_daily_interval(self):
        event = recurring(RecurrenceRule(Frequency.DAILY, 3, end=Count(4)))
        starts = [e.start for e in expand(event)]
        assert starts == [date(2026, 3, 2) + timedelta(days=3 * i) for i in range(4)]

    def test_weekly_days(self):
        # 2026-03-02 is a Monday; Monday=1, Wednesday=3, Friday=5.
        event = recurring(RecurrenceRule(Frequency.WEEKLY, 1, frozenset({1, 3, 5}), Count(5)))
        starts = [e.start for e in expand(event)]
        assert starts == [
            date(2026, 3, 2),
            date(2026, 3, 4),
            date(2026, 3, 6),
            date(2026, 3, 9),
            date(2026, 3, 11),
        ]

    def test_weekly_interval_two_skips_alternate_weeks(self):
        event = recurring(RecurrenceRule(Frequency.WEEKLY, 2, frozenset({1}), Count(4)))
        starts = [e.start for e in expand(event)]
        assert starts == [date(2026, 3, 2) + timedelta(weeks=2 * i) for i in range(4)]

    def test_monthly_saturates_to_month_end(self):
        event = recurring(
            RecurrenceRule(Frequency.MONTHLY, end=Count(4)),
            start=date(2026, 1, 31),
            end=date(2026, 1, 31),
        )
        starts = [e.start for e in expand(event)]
        assert starts == [date(2026, 1, 31), date(2026, 2, 28), date(2026, 3, 31), date(2026, 4, 30)]

    def test_yearly_leap_day(self):
        event = recurring(
            RecurrenceRule(Frequency.YEARLY, end=Count(3)),
            start=date(2024, 2, 29),
            end=date(2024, 2, 29),
        )
        starts = [e.start for e in expand(event)]
        assert starts == [date(2024, 2, 29), date(2025, 2, 28), date(2026, 2, 28)]

    def test_until_date_is_inclusive(self):
        event = recurring(RecurrenceRule(Frequency.DAILY, end=UntilDate(date(2026, 3, 5))))
        starts = [e.start for e in expand(event)]
        assert starts[-1] == date(2026, 3, 5)
        assert len(starts) == 4

    def test_until_before_base_yields_base_only(self):
        event = recurring(RecurrenceRule(Frequency.DAILY, end=UntilDate(date(2026, 1, 1))))
        assert len(expand(event)) == 1

    def test_never_is_capped(self):
        event = recurring(RecurrenceRule(Frequency.DAILY, end=Never()))
        assert len(expand(event)) == NEVER_ENDING_OCCURRENCE_CAP

    def test_cap_is_configurable(self):
        event = recurring(RecurrenceRule(Frequency.DAILY, end=Never()))
        assert len(expand(event, max_occurrences=10)) == 10

    def test_multi_day_span_is_preserved(self):
        event = recurring(
            RecurrenceRule(Frequency.WEEKLY, 1, frozenset({1}), Count(3)),
            end=date(2026, 3, 4),
            is_multi_day=True,
        )
        for occurrence in expand(event):
            assert occurrence.end - occurrence.start == timedelta(days=2)

    def test_occurrences_copy_fields(self):
        event = recurring(
            RecurrenceRule(Frequency.DAILY, end=Count(2)),
            color="bg-red-600",
            location="Room 4",
            start_time="13:00",
            end_time="14:30",
        )
        occurrence = expand(event)[1]
        assert occurrence.color == "bg-red-600"
        assert occurrence.location == "Room 4"
        assert (occurrence.start_time, occurrence.end_time) == ("13:00", "14:30")

    def test_expansion_stops_at_date_limit(self):
        event = recurring(
            RecurrenceRule(Frequency.YEARLY, end=Never()),
            start=date(9998, 6, 1),
            end=date(9998, 6, 1),
        )
        assert [e.start.year for e in expand(event)] == [9998, 9999]

    def test_expand_all_mixes_plain_and_recurring(self):
        plain = make_event("plain")
        series = recurring(RecurrenceRule(Frequency.DAILY, end=Count(3)))
        assert len(expand_all([plain, series])) == 4


class TestSeriesIds:
    def test_occurrences_name_their_base(self):
        events = expand(recurring(RecurrenceRule(Frequency.DAILY, end=Count(3))))
        assert [e.series_id for e in events] == [None, "base", "base"]

    def test_membership_follows_series_id_not_id_text(self):
        base = make_event("standup-2", is_recurring=True, recurrence=RecurrenceRule("daily"))
        lookalike = make_event("standup-2")
        occurrence = make_event("standup-2-1", series_id="standup-2")
        assert is_series_member(base, "standup-2")
        assert is_series_member(occurrence, "standup-2")
        assert not is_series_member(occurrence, "standup")
        assert not is_series_member(make_event("standup-1"), "standup")
        assert is_series_member(lookalike, "standup-2")

    def test_base_id_of(self):
        assert base_id_of(make_event("abc-3")) == "abc-3"
        assert base_id_of(make_event("abc-3", series_id="abc")) == "abc"

    def test_series_ids(self):
        events = expand(recurring(RecurrenceRule(Frequency.DAILY, end=Count(3))))
        events.append(make_event("other"))
        events.append(make_event("base-7"))
        assert series_ids(events, "base") == {"base", "base-1", "base-2"}


# ---------------------------------------------------------------------------
# RRULE text
# ---------------------------------------------------------------------------


class TestRRule:
    def test_to_rrule(self):
        rule = RecurrenceRule(Frequency.WEEKLY, 2, frozenset({1, 3}), Count(10))
        assert rule_to_rrule(rule) == "RRULE:FREQ=WEEKLY;INTERVAL=2;BYDAY=MO,WE;COUNT=10"

    def test_to_rrule_until(self):
        rule = RecurrenceRule(Frequency.DAILY, end=UntilDate(date(2026, 3, 16)))
        assert rule_to_rrule(rule) == "RRULE:FREQ=DAILY;UNTIL=20260316"

    def test_from_rrule(self):
        rule = rule_from_rrule("RRULE:FREQ=WEEKLY;BYDAY=MO,FR;UNTIL=20260316T100000Z")
        assert rule.frequency is Frequency.WEEKLY
        assert rule.days_of_week == frozenset({1, 5})
        assert rule.end == UntilDate(date(2026, 3, 16))

    def test_from_rrule_ignores_wkst(self):
        assert rule_from_rrule("FREQ=DAILY;WKST=MO").frequency is Frequency.DAILY

    @pytest.mark.parametrize(
        "text",
        [
            "RRULE:FREQ=HOURLY",
            "RRULE:FREQ=MONTHLY;BYMONTHDAY=15",
            "RRULE:FREQ=WEEKLY;BYDAY=1MO",
            "RRULE:FREQ=DAILY;UNTIL=2026",
            "RRULE:FREQ=DAILY;COUNT=many",
            "RRULE:FREQ",
        ],
    )
    def test_unsupported_rules_raise(self, text):
        with pytest.raises(ValidationError):
            rule_from_rrule(text)
