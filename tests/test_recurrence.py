"""Tests for the recurrence engine."""

from __future__ import annotations

from datetime import date, timedelta

import pytest

from recurrence import (
    DAYS_OF_WEEK,
    RECURRENCE_PATTERNS,
    RecurrenceRule,
    create_recurrence,
    format_label,
    is_known_pattern,
    next_occurrence,
    occurrences_between,
    occurs_on,
    upcoming_occurrences,
)

from .conftest import MONDAY


class TestWeekly:
    def test_mon_wed_fri_occurs_only_on_listed_days(self, mwf_rule):
        assert occurs_on(mwf_rule, MONDAY, date(2024, 1, 1))
        assert not occurs_on(mwf_rule, MONDAY, date(2024, 1, 2))
        assert occurs_on(mwf_rule, MONDAY, date(2024, 1, 3))
        assert occurs_on(mwf_rule, MONDAY, date(2024, 1, 5))
        assert not occurs_on(mwf_rule, MONDAY, date(2024, 1, 6))

    def test_next_scans_same_week_then_wraps(self, mwf_rule):
        assert next_occurrence(mwf_rule, date(2024, 1, 1)) == date(2024, 1, 3)
        assert next_occurrence(mwf_rule, date(2024, 1, 3)) == date(2024, 1, 5)
        assert next_occurrence(mwf_rule, date(2024, 1, 5)) == date(2024, 1, 8)

    def test_without_days_uses_anchor_weekday(self):
        rule = create_recurrence("weekly", interval=2)
        assert occurs_on(rule, MONDAY, date(2024, 1, 15))
        assert not occurs_on(rule, MONDAY, date(2024, 1, 8))
        assert next_occurrence(rule, MONDAY) == date(2024, 1, 15)

    def test_interval_gates_weeks_for_day_sets(self):
        rule = create_recurrence("weekly", days=[1, 3], interval=2)
        assert occurs_on(rule, MONDAY, date(2024, 1, 3))
        assert not occurs_on(rule, MONDAY, date(2024, 1, 8))
        assert occurs_on(rule, MONDAY, date(2024, 1, 15))
        assert next_occurrence(rule, date(2024, 1, 3), anchor=MONDAY) == date(2024, 1, 15)

    def test_sunday_is_day_zero(self):
        rule = create_recurrence("weekly", days=[0])
        assert occurs_on(rule, MONDAY, date(2024, 1, 7))
        assert next_occurrence(rule, MONDAY) == date(2024, 1, 7)


class TestDailyAndWorkweek:
    def test_daily_interval(self):
        rule = create_recurrence("daily", interval=2)
        assert occurs_on(rule, MONDAY, date(2024, 1, 3))
        assert not occurs_on(rule, MONDAY, date(2024, 1, 2))
        assert next_occurrence(rule, MONDAY) == date(2024, 1, 3)
        assert next_occurrence(rule, date(2024, 1, 2), anchor=MONDAY) == date(2024, 1, 3)

    def test_workweek_skips_weekend(self):
        rule = create_recurrence("workweek")
        friday = date(2024, 1, 5)
        assert next_occurrence(rule, friday) == date(2024, 1, 8)
        assert not occurs_on(rule, MONDAY, date(2024, 1, 6))
        assert not occurs_on(rule, MONDAY, date(2024, 1, 7))
        assert occurs_on(rule, MONDAY, date(2024, 1, 9))

    def test_workweek_interval_counts_weeks(self):
        rule = create_recurrence("workweek", interval=2)
        assert not occurs_on(rule, MONDAY, date(2024, 1, 8))
        assert occurs_on(rule, MONDAY, date(2024, 1, 15))


class TestMonthlyYearly:
    def test_month_end_clamps_to_last_day(self):
        rule = create_recurrence("monthly")
        jan31 = date(2024, 1, 31)
        assert next_occurrence(rule, jan31) == date(2024, 2, 29)
        assert occurs_on(rule, jan31, date(2024, 2, 29))
        assert not occurs_on(rule, jan31, date(2024, 2, 28))

    def test_anchor_keeps_day_of_month_after_short_month(self):
        rule = create_recurrence("monthly")
        jan31 = date(2024, 1, 31)
        assert next_occurrence(rule, date(2024, 2, 29), anchor=jan31) == date(2024, 3, 31)

    def test_fixed_anchor_never_drifts(self):
        rule = create_recurrence("monthly")
        anchor = date(2024, 1, 31)
        current = anchor
        seen = []
        for _ in range(12):
            current = next_occurrence(rule, current, anchor=anchor)
            seen.append(current)
        assert seen[1] == date(2024, 3, 31)
        assert seen[3] == date(2024, 5, 31)
        assert all(d.day == 31 or (d + timedelta(days=1)).day == 1 for d in seen)

    def test_monthly_interval(self):
        rule = create_recurrence("monthly", interval=3)
        anchor = date(2024, 1, 15)
        assert next_occurrence(rule, anchor) == date(2024, 4, 15)
        assert not occurs_on(rule, anchor, date(2024, 2, 15))
        assert occurs_on(rule, anchor, date(2024, 7, 15))

    def test_leap_day_yearly(self):
        rule = create_recurrence("yearly")
        leap = date(2024, 2, 29)
        assert next_occurrence(rule, leap) == date(2025, 2, 28)
        assert occurs_on(rule, leap, date(2025, 2, 28))
        assert next_occurrence(rule, date(2027, 2, 28), anchor=leap) == date(2028, 2, 29)


class TestEdgeCases:
    def test_nothing_before_anchor(self, mwf_rule):
        assert not occurs_on(mwf_rule, MONDAY, date(2023, 12, 29))

    def test_disabled_and_missing_rules(self, mwf_rule):
        disabled = mwf_rule.model_copy(update={"enabled": False})
        assert not occurs_on(disabled, MONDAY, MONDAY)
        assert next_occurrence(disabled, MONDAY) is None
        assert not occurs_on(None, MONDAY, MONDAY)
        assert next_occurrence(None, MONDAY) is None

    def test_unknown_pattern_never_recurs(self):
        rule = RecurrenceRule(pattern="fortnightly")
        assert not occurs_on(rule, MONDAY, MONDAY)
        assert next_occurrence(rule, MONDAY) is None
        assert format_label(rule) == "Custom"
        assert not is_known_pattern("fortnightly")

    def test_rule_input_is_normalized(self):
        rule = RecurrenceRule.model_validate({"pattern": "DAILY", "interval": 0, "days": [5, 1, 1, 9]})
        assert rule.pattern == "daily"
        assert rule.interval == 1
        assert rule.days == [1, 5]

    def test_dict_rules_and_string_dates(self):
        rule = {"enabled": True, "pattern": "daily", "days": [], "interval": 1}
        assert occurs_on(rule, "2024-01-01", "2024-01-02")
        assert next_occurrence(rule, "2024-01-01") == date(2024, 1, 2)

    def test_timestamps_reduce_to_calendar_dates(self):
        rule = create_recurrence("weekly")
        # 23:30 in New York is already Tuesday in UTC
        assert occurs_on(rule, "2024-01-01T23:30:00-05:00", "2024-01-09")
        assert not occurs_on(rule, "2024-01-01T23:30:00-05:00", "2024-01-08")

    def test_create_recurrence_keeps_days_for_weekly_only(self):
        assert create_recurrence("daily", days=[1]).days == []
        assert create_recurrence("weekly", days=[1]).days == [1]


class TestLabels:
    @pytest.mark.parametrize(
        "rule, label",
        [
            (None, "Does not repeat"),
            (create_recurrence("daily"), "Every day"),
            (create_recurrence("daily", interval=3), "Every 3 days"),
            (create_recurrence("workweek"), "Weekdays"),
            (create_recurrence("weekly", days=[1, 3]), "Every Mon, Wed"),
            (create_recurrence("weekly", days=[1], interval=2), "Every Mon, every 2 weeks"),
            (create_recurrence("weekly"), "Every week"),
            (create_recurrence("weekly", interval=2), "Every 2 weeks"),
            (create_recurrence("monthly"), "Every month"),
            (create_recurrence("monthly", interval=3), "Every 3 months"),
            (create_recurrence("yearly"), "Every year"),
            (create_recurrence("yearly", interval=2), "Every 2 years"),
        ],
    )
    def test_label(self, rule, label):
        assert format_label(rule) == label

    def test_every_listed_pattern_is_supported_everywhere(self):
        for entry in RECURRENCE_PATTERNS:
            rule = create_recurrence(entry["value"])
            assert is_known_pattern(entry["value"])
            assert format_label(rule) != "Custom"
            assert next_occurrence(rule, MONDAY) is not None

    def test_days_table(self):
        assert [d["value"] for d in DAYS_OF_WEEK] == list(range(7))
        assert DAYS_OF_WEEK[0]["fullLabel"] == "Sunday"


class TestProperties:
    RULES = [
        create_recurrence("daily", interval=3),
        create_recurrence("workweek", interval=2),
        create_recurrence("weekly", days=[0, 2, 6], interval=2),
        create_recurrence("weekly", interval=3),
        create_recurrence("monthly", interval=2),
        create_recurrence("yearly"),
    ]

    @pytest.mark.parametrize("rule", RULES)
    def test_next_is_later_and_is_an_occurrence(self, rule):
        anchor = date(2024, 1, 31)
        for offset in range(0, 120, 7):
            current = anchor + timedelta(days=offset)
            nxt = next_occurrence(rule, current, anchor=anchor)
            assert nxt is not None and nxt > current
            assert occurs_on(rule, anchor, nxt)

    @pytest.mark.parametrize("rule", RULES[:4])
    def test_next_skips_no_occurrence(self, rule):
        anchor = date(2024, 1, 31)
        nxt = next_occurrence(rule, anchor, anchor=anchor)
        between = occurrences_between(rule, anchor, anchor + timedelta(days=1), nxt - timedelta(days=1))
        assert between == []

    def test_occurrences_between(self, mwf_rule):
        got = occurrences_between(mwf_rule, MONDAY, "2024-01-01", "2024-01-14")
        assert got == [
            date(2024, 1, 1), date(2024, 1, 3), date(2024, 1, 5),
            date(2024, 1, 8), date(2024, 1, 10), date(2024, 1, 12),
        ]

    def test_upcoming_occurrences_stay_on_the_anchor_day(self):
        rule = create_recurrence("monthly")
        got = upcoming_occurrences(rule, "2024-01-31", 4)
        assert got == [date(2024, 1, 31), date(2024, 2, 29), date(2024, 3, 31), date(2024, 4, 30)]
        assert upcoming_occurrences(RecurrenceRule(enabled=False), "2024-01-31", 4) == []
