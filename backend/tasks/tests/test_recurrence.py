# tasks/tests/test_recurrence.py
"""
Recurrence Rule Tests
=====================

Pure date arithmetic for recurring tasks.

Test Categories:
----------------
1. Next occurrence per frequency (daily, weekly, monthly, yearly)
2. Interval handling across week boundaries (weeks start on Sunday)
3. Month-length clamping and nth-weekday rules
4. Termination by count and end date
5. Occurrence series, descriptions, validation and presets

Reference calendar: January 1, 2024 is a Monday.
"""

import datetime

from django.test import SimpleTestCase

from tasks.ai_engine.recurrence import (
    RECURRENCE_PRESETS,
    RecurrenceFrequency,
    RecurrenceRule,
    add_months,
    create_recurrence_rule,
    day_of_week,
    describe_recurrence_rule,
    generate_occurrences,
    is_valid_recurrence_rule,
    next_occurrence,
)


def dt(year: int, month: int, day: int, hour: int = 0, minute: int = 0) -> datetime.datetime:
    return datetime.datetime(year, month, day, hour, minute)


# ===========================================================================
# HELPERS
# ===========================================================================


class TestDateHelpers(SimpleTestCase):

    def test_day_of_week_starts_on_sunday(self) -> None:
        self.assertEqual(day_of_week(dt(2024, 1, 7)), 0)   # Sunday
        self.assertEqual(day_of_week(dt(2024, 1, 1)), 1)   # Monday
        self.assertEqual(day_of_week(dt(2024, 1, 6)), 6)   # Saturday

    def test_add_months_clamps_day(self) -> None:
        self.assertEqual(add_months(dt(2023, 1, 31), 1), dt(2023, 2, 28))
        self.assertEqual(add_months(dt(2024, 1, 31), 1), dt(2024, 2, 29))
        self.assertEqual(add_months(dt(2024, 11, 15), 3), dt(2025, 2, 15))


# ===========================================================================
# NEXT OCCURRENCE
# ===========================================================================


class TestDailyRecurrence(SimpleTestCase):

    def test_next_day_at_start_of_day(self) -> None:
        rule = RecurrenceRule(frequency=RecurrenceFrequency.DAILY)

        result = next_occurrence(rule, dt(2024, 1, 1, 15, 30))

        self.assertEqual(result.next_date, dt(2024, 1, 2))
        self.assertFalse(result.is_complete)
        self.assertEqual(result.occurrence_number, 1)

    def test_interval(self) -> None:
        rule = RecurrenceRule(frequency=RecurrenceFrequency.DAILY, interval=3)

        self.assertEqual(next_occurrence(rule, dt(2024, 1, 1)).next_date, dt(2024, 1, 4))

    def test_unknown_frequency_returns_none(self) -> None:
        self.assertIsNone(next_occurrence(RecurrenceRule(frequency="hourly"), dt(2024, 1, 1)))


class TestWeeklyRecurrence(SimpleTestCase):

    def test_without_days_adds_interval_weeks(self) -> None:
        rule = RecurrenceRule(frequency=RecurrenceFrequency.WEEKLY, interval=2)

        self.assertEqual(next_occurrence(rule, dt(2024, 1, 1, 10)).next_date, dt(2024, 1, 15))

    def test_next_matching_day_in_same_week(self) -> None:
        rule = RecurrenceRule(frequency=RecurrenceFrequency.WEEKLY, days_of_week=[1, 3])

        # Monday -> Wednesday
        self.assertEqual(next_occurrence(rule, dt(2024, 1, 1, 10)).next_date, dt(2024, 1, 3))

    def test_interval_does_not_jump_within_same_week(self) -> None:
        rule = RecurrenceRule(frequency=RecurrenceFrequency.WEEKLY, interval=2, days_of_week=[1, 3])

        self.assertEqual(next_occurrence(rule, dt(2024, 1, 1, 10)).next_date, dt(2024, 1, 3))

    def test_interval_jumps_when_crossing_into_next_week(self) -> None:
        rule = RecurrenceRule(frequency=RecurrenceFrequency.WEEKLY, interval=2, days_of_week=[1, 3])

        # Wednesday -> next Monday is in a new week, skip one extra week
        self.assertEqual(next_occurrence(rule, dt(2024, 1, 3, 10)).next_date, dt(2024, 1, 15))

    def test_saturday_to_sunday_crosses_week_boundary(self) -> None:
        rule = RecurrenceRule(frequency=RecurrenceFrequency.WEEKLY, interval=2, days_of_week=[0])

        self.assertEqual(next_occurrence(rule, dt(2024, 1, 6)).next_date, dt(2024, 1, 14))

    def test_sunday_to_saturday_stays_in_week(self) -> None:
        rule = RecurrenceRule(frequency=RecurrenceFrequency.WEEKLY, interval=2, days_of_week=[6])

        self.assertEqual(next_occurrence(rule, dt(2024, 1, 7)).next_date, dt(2024, 1, 13))


class TestMonthlyRecurrence(SimpleTestCase):

    def test_plain_monthly_clamps_to_month_end(self) -> None:
        rule = RecurrenceRule(frequency=RecurrenceFrequency.MONTHLY)

        self.assertEqual(next_occurrence(rule, dt(2023, 1, 31)).next_date, dt(2023, 2, 28))

    def test_day_of_month_clamps_in_leap_year(self) -> None:
        rule = RecurrenceRule(frequency=RecurrenceFrequency.MONTHLY, day_of_month=31)

        self.assertEqual(next_occurrence(rule, dt(2024, 1, 31)).next_date, dt(2024, 2, 29))

    def test_day_of_month(self) -> None:
        rule = RecurrenceRule(frequency=RecurrenceFrequency.MONTHLY, day_of_month=15)

        self.assertEqual(next_occurrence(rule, dt(2024, 1, 3)).next_date, dt(2024, 2, 15))

    def test_second_tuesday(self) -> None:
        rule = RecurrenceRule(frequency=RecurrenceFrequency.MONTHLY, week_of_month=2, day_of_week_in_month=2)

        self.assertEqual(next_occurrence(rule, dt(2024, 1, 9)).next_date, dt(2024, 2, 13))

    def test_missing_fifth_weekday_spills_into_next_month(self) -> None:
        rule = RecurrenceRule(frequency=RecurrenceFrequency.MONTHLY, week_of_month=5, day_of_week_in_month=5)

        # February 2024 has four Fridays; the fifth lands on March 1
        self.assertEqual(next_occurrence(rule, dt(2024, 1, 26)).next_date, dt(2024, 3, 1))


class TestYearlyRecurrence(SimpleTestCase):

    def test_leap_day_clamps_to_february_28(self) -> None:
        rule = RecurrenceRule(frequency=RecurrenceFrequency.YEARLY)

        self.assertEqual(next_occurrence(rule, dt(2024, 2, 29)).next_date, dt(2025, 2, 28))


# ===========================================================================
# TERMINATION
# ===========================================================================


class TestTermination(SimpleTestCase):

    def test_count_reached(self) -> None:
        rule = RecurrenceRule(frequency=RecurrenceFrequency.DAILY, count=3)
        start = dt(2024, 1, 5, 9)

        result = next_occurrence(rule, start, occurrence_count=3)

        self.assertTrue(result.is_complete)
        self.assertEqual(result.next_date, start)

    def test_from_date_after_end_date(self) -> None:
        rule = RecurrenceRule(frequency=RecurrenceFrequency.DAILY, end_date=dt(2024, 1, 1))

        self.assertTrue(next_occurrence(rule, dt(2024, 1, 5)).is_complete)

    def test_computed_date_after_end_date(self) -> None:
        rule = RecurrenceRule(frequency=RecurrenceFrequency.DAILY, end_date=dt(2024, 1, 3, 12))
        start = dt(2024, 1, 3, 9)

        result = next_occurrence(rule, start)

        self.assertTrue(result.is_complete)
        self.assertEqual(result.next_date, start)

    def test_aware_from_date_against_naive_end_date(self) -> None:
        rule = RecurrenceRule(frequency=RecurrenceFrequency.DAILY, end_date=dt(2024, 1, 10))
        start = datetime.datetime(2024, 1, 1, 9, tzinfo=datetime.timezone.utc)

        result = next_occurrence(rule, start)

        self.assertFalse(result.is_complete)
        self.assertEqual(result.next_date, datetime.datetime(2024, 1, 2, tzinfo=datetime.timezone.utc))


# ===========================================================================
# SERIES, DESCRIPTION, VALIDATION
# ===========================================================================


class TestGenerateOccurrences(SimpleTestCase):

    def test_series_starts_with_start_date(self) -> None:
        rule = RecurrenceRule(frequency=RecurrenceFrequency.DAILY)

        dates = generate_occurrences(rule, dt(2024, 1, 1, 10), max_occurrences=5)

        self.assertEqual(dates, [dt(2024, 1, day) for day in range(1, 6)])

    def test_count_includes_start_date(self) -> None:
        rule = RecurrenceRule(frequency=RecurrenceFrequency.DAILY, count=3)

        self.assertEqual(len(generate_occurrences(rule, dt(2024, 1, 1))), 3)

    def test_until_date_is_inclusive(self) -> None:
        rule = RecurrenceRule(frequency=RecurrenceFrequency.DAILY)

        dates = generate_occurrences(rule, dt(2024, 1, 1), until_date=dt(2024, 1, 3))

        self.assertEqual(dates, [dt(2024, 1, 1), dt(2024, 1, 2), dt(2024, 1, 3)])

    def test_weekdays_preset_skips_weekend(self) -> None:
        dates = generate_occurrences(RECURRENCE_PRESETS["weekdays"], dt(2024, 1, 4), max_occurrences=4)

        # Thu, Fri, Mon, Tue
        self.assertEqual(dates, [dt(2024, 1, 4), dt(2024, 1, 5), dt(2024, 1, 8), dt(2024, 1, 9)])


class TestDescribeRecurrenceRule(SimpleTestCase):

    def test_daily(self) -> None:
        self.assertEqual(describe_recurrence_rule(RecurrenceRule(frequency="daily")), "Daily")

    def test_weekly_with_interval_and_days(self) -> None:
        rule = RecurrenceRule(frequency="weekly", interval=2, days_of_week=[1, 3])

        self.assertEqual(describe_recurrence_rule(rule), "Every 2 weeks on Monday, Wednesday")

    def test_monthly_ordinals(self) -> None:
        self.assertEqual(
            describe_recurrence_rule(RecurrenceRule(frequency="monthly", day_of_month=22)),
            "Monthly on the 22nd",
        )
        self.assertEqual(
            describe_recurrence_rule(RecurrenceRule(frequency="monthly", day_of_month=12)),
            "Monthly on the 12th",
        )
        self.assertEqual(
            describe_recurrence_rule(
                RecurrenceRule(frequency="monthly", week_of_month=2, day_of_week_in_month=2)
            ),
            "Monthly on the 2nd Tuesday",
        )

    def test_termination_suffix(self) -> None:
        self.assertEqual(describe_recurrence_rule(RecurrenceRule(frequency="daily", count=5)), "Daily, 5 times")
        self.assertEqual(
            describe_recurrence_rule(RecurrenceRule(frequency="daily", end_date=dt(2024, 3, 1))),
            "Daily until 2024-03-01",
        )


class TestRuleValidation(SimpleTestCase):

    def test_presets_are_valid(self) -> None:
        for name, rule in RECURRENCE_PRESETS.items():
            with self.subTest(preset=name):
                self.assertTrue(is_valid_recurrence_rule(rule))

    def test_invalid_rules(self) -> None:
        invalid = [
            RecurrenceRule(frequency="hourly"),
            RecurrenceRule(frequency="daily", interval=0),
            RecurrenceRule(frequency="weekly", days_of_week=[7]),
            RecurrenceRule(frequency="monthly", day_of_month=32),
            RecurrenceRule(frequency="monthly", week_of_month=6, day_of_week_in_month=1),
            RecurrenceRule(frequency="daily", count=0),
        ]
        for rule in invalid:
            with self.subTest(rule=rule):
                self.assertFalse(is_valid_recurrence_rule(rule))

    def test_create_parses_end_date_and_stamps_creation(self) -> None:
        rule = create_recurrence_rule("weekly", days_of_week=[1], end_date="2024-06-30T00:00:00")

        self.assertEqual(rule.end_date, dt(2024, 6, 30))
        self.assertIsNotNone(rule.created_at)
        self.assertEqual(RecurrenceRule.from_dict(rule.to_dict()).end_date, dt(2024, 6, 30))
