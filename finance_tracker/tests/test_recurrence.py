import unittest
from datetime import date, datetime

from finance_tracker.recurrence import (
    add_months,
    format_relative_label,
    month_end,
    next_occurrence,
    normalize_period,
    occurrences_between,
    should_suppress_completed_one_time,
)


class NextOccurrenceTests(unittest.TestCase):
    def test_monthly_jan_31_clamps_to_feb_28(self) -> None:
        self.assertEqual(
            next_occurrence(date(2025, 1, 31), "monthly", date(2025, 2, 1)),
            date(2025, 2, 28),
        )

    def test_monthly_jan_31_clamps_to_feb_29_in_leap_year(self) -> None:
        self.assertEqual(
            next_occurrence(date(2024, 1, 31), "monthly", date(2024, 2, 1)),
            date(2024, 2, 29),
        )

    def test_monthly_clamps_when_rolling_into_next_month(self) -> None:
        self.assertEqual(
            next_occurrence(date(2025, 1, 31), "monthly", date(2025, 3, 31)),
            date(2025, 4, 30),
        )

    def test_monthly_later_this_month(self) -> None:
        self.assertEqual(
            next_occurrence(date(2025, 1, 15), "monthly", date(2025, 3, 10)),
            date(2025, 3, 15),
        )

    def test_monthly_on_the_day_moves_to_next_month(self) -> None:
        self.assertEqual(
            next_occurrence(date(2025, 1, 15), "monthly", datetime(2025, 3, 15, 8, 0)),
            date(2025, 4, 15),
        )

    def test_monthly_rolls_over_year_end(self) -> None:
        self.assertEqual(
            next_occurrence(date(2024, 6, 20), "monthly", date(2024, 12, 25)),
            date(2025, 1, 20),
        )

    def test_yearly_next_year_when_passed(self) -> None:
        self.assertEqual(
            next_occurrence(date(2020, 1, 1), "yearly", date(2025, 2, 1)),
            date(2026, 1, 1),
        )

    def test_yearly_later_this_year(self) -> None:
        self.assertEqual(
            next_occurrence(date(2020, 9, 30), "yearly", date(2025, 2, 1)),
            date(2025, 9, 30),
        )

    def test_yearly_feb_29_clamps_in_non_leap_year(self) -> None:
        self.assertEqual(
            next_occurrence(date(2024, 2, 29), "yearly", date(2025, 1, 10)),
            date(2025, 2, 28),
        )
        self.assertEqual(
            next_occurrence(date(2024, 2, 29), "yearly", date(2025, 3, 1)),
            date(2026, 2, 28),
        )

    def test_weekly_finds_next_matching_weekday(self) -> None:
        # 2025-01-06 is a Monday.
        self.assertEqual(
            next_occurrence(date(2025, 1, 6), "weekly", date(2025, 1, 8)),
            date(2025, 1, 13),
        )

    def test_weekly_on_matching_weekday_is_strictly_after(self) -> None:
        self.assertEqual(
            next_occurrence(date(2025, 1, 6), "weekly", date(2025, 1, 13)),
            date(2025, 1, 20),
        )

    def test_once_returns_future_date_only(self) -> None:
        self.assertEqual(
            next_occurrence(date(2025, 3, 20), "once", date(2025, 3, 1)),
            date(2025, 3, 20),
        )
        self.assertIsNone(next_occurrence(date(2025, 3, 20), "once", date(2025, 3, 20)))
        self.assertIsNone(next_occurrence(date(2025, 3, 20), "once", date(2025, 4, 1)))

    def test_unknown_period_has_no_next_occurrence(self) -> None:
        self.assertIsNone(next_occurrence(date(2025, 1, 1), "daily", date(2025, 2, 1)))


class OccurrencesBetweenTests(unittest.TestCase):
    def test_monthly_month_end_anchor_does_not_drift(self) -> None:
        self.assertEqual(
            occurrences_between(date(2025, 1, 31), "monthly", date(2025, 1, 1), date(2025, 4, 30)),
            [date(2025, 1, 31), date(2025, 2, 28), date(2025, 3, 31), date(2025, 4, 30)],
        )

    def test_monthly_month_end_anchor_in_leap_year(self) -> None:
        self.assertEqual(
            occurrences_between(date(2024, 1, 31), "monthly", date(2024, 1, 1), date(2024, 3, 1)),
            [date(2024, 1, 31), date(2024, 2, 29)],
        )

    def test_yearly_feb_29_anchor_clamps(self) -> None:
        self.assertEqual(
            occurrences_between(date(2024, 2, 29), "yearly", date(2024, 1, 1), date(2026, 3, 1)),
            [date(2024, 2, 29), date(2025, 2, 28), date(2026, 2, 28)],
        )

    def test_yearly_steps_past_window_start(self) -> None:
        self.assertEqual(
            occurrences_between(date(2020, 6, 1), "yearly", date(2023, 7, 1), date(2025, 12, 31)),
            [date(2024, 6, 1), date(2025, 6, 1)],
        )

    def test_weekly_skips_to_window_start(self) -> None:
        self.assertEqual(
            occurrences_between(date(2024, 1, 1), "weekly", date(2024, 1, 10), date(2024, 1, 31)),
            [date(2024, 1, 15), date(2024, 1, 22), date(2024, 1, 29)],
        )

    def test_monthly_window_starting_mid_month(self) -> None:
        self.assertEqual(
            occurrences_between(date(2024, 1, 1), "monthly", date(2024, 3, 15), date(2024, 6, 1)),
            [date(2024, 4, 1), date(2024, 5, 1), date(2024, 6, 1)],
        )

    def test_anchor_after_window_is_empty(self) -> None:
        self.assertEqual(
            occurrences_between(date(2025, 1, 1), "monthly", date(2024, 1, 1), date(2024, 12, 31)),
            [],
        )

    def test_empty_when_end_before_start(self) -> None:
        self.assertEqual(
            occurrences_between(date(2024, 1, 1), "monthly", date(2024, 6, 1), date(2024, 5, 1)),
            [],
        )

    def test_single_day_window_on_anchor(self) -> None:
        anchor = date(2024, 3, 10)
        for period in ("weekly", "monthly", "yearly", "once"):
            self.assertEqual(occurrences_between(anchor, period, anchor, anchor), [anchor], period)

    def test_compares_at_day_granularity(self) -> None:
        self.assertEqual(
            occurrences_between(
                datetime(2025, 3, 1, 15, 30),
                "monthly",
                datetime(2025, 3, 1, 9, 0),
                datetime(2025, 4, 1, 0, 0),
            ),
            [date(2025, 3, 1), date(2025, 4, 1)],
        )

    def test_once_outside_window_is_empty(self) -> None:
        self.assertEqual(
            occurrences_between(date(2024, 2, 1), "once", date(2024, 3, 1), date(2024, 3, 31)),
            [],
        )

    def test_unsupported_period_is_empty(self) -> None:
        self.assertEqual(
            occurrences_between(date(2024, 1, 1), "daily", date(2024, 1, 1), date(2024, 12, 31)),
            [],
        )

    def test_missing_anchor_is_empty(self) -> None:
        self.assertEqual(
            occurrences_between(None, "monthly", date(2024, 1, 1), date(2024, 12, 31)),
            [],
        )

    def test_is_restartable(self) -> None:
        args = (date(2024, 1, 31), "monthly", date(2024, 1, 1), date(2024, 12, 31))

        self.assertEqual(occurrences_between(*args), occurrences_between(*args))
        self.assertEqual(len(occurrences_between(*args)), 12)


class LabelTests(unittest.TestCase):
    def setUp(self) -> None:
        self.reference = datetime(2025, 3, 1, 18, 45)

    def test_near_dates(self) -> None:
        self.assertEqual(format_relative_label(date(2025, 3, 1), self.reference), "Today")
        self.assertEqual(format_relative_label(date(2025, 3, 2), self.reference), "Tomorrow")
        self.assertEqual(format_relative_label(date(2025, 3, 3), self.reference), "In 2 days")
        self.assertEqual(format_relative_label(date(2025, 3, 8), self.reference), "In 7 days")

    def test_beyond_a_week_uses_month_and_day(self) -> None:
        self.assertEqual(format_relative_label(date(2025, 3, 9), self.reference), "Mar 9")

    def test_past_dates_use_month_and_day(self) -> None:
        self.assertEqual(format_relative_label(date(2025, 2, 27), self.reference), "Feb 27")


class SuppressionTests(unittest.TestCase):
    def test_hidden_from_the_following_month(self) -> None:
        self.assertTrue(should_suppress_completed_one_time(date(2025, 3, 15), date(2025, 4, 1)))

    def test_visible_for_rest_of_its_month(self) -> None:
        self.assertFalse(should_suppress_completed_one_time(date(2025, 3, 15), date(2025, 3, 31)))
        self.assertFalse(should_suppress_completed_one_time(date(2025, 3, 15), date(2025, 3, 1)))

    def test_year_boundary(self) -> None:
        self.assertTrue(should_suppress_completed_one_time(date(2024, 12, 10), date(2025, 1, 1)))
        self.assertFalse(should_suppress_completed_one_time(date(2024, 12, 10), date(2024, 12, 31)))
        self.assertTrue(should_suppress_completed_one_time(date(2024, 3, 10), date(2025, 1, 1)))


class HelperTests(unittest.TestCase):
    def test_normalize_period(self) -> None:
        self.assertEqual(normalize_period(" Monthly "), "monthly")
        self.assertIsNone(normalize_period("daily"))
        self.assertIsNone(normalize_period(None))

    def test_add_months_clamps(self) -> None:
        self.assertEqual(add_months(date(2024, 1, 31), 1), date(2024, 2, 29))
        self.assertEqual(add_months(date(2024, 11, 30), 3), date(2025, 2, 28))
        self.assertEqual(add_months(date(2024, 2, 29), 1, anchor_day=31), date(2024, 3, 31))

    def test_month_end(self) -> None:
        self.assertEqual(month_end(date(2023, 2, 10)), date(2023, 2, 28))
        self.assertEqual(month_end(date(2024, 12, 1)), date(2024, 12, 31))


if __name__ == "__main__":
    unittest.main()
