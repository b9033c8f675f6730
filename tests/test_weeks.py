# Tests for the sequential week calendar

from datetime import date, datetime

import pytest

from weekly_digest.weeks import (
    InvalidWeekError,
    previous_week,
    sequential_week,
    shift_week,
    validate_week,
    week_date_range,
    week_month,
    weeks_in_year,
)


# ===== sequential_week Tests =====


class TestSequentialWeek:
    def test_year_starting_on_monday(self):
        """2024 starts on a Monday, so Jan 1 opens week 1"""
        assert sequential_week(date(2024, 1, 1)) == (2024, 1)
        assert sequential_week(date(2024, 1, 5)) == (2024, 1)
        assert sequential_week(date(2024, 1, 8)) == (2024, 2)

    def test_week_ten_of_2024_starts_march_4(self):
        assert sequential_week(date(2024, 3, 4)) == (2024, 10)
        assert sequential_week(date(2024, 3, 8)) == (2024, 10)

    def test_partial_first_week(self):
        """2025 starts on a Wednesday: Jan 1-3 form week 1, Jan 6 starts week 2"""
        assert sequential_week(date(2025, 1, 1)) == (2025, 1)
        assert sequential_week(date(2025, 1, 3)) == (2025, 1)
        assert sequential_week(date(2025, 1, 6)) == (2025, 2)

    def test_weekend_belongs_to_following_week(self):
        assert sequential_week(date(2024, 3, 9)) == (2024, 11)
        assert sequential_week(date(2024, 3, 10)) == (2024, 11)

    def test_weekend_rolls_into_next_year(self):
        assert sequential_week(date(2023, 12, 30)) == (2024, 1)
        assert sequential_week(date(2025, 1, 4)) == (2025, 2)

    def test_accepts_datetime(self):
        assert sequential_week(datetime(2024, 3, 6, 18, 30)) == (2024, 10)


# ===== Ranges and lengths =====


class TestWeekDateRange:
    def test_full_week(self):
        assert week_date_range(2024, 10) == (date(2024, 3, 4), date(2024, 3, 8))

    def test_partial_first_week(self):
        assert week_date_range(2025, 1) == (date(2025, 1, 1), date(2025, 1, 3))
        assert week_date_range(2025, 2) == (date(2025, 1, 6), date(2025, 1, 10))

    def test_last_week_clipped_to_year(self):
        assert week_date_range(2024, 53) == (date(2024, 12, 30), date(2024, 12, 31))

    def test_range_round_trips_through_sequential_week(self):
        for year in (2023, 2024, 2025, 2026):
            for week in range(1, weeks_in_year(year) + 1):
                start, end = week_date_range(year, week)
                assert sequential_week(start) == (year, week)
                assert sequential_week(end) == (year, week)

    def test_invalid_week_raises(self):
        with pytest.raises(InvalidWeekError):
            week_date_range(2024, 0)
        with pytest.raises(InvalidWeekError):
            week_date_range(2023, 53)

    def test_weeks_in_year(self):
        assert weeks_in_year(2023) == 52
        assert weeks_in_year(2024) == 53

    def test_validate_week_upper_bound(self):
        with pytest.raises(InvalidWeekError):
            validate_week(2024, 54)
        validate_week(2024, 53)


class TestWeekMonth:
    def test_zero_based_month_of_first_weekday(self):
        assert week_month(2024, 10) == 2
        assert week_month(2024, 1) == 0

    def test_week_spanning_two_months_uses_start(self):
        # Mon Apr 29 - Fri May 3, 2024
        assert week_date_range(2024, 18)[0] == date(2024, 4, 29)
        assert week_month(2024, 18) == 3


# ===== previous_week / shift_week =====


class TestPreviousWeek:
    def test_saturday_targets_week_just_ended(self):
        assert previous_week(date(2024, 3, 9)) == (2024, 10)

    def test_midweek_targets_last_week(self):
        assert previous_week(date(2024, 3, 6)) == (2024, 9)

    def test_wraps_to_last_week_of_previous_year(self):
        assert previous_week(date(2025, 1, 2)) == (2024, 53)
        assert previous_week(date(2024, 1, 3)) == (2023, 52)

    def test_shift_week_across_years(self):
        assert shift_week(2025, 1, -1) == (2024, 53)
        assert shift_week(2024, 53, 1) == (2025, 1)
        assert shift_week(2024, 10, 0) == (2024, 10)
