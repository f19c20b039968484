"""Business-day calculator: pure date arithmetic and range validation."""

from __future__ import annotations

from datetime import date, timedelta

import pytest

from backend.common.exceptions import InvalidDateRangeException
from backend.leave import business_days
from backend.leave.business_days import (
    calculate_business_days,
    is_weekend_only,
    validate_date_range,
)

# 2024-06-10 is a Monday
MONDAY = date(2024, 6, 10)
FRIDAY = date(2024, 6, 14)
SATURDAY = date(2024, 6, 15)
SUNDAY = date(2024, 6, 16)


class TestCalculateBusinessDays:

    def test_single_weekday_is_one(self):
        for offset in range(5):
            day = MONDAY + timedelta(days=offset)
            assert calculate_business_days(day, day) == 1

    def test_weekend_pair_is_zero(self):
        assert calculate_business_days(SATURDAY, SUNDAY) == 0

    def test_monday_to_friday_counts_every_day(self):
        assert calculate_business_days(MONDAY, FRIDAY) == 5

    def test_sunday_to_saturday_week_is_five(self):
        assert calculate_business_days(date(2024, 6, 9), SATURDAY) == 5

    def test_spanning_weekend(self):
        """Thu → Tue: Thu, Fri, Mon, Tue."""
        assert calculate_business_days(date(2024, 6, 13), date(2024, 6, 18)) == 4

    def test_multi_week_range(self):
        # 2024-07-01 (Mon) .. 2024-07-31 (Wed): 23 weekdays
        assert calculate_business_days(date(2024, 7, 1), date(2024, 7, 31)) == 23

    def test_end_before_start_is_zero(self):
        assert calculate_business_days(FRIDAY, MONDAY) == 0

    def test_matches_naive_count(self):
        start = date(2024, 2, 20)
        for length in range(0, 40):
            end = start + timedelta(days=length)
            naive = sum(
                1 for i in range(length + 1)
                if (start + timedelta(days=i)).weekday() < 5
            )
            assert calculate_business_days(start, end) == naive


class TestIsWeekendOnly:

    def test_saturday_sunday(self):
        assert is_weekend_only(SATURDAY, SUNDAY) is True

    def test_single_saturday(self):
        assert is_weekend_only(SATURDAY, SATURDAY) is True

    def test_range_with_weekday(self):
        assert is_weekend_only(FRIDAY, SUNDAY) is False

    def test_weekday_only(self):
        assert is_weekend_only(MONDAY, MONDAY) is False


class TestValidateDateRange:
    """``today`` is pinned to 2024-06-01 by the conftest fixture."""

    def test_today_is_allowed(self, fixed_today):
        validate_date_range(fixed_today, fixed_today)

    def test_future_range_is_allowed(self):
        validate_date_range(MONDAY, FRIDAY)

    def test_start_in_past_rejected(self, fixed_today):
        with pytest.raises(InvalidDateRangeException) as exc_info:
            validate_date_range(fixed_today - timedelta(days=1), MONDAY)
        assert exc_info.value.status_code == 400
        assert "past" in exc_info.value.message

    def test_end_before_start_rejected(self):
        with pytest.raises(InvalidDateRangeException) as exc_info:
            validate_date_range(FRIDAY, MONDAY)
        assert "before start" in exc_info.value.message

    def test_current_leave_year_follows_clock(self, monkeypatch):
        monkeypatch.setattr(business_days, "today", lambda: date(2031, 1, 2))
        assert business_days.current_leave_year() == 2031
