from datetime import date, datetime, timezone

import pytest

from pipelines.periods import calculate_age, is_date_in_period, period_bounds

# Wednesday
NOW = datetime(2024, 7, 17, 15, 30)


def test_today_bounds():
    start, end = period_bounds("today", NOW)
    assert start == datetime(2024, 7, 17)
    assert end == datetime(2024, 7, 18)


def test_week_starts_on_sunday():
    start, end = period_bounds("thisWeek", NOW)
    assert start == datetime(2024, 7, 14)
    assert start.weekday() == 6
    assert end == datetime(2024, 7, 21)


def test_week_on_a_sunday_starts_that_day():
    start, _ = period_bounds("thisWeek", datetime(2024, 7, 14, 9))
    assert start == datetime(2024, 7, 14)


def test_month_bounds_roll_over_december():
    start, end = period_bounds("thisMonth", datetime(2024, 12, 5))
    assert start == datetime(2024, 12, 1)
    assert end == datetime(2025, 1, 1)


def test_is_date_in_period_is_half_open():
    assert is_date_in_period(datetime(2024, 7, 17), "today", NOW)
    assert not is_date_in_period(datetime(2024, 7, 18), "today", NOW)
    assert is_date_in_period("2024-07-20T23:59:00", "thisWeek", NOW)
    assert not is_date_in_period(None, "thisMonth", NOW)


def test_yesterday_last_second_is_not_today():
    assert not is_date_in_period(datetime(2024, 7, 16, 23, 59, 59), "today", NOW)
    assert is_date_in_period(datetime(2024, 7, 17, 0, 0, 0), "today", NOW)


def test_aware_datetimes_compared_in_local_time():
    local_now = NOW.astimezone()
    aware = local_now.astimezone(timezone.utc)
    assert is_date_in_period(aware, "today", local_now)


def test_unknown_period():
    with pytest.raises(ValueError):
        period_bounds("thisYear", NOW)


def test_calculate_age():
    assert calculate_age(date(1980, 7, 18), today=date(2024, 7, 17)) == 43
    assert calculate_age(date(1980, 7, 17), today=date(2024, 7, 17)) == 44
    assert calculate_age("1980-01-01", today=date(2024, 7, 17)) == 44
    assert calculate_age(None) is None
