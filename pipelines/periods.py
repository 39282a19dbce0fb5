"""
pipelines/periods.py

Date-range helpers used to scope dashboards and activity feeds to
"today", "this week" (Sunday to Saturday) or "this month".

Everything is evaluated in the host's local time: naive datetimes are taken
as local wall-clock time, aware ones are converted to local time first.
"""

from __future__ import annotations

from datetime import date, datetime, time, timedelta
from typing import Literal, Optional, Union

Period = Literal["today", "thisWeek", "thisMonth"]

PERIODS: tuple[str, ...] = ("today", "thisWeek", "thisMonth")

PERIOD_LABELS: dict[str, str] = {
    "today": "Today",
    "thisWeek": "This week",
    "thisMonth": "This month",
}

DateLike = Union[datetime, date, str]


def to_local_naive(value: DateLike) -> datetime:
    """Normalise *value* to a naive datetime in local wall-clock time."""
    if isinstance(value, str):
        value = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    if not isinstance(value, datetime):
        value = datetime.combine(value, time())
    if value.tzinfo is not None:
        value = value.astimezone().replace(tzinfo=None)
    return value


def period_bounds(period: Period, now: Optional[DateLike] = None) -> tuple[datetime, datetime]:
    """
    Return the half-open local interval ``[start, end)`` covering *period*.

    Raises:
        ValueError: If *period* is not one of ``PERIODS``.
    """
    ref = to_local_naive(now) if now is not None else datetime.now()
    start_of_day = datetime.combine(ref.date(), time())

    if period == "today":
        return start_of_day, start_of_day + timedelta(days=1)

    if period == "thisWeek":
        # weekday(): Monday=0 .. Sunday=6, the week starts on Sunday
        days_since_sunday = (ref.weekday() + 1) % 7
        start = start_of_day - timedelta(days=days_since_sunday)
        return start, start + timedelta(days=7)

    if period == "thisMonth":
        start = start_of_day.replace(day=1)
        if start.month == 12:
            end = start.replace(year=start.year + 1, month=1)
        else:
            end = start.replace(month=start.month + 1)
        return start, end

    raise ValueError(f"Unknown period '{period}'. Expected one of {PERIODS}.")


def is_date_in_period(value: Optional[DateLike], period: Period, now: Optional[DateLike] = None) -> bool:
    if value is None:
        return False
    start, end = period_bounds(period, now)
    return start <= to_local_naive(value) < end


def calculate_age(dob: Optional[DateLike], today: Optional[date] = None) -> Optional[int]:
    if dob is None or dob == "":
        return None
    birth = to_local_naive(dob).date()
    ref = today or date.today()
    age = ref.year - birth.year
    if (ref.month, ref.day) < (birth.month, birth.day):
        age -= 1
    return age
