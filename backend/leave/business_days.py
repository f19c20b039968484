"""Business-day arithmetic and the leave clock.

Every day count in the leave core comes from ``calculate_business_days``;
request creation and update call it, as does the balance check.  A business
day is any calendar day that is not a Saturday or Sunday.  There is no
holiday calendar.

``today()`` and ``current_leave_year()`` are the only clock reads the
services make.
"""

from datetime import date, timedelta

from backend.common.exceptions import InvalidDateRangeException

# date.weekday(): Monday=0 … Sunday=6
WEEKEND_DAYS = frozenset({5, 6})


def today() -> date:
    return date.today()


def current_leave_year() -> int:
    """Balance year used by validation, approval and cancellation."""
    return today().year


def _iter_days(start: date, end: date):
    current = start
    while current <= end:
        yield current
        current += timedelta(days=1)


def calculate_business_days(start: date, end: date) -> int:
    """Count weekdays from *start* to *end*, both inclusive.

    Returns 0 when the range holds no weekday or when *end* precedes
    *start*.
    """
    if end < start:
        return 0

    total_days = (end - start).days + 1
    full_weeks, remainder = divmod(total_days, 7)
    count = full_weeks * 5
    for offset in range(remainder):
        if (start + timedelta(days=offset)).weekday() not in WEEKEND_DAYS:
            count += 1
    return count


def is_weekend_only(start: date, end: date) -> bool:
    """True iff every day in the inclusive range is a Saturday or Sunday."""
    if end < start:
        return False
    return all(d.weekday() in WEEKEND_DAYS for d in _iter_days(start, end))


def validate_date_range(start: date, end: date) -> None:
    """Reject a range starting in the past or ending before it starts.

    Raises:
        InvalidDateRangeException
    """
    if start < today():
        raise InvalidDateRangeException("Start date cannot be in the past")
    if end < start:
        raise InvalidDateRangeException("End date cannot be before start date")
