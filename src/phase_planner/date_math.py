from __future__ import annotations

from datetime import date, datetime, timedelta


def normalize_to_midnight(value: date | datetime) -> date:
    """Return the calendar day of ``value``, dropping any time-of-day."""
    if isinstance(value, datetime):
        return value.date()
    return value


def add_days(value: date | datetime, days: int) -> date:
    """
    Add whole calendar days.

    Arithmetic runs on the normalized calendar date so month and year
    rollover (and DST transitions in the caller's zone) cannot shift the
    result by a day.
    """
    return normalize_to_midnight(value) + timedelta(days=days)


def span_days(start: date | datetime, end: date | datetime) -> int:
    """Signed number of calendar days from ``start`` to ``end``."""
    return (normalize_to_midnight(end) - normalize_to_midnight(start)).days


def day_difference(a: date | datetime, b: date | datetime) -> int:
    """Absolute number of calendar days between ``a`` and ``b``."""
    return abs(span_days(a, b))


def ranges_overlap(
    start_a: date | datetime,
    end_a: date | datetime,
    start_b: date | datetime,
    end_b: date | datetime,
) -> bool:
    """Inclusive overlap test: ranges sharing a single day overlap."""
    return normalize_to_midnight(start_a) <= normalize_to_midnight(end_b) and normalize_to_midnight(
        end_a
    ) >= normalize_to_midnight(start_b)


def midpoint(start: date | datetime, end: date | datetime) -> date:
    """Calendar day on which half the elapsed time between the bounds falls."""
    first = normalize_to_midnight(start)
    elapsed = normalize_to_midnight(end) - first
    return first + timedelta(days=elapsed.days // 2)
