# pricesync/utils/date_utils.py
"""
Date and time utility functions for pricesync.

All times handled by the engine are timezone-aware UTC datetimes.
Rounding is performed against the UNIX epoch, so rounding to one day
lands on midnight UTC and rounding to five minutes lands on :00, :05, ...

Usage:
    from pricesync.utils.date_utils import round_down, utc_now

    range_end = round_down(utc_now(), timedelta(minutes=5))
"""

from datetime import datetime, timedelta, timezone

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """
    Normalize a datetime to aware UTC.

    Naive datetimes are assumed to already be in UTC (SQLite drops
    timezone information on round trip).

    Args:
        value: Datetime to normalize

    Returns:
        The same instant as an aware UTC datetime
    """
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def round_down(value: datetime, interval: timedelta) -> datetime:
    """
    Round a datetime down to the previous multiple of interval.

    Args:
        value: Datetime to round
        interval: Positive rounding step

    Returns:
        Largest epoch-aligned multiple of interval that is <= value

    Example:
        >>> round_down(datetime(2024, 1, 15, 10, 7, tzinfo=timezone.utc), timedelta(minutes=5))
        datetime(2024, 1, 15, 10, 5, tzinfo=timezone.utc)
    """
    if interval <= timedelta(0):
        raise ValueError(f"interval must be positive, got {interval}")
    value = ensure_utc(value)
    return value - (value - EPOCH) % interval


def round_up(value: datetime, interval: timedelta) -> datetime:
    """
    Round a datetime up to the next multiple of interval.

    A value already on a boundary is returned unchanged.

    Args:
        value: Datetime to round
        interval: Positive rounding step

    Returns:
        Smallest epoch-aligned multiple of interval that is >= value
    """
    rounded = round_down(value, interval)
    if rounded == ensure_utc(value):
        return rounded
    return rounded + interval
