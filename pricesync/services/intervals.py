# pricesync/services/intervals.py
"""
Density rules for stored time series.

An IntervalPolicy answers "how far apart may two stored points be at this
age?". The required spacing depends on how far the point lies behind
"now", so it is evaluated per timestamp rather than once per range.

Instrument prices:
    age <= 1 day   -> 5 minutes
    age <= 5 days  -> 1 hour
    otherwise      -> 1 day

Exchange rates:
    always 1 day

Usage:
    from pricesync.services.intervals import INSTRUMENT_PRICE_POLICY

    INSTRUMENT_PRICE_POLICY(now, now - timedelta(hours=3))  # 5 minutes
"""

from dataclasses import dataclass
from datetime import datetime, timedelta

from pricesync.services.constants import (
    FIVE_MINUTES,
    INTRADAY_DENSE_WINDOW,
    INTRADAY_HOURLY_WINDOW,
    ONE_DAY,
    ONE_HOUR,
)


@dataclass(frozen=True)
class DensityBoundary:
    """
    A point (measured back from "now") where the required interval changes.

    Attributes:
        age: Distance from "now" at which the boundary lies
        older_interval: Interval required beyond the boundary
        newer_interval: Interval required within the boundary
    """

    age: timedelta
    older_interval: timedelta
    newer_interval: timedelta


class IntervalPolicy:
    """
    Base density rule: a constant interval for every age.

    Subclasses override `interval_at` and `interval_before` and list their
    boundaries, coarsest first, so range splitting can visit them in order.
    """

    boundaries: tuple[DensityBoundary, ...] = ()

    def __init__(self, interval: timedelta = ONE_DAY) -> None:
        if interval <= timedelta(0):
            raise ValueError(f"interval must be positive, got {interval}")
        self._interval = interval

    def __call__(self, now: datetime, target_time: datetime) -> timedelta:
        return self.interval_at(now, target_time)

    def interval_at(self, now: datetime, target_time: datetime) -> timedelta:
        """
        Required interval for a point stored at target_time.

        Args:
            now: Reference time the age is measured from
            target_time: Time of the point

        Returns:
            Maximum allowed spacing around target_time
        """
        return self._interval

    def interval_before(self, now: datetime, target_time: datetime) -> timedelta:
        """
        Required interval for the instants just before target_time.

        Equal to `interval_at` except exactly on a boundary, where the
        instants before it already belong to the older, coarser band.
        """
        return self._interval


class InstrumentPricePolicy(IntervalPolicy):
    """Recency-dependent density for instrument prices."""

    boundaries = (
        DensityBoundary(age=INTRADAY_HOURLY_WINDOW, older_interval=ONE_DAY, newer_interval=ONE_HOUR),
        DensityBoundary(age=INTRADAY_DENSE_WINDOW, older_interval=ONE_HOUR, newer_interval=FIVE_MINUTES),
    )

    def __init__(self) -> None:
        super().__init__(ONE_DAY)

    def interval_at(self, now: datetime, target_time: datetime) -> timedelta:
        age = now - target_time
        if age <= INTRADAY_DENSE_WINDOW:
            return FIVE_MINUTES
        if age <= INTRADAY_HOURLY_WINDOW:
            return ONE_HOUR
        return ONE_DAY

    def interval_before(self, now: datetime, target_time: datetime) -> timedelta:
        age = now - target_time
        if age < INTRADAY_DENSE_WINDOW:
            return FIVE_MINUTES
        if age < INTRADAY_HOURLY_WINDOW:
            return ONE_HOUR
        return ONE_DAY


class ExchangeRatePolicy(IntervalPolicy):
    """Exchange rates are kept at daily density regardless of age."""

    def __init__(self) -> None:
        super().__init__(ONE_DAY)


INSTRUMENT_PRICE_POLICY = InstrumentPricePolicy()
EXCHANGE_RATE_POLICY = ExchangeRatePolicy()


def get_instrument_price_interval(now: datetime, target_time: datetime) -> timedelta:
    """Shorthand for INSTRUMENT_PRICE_POLICY.interval_at()."""
    return INSTRUMENT_PRICE_POLICY.interval_at(now, target_time)


def get_exchange_rate_interval(now: datetime, target_time: datetime) -> timedelta:
    """Shorthand for EXCHANGE_RATE_POLICY.interval_at()."""
    return EXCHANGE_RATE_POLICY.interval_at(now, target_time)
