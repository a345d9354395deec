# pricesync/services/types.py
"""
Canonical records shared by providers, gap detection and jobs.

All records are immutable value objects. Times are aware UTC datetimes.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from decimal import Decimal


@dataclass(frozen=True)
class PricePoint:
    """
    A single price observation.

    Attributes:
        symbol: Instrument symbol as understood by the provider (e.g., "AAPL")
        currency_code: ISO 4217 currency of the price
        price: Price value
        time: Observation time (aware UTC)
    """

    symbol: str
    currency_code: str
    price: Decimal
    time: datetime

    def at(self, time: datetime) -> "PricePoint":
        """Copy of this point moved to another timestamp."""
        return replace(self, time=time)


@dataclass(frozen=True)
class ExchangeRateSet:
    """
    Exchange rates of one base currency at one instant.

    Convention: rates[X] = how many units of X one unit of base_currency buys.

    Attributes:
        base_currency: ISO 4217 base currency code
        time: Observation time (aware UTC)
        rates: Mapping target currency code -> rate
    """

    base_currency: str
    time: datetime
    rates: dict[str, Decimal] = field(default_factory=dict, hash=False)


@dataclass(frozen=True)
class InstrumentSplitRecord:
    """
    A split event: share count multiplies by numerator / denominator.

    Attributes:
        time: Time of the split (aware UTC)
        numerator: Shares after the split
        denominator: Shares before the split
    """

    time: datetime
    numerator: int
    denominator: int

    def __post_init__(self) -> None:
        if self.numerator <= 0 or self.denominator <= 0:
            raise ValueError(
                f"split ratio must be positive, got {self.numerator}/{self.denominator}"
            )


@dataclass(frozen=True)
class TimeRange:
    """
    A contiguous span [from_time, to_time) requiring uniform density.

    Attributes:
        from_time: Range start
        to_time: Range end
        interval: Maximum allowed spacing between points inside the range
    """

    from_time: datetime
    to_time: datetime
    interval: timedelta

    def __post_init__(self) -> None:
        if self.from_time >= self.to_time:
            raise ValueError(
                f"from_time ({self.from_time}) must be earlier than to_time ({self.to_time})"
            )
        if self.interval <= timedelta(0):
            raise ValueError(f"interval must be positive, got {self.interval}")

    @property
    def duration(self) -> timedelta:
        return self.to_time - self.from_time

    def contains(self, time: datetime) -> bool:
        """Whether time lies within the range, both ends inclusive."""
        return self.from_time <= time <= self.to_time
