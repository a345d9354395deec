# pricesync/services/market_data/base.py
"""
Abstract interface for market data providers.

This module defines the contract that every provider client follows:
- Canonical request types (what can be asked)
- ProviderResponse (tri-state result, never an exception)
- MarketDataProvider (ABC with an explicit request-type -> handler table)

Design Principles:
- Each provider declares the requests it answers in `handlers()`, built once
  at construction, so the dispatch set can be inspected without calling it
- Expected failures are values: handlers may raise MarketDataError
  subclasses internally, `process()` turns them into a status
- Each provider owns the RateLimiter of its credential
"""

import logging
import math
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable, Iterable, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Generic, TypeVar

import pandas as pd

from pricesync.models import InstrumentType
from pricesync.services.exceptions import (
    MarketDataError,
    TransientProviderError,
    UnsupportedRequestError,
)
from pricesync.services.rate_limiter import RateLimiter
from pricesync.services.types import (
    ExchangeRateSet,
    InstrumentSplitRecord,
    PricePoint,
    TimeRange,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

__all__ = [
    "ResponseStatus",
    "ProviderResponse",
    "RequestType",
    "InstrumentType",
    "IntradayInterval",
    "PriceRequest",
    "ExchangeRatesRequest",
    "SplitsRequest",
    "Handler",
    "MarketDataProvider",
    "PricePoint",
    "ExchangeRateSet",
    "InstrumentSplitRecord",
    "TimeRange",
    "to_decimal",
    "parse_timestamp",
    "clip_to_range",
]


# =============================================================================
# RESPONSE
# =============================================================================

class ResponseStatus(str, Enum):
    """Outcome of a provider call."""
    OK = "ok"
    TRANSIENT_ERROR = "transient_error"    # connection-level, worth retrying
    PERMANENT_ERROR = "permanent_error"    # semantic, never retried
    ALL_PROVIDERS_EXHAUSTED = "all_providers_exhausted"  # router only


@dataclass(frozen=True)
class ProviderResponse(Generic[T]):
    """
    Result of one request against one provider (or the router).

    Attributes:
        status: Outcome classification
        result: Payload on success, None otherwise
        error_message: Description of the failure, None on success
        provider: Name of the provider that produced the response
    """

    status: ResponseStatus
    result: T | None = None
    error_message: str | None = None
    provider: str | None = None

    @property
    def ok(self) -> bool:
        return self.status == ResponseStatus.OK

    @classmethod
    def success(cls, result: T, provider: str | None = None) -> "ProviderResponse[T]":
        return cls(ResponseStatus.OK, result=result, provider=provider)

    @classmethod
    def transient(cls, message: str, provider: str | None = None) -> "ProviderResponse[T]":
        return cls(ResponseStatus.TRANSIENT_ERROR, error_message=message, provider=provider)

    @classmethod
    def permanent(cls, message: str, provider: str | None = None) -> "ProviderResponse[T]":
        return cls(ResponseStatus.PERMANENT_ERROR, error_message=message, provider=provider)


# =============================================================================
# REQUESTS
# =============================================================================

class RequestType(str, Enum):
    """Canonical request tags used for handler registration and routing."""
    DAILY_PRICES = "daily_prices"
    INTRADAY_PRICES = "intraday_prices"
    LATEST_PRICE = "latest_price"
    DAILY_CRYPTO_PRICES = "daily_crypto_prices"
    INTRADAY_CRYPTO_PRICES = "intraday_crypto_prices"
    LATEST_CRYPTO_PRICE = "latest_crypto_price"
    DAILY_EXCHANGE_RATES = "daily_exchange_rates"
    LATEST_EXCHANGE_RATES = "latest_exchange_rates"
    SPLITS = "splits"


class IntradayInterval(str, Enum):
    FIVE_MINUTES = "5min"
    ONE_HOUR = "1hour"


@dataclass(frozen=True)
class PriceRequest:
    """
    Request for instrument prices.

    Attributes:
        request_type: One of the price request types
        symbol: Instrument symbol
        currency_code: Currency the caller expects prices in
        from_time: Range start (ignored for latest requests)
        to_time: Range end (ignored for latest requests)
        interval: Granularity for intraday requests
    """

    request_type: RequestType
    symbol: str
    currency_code: str
    from_time: datetime | None = None
    to_time: datetime | None = None
    interval: IntradayInterval | None = None

    def __post_init__(self) -> None:
        if self.from_time is not None and self.to_time is not None and self.to_time < self.from_time:
            raise ValueError("from_time cannot be later than to_time")


@dataclass(frozen=True)
class ExchangeRatesRequest:
    """
    Request for exchange rates of a base currency.

    Attributes:
        request_type: DAILY_EXCHANGE_RATES or LATEST_EXCHANGE_RATES
        base_currency: ISO 4217 base currency
        from_time: Range start (daily only)
        to_time: Range end (daily only)
    """

    request_type: RequestType
    base_currency: str
    from_time: datetime | None = None
    to_time: datetime | None = None


@dataclass(frozen=True)
class SplitsRequest:
    """Request for split events of an instrument within [from_time, to_time]."""

    symbol: str
    from_time: datetime
    to_time: datetime
    request_type: RequestType = field(default=RequestType.SPLITS)


Request = PriceRequest | ExchangeRatesRequest | SplitsRequest
Handler = Callable[[Any], Awaitable[Any]]


# =============================================================================
# ABSTRACT BASE CLASS
# =============================================================================

class MarketDataProvider(ABC):
    """
    Abstract base class for market data provider clients.

    Subclasses implement `name` and `handlers()`. Handlers are coroutines
    taking a canonical request and returning the canonical payload. They may
    raise:
        - TransientProviderError subclasses: network, timeout, 429, 5xx
        - PermanentProviderError subclasses: unknown symbol, bad payload

    `process()` is the only entry point used by the router; it never
    raises for these expected failures.
    """

    def __init__(self, rate_limiter: RateLimiter) -> None:
        self.rate_limiter = rate_limiter
        self._handlers: dict[RequestType, Handler] = dict(self.handlers())

    # =========================================================================
    # ABSTRACT PROPERTIES AND METHODS
    # =========================================================================

    @property
    @abstractmethod
    def name(self) -> str:
        """
        Unique identifier for this provider.

        Returns:
            Provider name (e.g., "yahoo", "tiingo")
        """
        pass

    @abstractmethod
    def handlers(self) -> Mapping[RequestType, Handler]:
        """
        Registration table of the requests this provider answers.

        Returns:
            Mapping request type -> bound async handler
        """
        pass

    # =========================================================================
    # DISPATCH
    # =========================================================================

    @property
    def supported_requests(self) -> frozenset[RequestType]:
        return frozenset(self._handlers)

    def supports(self, request_type: RequestType) -> bool:
        return request_type in self._handlers

    async def process(self, request: Request) -> ProviderResponse:
        """
        Run the registered handler and classify the outcome.

        Args:
            request: Canonical request

        Returns:
            ProviderResponse with OK, TRANSIENT_ERROR or PERMANENT_ERROR
        """
        handler = self._handlers.get(request.request_type)
        if handler is None:
            error = UnsupportedRequestError(self.name, request.request_type.value)
            return ProviderResponse.permanent(str(error), provider=self.name)

        try:
            result = await handler(request)
        except TransientProviderError as e:
            logger.warning(f"{self.name}: transient failure for {request.request_type.value}: {e}")
            return ProviderResponse.transient(str(e), provider=self.name)
        except MarketDataError as e:
            logger.warning(f"{self.name}: permanent failure for {request.request_type.value}: {e}")
            return ProviderResponse.permanent(str(e), provider=self.name)
        except (KeyError, IndexError, TypeError, ValueError, ArithmeticError) as e:
            # Payload did not have the expected shape
            logger.warning(f"{self.name}: unexpected payload for {request.request_type.value}: {e!r}")
            return ProviderResponse.permanent(
                f"Invalid data received from '{self.name}': {e!r}", provider=self.name
            )

        return ProviderResponse.success(result, provider=self.name)

    async def aclose(self) -> None:
        """Release network resources. Default implementation holds none."""
        return None


# =============================================================================
# PARSING HELPERS
# =============================================================================

def to_decimal(value: Any) -> Decimal | None:
    """Convert a vendor number to Decimal, returning None for NaN/None/garbage."""
    if value is None:
        return None
    try:
        if math.isnan(float(value)):
            return None
        return Decimal(str(value)).quantize(Decimal("0.00000001"))
    except (TypeError, ValueError, ArithmeticError):
        return None


def parse_timestamp(value: Any) -> datetime:
    """
    Parse a vendor timestamp into an aware UTC datetime.

    Accepts ISO 8601 strings (with or without offset, "Z" included),
    dates, pandas Timestamps and UNIX seconds. Naive values are taken as UTC.

    Raises:
        ValueError: If the value cannot be interpreted as a time
    """
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        timestamp = pd.Timestamp(value, unit="s")
    else:
        timestamp = pd.Timestamp(value)
    if pd.isna(timestamp):
        raise ValueError(f"not a timestamp: {value!r}")
    if timestamp.tzinfo is None:
        timestamp = timestamp.tz_localize("UTC")
    else:
        timestamp = timestamp.tz_convert("UTC")
    return timestamp.to_pydatetime()


def clip_to_range(
        points: Iterable[PricePoint],
        from_time: datetime | None,
        to_time: datetime | None,
) -> list[PricePoint]:
    """Keep points within [from_time, to_time], sorted by time."""
    return sorted(
        (
            p for p in points
            if (from_time is None or p.time >= from_time)
            and (to_time is None or p.time <= to_time)
        ),
        key=lambda p: p.time,
    )
