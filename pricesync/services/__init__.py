# pricesync/services/__init__.py
"""
Service layer of the acquisition engine.

This package contains the engine's core logic, free of persistence and
scheduling concerns. Services:
- Have NO knowledge of the database session (repositories are injected)
- Raise domain-specific exceptions
- Are easily testable via dependency injection

Usage:
    from pricesync.services import GapDetector, GapFiller
    from pricesync.services import INSTRUMENT_PRICE_POLICY, RateLimiter
    from pricesync.services import (
        AllProvidersExhaustedError,
        MissingConversionRateError,
        NoDefaultCurrencyError,
    )

Architecture:
    services/
    ├── __init__.py                  # This file - main exports
    ├── exceptions.py                # Domain exceptions
    ├── constants.py                 # Density steps and acquisition limits
    ├── protocols.py                 # Collaborator interfaces (Protocol classes)
    ├── types.py                     # Canonical records (PricePoint, TimeRange, ...)
    ├── intervals.py                 # Density policies
    ├── gaps.py                      # Gap detection and carry-forward filling
    ├── rate_limiter.py              # Sliding-window admission control
    ├── currency_converter.py        # Price conversion via stored rates
    └── market_data/                 # Providers, retry, routing
"""

# Currency conversion
from pricesync.services.currency_converter import CurrencyConverter
# Exceptions
from pricesync.services.exceptions import (
    # Base exceptions
    ServiceError,
    # Configuration exceptions
    ConfigurationError,
    NoDefaultCurrencyError,
    # Market data exceptions
    MarketDataError,
    TransientProviderError,
    PermanentProviderError,
    ProviderUnavailableError,
    RateLimitError,
    TickerNotFoundError,
    InvalidResponseError,
    AllProvidersExhaustedError,
    # Conversion exceptions
    ConversionError,
    MissingConversionRateError,
)
# Gap detection and filling
from pricesync.services.gaps import GapDetector, GapFiller
# Density policies
from pricesync.services.intervals import (
    EXCHANGE_RATE_POLICY,
    INSTRUMENT_PRICE_POLICY,
    IntervalPolicy,
)
# Rate limiting
from pricesync.services.rate_limiter import RateLimiter
# Canonical records
from pricesync.services.types import (
    ExchangeRateSet,
    InstrumentSplitRecord,
    PricePoint,
    TimeRange,
)

__all__ = [
    # ==========================================================================
    # Services
    # ==========================================================================
    "GapDetector",
    "GapFiller",
    "IntervalPolicy",
    "INSTRUMENT_PRICE_POLICY",
    "EXCHANGE_RATE_POLICY",
    "RateLimiter",
    "CurrencyConverter",
    # Records
    "PricePoint",
    "ExchangeRateSet",
    "InstrumentSplitRecord",
    "TimeRange",

    # ==========================================================================
    # Exceptions
    # ==========================================================================
    # Base
    "ServiceError",
    # Configuration
    "ConfigurationError",
    "NoDefaultCurrencyError",
    # Market data
    "MarketDataError",
    "TransientProviderError",
    "PermanentProviderError",
    "ProviderUnavailableError",
    "RateLimitError",
    "TickerNotFoundError",
    "InvalidResponseError",
    "AllProvidersExhaustedError",
    # Conversion
    "ConversionError",
    "MissingConversionRateError",
]
