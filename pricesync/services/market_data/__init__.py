# pricesync/services/market_data/__init__.py
"""
Market data services package.

This package contains:
- Abstract interface for market data providers (base.py)
- HTTP plumbing shared by the REST providers (http.py)
- Concrete providers (tiingo.py, alpha_vantage.py, yahoo.py,
  exchange_rate_host.py, open_exchange_rates.py)
- Retry policy (retry.py), request routing (router.py)
- Typed facade used by the jobs (fetcher.py)

Usage:
    from pricesync.services.market_data import (
        PriceFetcher,
        RequestRouter,
        RetryPolicy,
        TiingoProvider,
        YahooFinanceProvider,
    )

Architecture:
    MarketDataProvider (ABC)
    ├── HttpMarketDataProvider
    │   ├── TiingoProvider
    │   ├── AlphaVantageProvider
    │   ├── ExchangeRateHostProvider
    │   └── OpenExchangeRatesProvider
    └── YahooFinanceProvider

    PriceFetcher
    └── RequestRouter (per-provider RateLimiter + RetryPolicy, failover)
"""

# Base provider interface and request types
from pricesync.services.market_data.base import (
    ExchangeRatesRequest,
    InstrumentType,
    IntradayInterval,
    MarketDataProvider,
    PriceRequest,
    ProviderResponse,
    RequestType,
    ResponseStatus,
    SplitsRequest,
)
# Concrete implementations
from pricesync.services.market_data.alpha_vantage import AlphaVantageProvider
from pricesync.services.market_data.exchange_rate_host import ExchangeRateHostProvider
from pricesync.services.market_data.fetcher import PriceFetcher
from pricesync.services.market_data.http import HttpMarketDataProvider
from pricesync.services.market_data.open_exchange_rates import OpenExchangeRatesProvider
from pricesync.services.market_data.retry import RetryPolicy
from pricesync.services.market_data.router import RequestRouter
from pricesync.services.market_data.tiingo import TiingoProvider
from pricesync.services.market_data.yahoo import YahooFinanceProvider

__all__ = [
    # Abstract interface
    "MarketDataProvider",
    "HttpMarketDataProvider",
    "ProviderResponse",
    "ResponseStatus",
    # Requests
    "RequestType",
    "InstrumentType",
    "IntradayInterval",
    "PriceRequest",
    "ExchangeRatesRequest",
    "SplitsRequest",
    # Concrete implementations
    "TiingoProvider",
    "AlphaVantageProvider",
    "YahooFinanceProvider",
    "ExchangeRateHostProvider",
    "OpenExchangeRatesProvider",
    # Routing
    "RetryPolicy",
    "RequestRouter",
    "PriceFetcher",
]
