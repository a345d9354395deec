# pricesync/services/market_data/yahoo.py
"""
Yahoo Finance market data provider implementation.

This module implements the MarketDataProvider interface using the yfinance library.
Yahoo Finance is a free data source suitable for personal/educational use.

Supported requests:
- DAILY_PRICES / DAILY_CRYPTO_PRICES        Ticker.history(interval="1d")
- INTRADAY_PRICES / INTRADAY_CRYPTO_PRICES  Ticker.history(interval="5m"|"60m")
- LATEST_PRICE / LATEST_CRYPTO_PRICE        Ticker.fast_info
- SPLITS                                    Ticker.splits

yfinance is synchronous, so every call runs in a worker thread through
asyncio.to_thread and never blocks the event loop.

Limitations:
- Rate limits (not officially documented, but exist)
- Intraday history only reaches back 60 days (5m) / 730 days (60m)
- Data may be delayed (15-20 minutes for some markets)
"""

import asyncio
import logging
from collections.abc import Callable, Mapping
from datetime import timedelta
from fractions import Fraction
from typing import Any, TypeVar

import pandas as pd
import yfinance as yf

from pricesync.services.constants import SPLIT_RATIO_PRECISION
from pricesync.services.exceptions import (
    MarketDataError,
    ProviderUnavailableError,
    RateLimitError,
    TickerNotFoundError,
)
from pricesync.services.market_data.base import (
    Handler,
    InstrumentSplitRecord,
    IntradayInterval,
    MarketDataProvider,
    PricePoint,
    PriceRequest,
    RequestType,
    SplitsRequest,
    clip_to_range,
    parse_timestamp,
    to_decimal,
)
from pricesync.services.rate_limiter import RateLimiter
from pricesync.utils.date_utils import utc_now

logger = logging.getLogger(__name__)

R = TypeVar("R")

HISTORY_INTERVALS: dict[IntradayInterval | None, str] = {
    None: "1d",
    IntradayInterval.FIVE_MINUTES: "5m",
    IntradayInterval.ONE_HOUR: "60m",
}


class YahooFinanceProvider(MarketDataProvider):
    """
    Yahoo Finance implementation of MarketDataProvider.

    Uses the yfinance library to fetch historical prices, latest quotes and
    split events from Yahoo Finance.

    Error classification (from the exception text yfinance raises):
        - "rate limit" / "too many requests"  -> RateLimitError (transient)
        - "not found" / "delisted"            -> TickerNotFoundError (permanent)
        - anything else                       -> ProviderUnavailableError (transient)

    Example:
        provider = YahooFinanceProvider(RateLimiter("yahoo", 60, timedelta(minutes=1)))
        response = await provider.process(request)
    """

    def __init__(self, rate_limiter: RateLimiter, timeout: int = 10) -> None:
        """
        Initialize the Yahoo Finance provider.

        Args:
            rate_limiter: Limiter shared by all Yahoo requests
            timeout: Request timeout in seconds
        """
        self._timeout = timeout
        super().__init__(rate_limiter)
        logger.info(f"YahooFinanceProvider initialized (timeout={timeout}s)")

    @property
    def name(self) -> str:
        return "yahoo"

    def handlers(self) -> Mapping[RequestType, Handler]:
        return {
            RequestType.DAILY_PRICES: self._history,
            RequestType.INTRADAY_PRICES: self._history,
            RequestType.DAILY_CRYPTO_PRICES: self._history,
            RequestType.INTRADAY_CRYPTO_PRICES: self._history,
            RequestType.LATEST_PRICE: self._latest_price,
            RequestType.LATEST_CRYPTO_PRICE: self._latest_price,
            RequestType.SPLITS: self._splits,
        }

    # =========================================================================
    # HANDLERS
    # =========================================================================

    async def _history(self, request: PriceRequest) -> list[PricePoint]:
        yahoo_symbol = self._yahoo_symbol(request)
        interval = HISTORY_INTERVALS[request.interval]

        logger.debug(
            f"Fetching {interval} history for {yahoo_symbol}: "
            f"{request.from_time} to {request.to_time}"
        )

        def fetch() -> tuple[pd.DataFrame, dict]:
            ticker = yf.Ticker(yahoo_symbol)
            # Yahoo Finance end is exclusive, so add 1 day
            df = ticker.history(
                start=request.from_time,
                end=request.to_time + timedelta(days=1),
                interval=interval,
                auto_adjust=False,
                timeout=self._timeout,
            )
            return df, (ticker.history_metadata or {})

        df, metadata = await self._call(fetch, request.symbol)
        if df is None or df.empty:
            logger.warning(f"No price data for {yahoo_symbol} between {request.from_time} and {request.to_time}")
            return []

        currency = (metadata.get("currency") or request.currency_code).upper()
        points = self._dataframe_to_points(df, request.symbol, currency)
        logger.debug(f"Fetched {len(points)} points for {yahoo_symbol}")
        return clip_to_range(points, request.from_time, request.to_time)

    async def _latest_price(self, request: PriceRequest) -> PricePoint:
        yahoo_symbol = self._yahoo_symbol(request)

        def fetch() -> tuple[Any, Any]:
            info = yf.Ticker(yahoo_symbol).fast_info
            return info.last_price, info.currency

        last_price, currency = await self._call(fetch, request.symbol)
        price = to_decimal(last_price)
        if price is None:
            raise TickerNotFoundError(request.symbol, self.name)

        return PricePoint(
            symbol=request.symbol,
            currency_code=(currency or request.currency_code).upper(),
            price=price,
            time=utc_now(),
        )

    async def _splits(self, request: SplitsRequest) -> list[InstrumentSplitRecord]:
        splits = await self._call(lambda: yf.Ticker(request.symbol).splits, request.symbol)
        if splits is None or splits.empty:
            return []

        records = []
        for idx, ratio in splits.items():
            time = parse_timestamp(idx)
            if not request.from_time <= time <= request.to_time:
                continue
            record = self._split_record(time, ratio)
            if record is not None:
                records.append(record)
        return sorted(records, key=lambda r: r.time)

    # =========================================================================
    # HELPER METHODS
    # =========================================================================

    async def _call(self, fn: Callable[[], R], symbol: str) -> R:
        """Run a blocking yfinance call in a thread and classify its failures."""
        try:
            return await asyncio.to_thread(fn)
        except MarketDataError:
            raise
        except Exception as e:
            error_str = str(e).lower()

            if "rate limit" in error_str or "too many requests" in error_str:
                raise RateLimitError(provider=self.name)

            if "not found" in error_str or "delisted" in error_str:
                raise TickerNotFoundError(symbol, self.name)

            logger.error(f"Yahoo Finance error for {symbol}: {e}")
            raise ProviderUnavailableError(provider=self.name, reason=str(e))

    @staticmethod
    def _yahoo_symbol(request: PriceRequest) -> str:
        """Crypto pairs are quoted as BASE-QUOTE (e.g., "BTC-USD")."""
        if request.request_type in (
                RequestType.DAILY_CRYPTO_PRICES,
                RequestType.INTRADAY_CRYPTO_PRICES,
                RequestType.LATEST_CRYPTO_PRICE,
        ):
            return f"{request.symbol}-{request.currency_code}".upper()
        return request.symbol

    @staticmethod
    def _dataframe_to_points(df: pd.DataFrame, symbol: str, currency: str) -> list[PricePoint]:
        """
        Convert a yfinance history DataFrame to price points.

        Args:
            df: DataFrame indexed by timestamp with a Close column
            symbol: Symbol stored on the points
            currency: Currency of the Close column

        Returns:
            Points for every row with a usable close price
        """
        points = []
        for idx, close in df["Close"].items():
            price = to_decimal(close)
            if price is None:
                logger.warning(f"Skipping {idx}: missing close price")
                continue
            points.append(PricePoint(
                symbol=symbol,
                currency_code=currency,
                price=price,
                time=parse_timestamp(idx),
            ))
        return points

    @staticmethod
    def _split_record(time, ratio: Any) -> InstrumentSplitRecord | None:
        """Turn a float split ratio (e.g., 1.5) into numerator/denominator (3/2)."""
        value = to_decimal(ratio)
        if value is None or value <= 0:
            return None
        fraction = Fraction(value).limit_denominator(SPLIT_RATIO_PRECISION)
        if fraction <= 0:
            return None
        return InstrumentSplitRecord(
            time=time,
            numerator=fraction.numerator,
            denominator=fraction.denominator,
        )


__all__ = ["YahooFinanceProvider"]
