# pricesync/services/market_data/tiingo.py
"""
Tiingo market data provider implementation.

Supported requests:
- DAILY_PRICES            /tiingo/daily/{symbol}/prices
- LATEST_PRICE            /iex/{symbol}
- DAILY_CRYPTO_PRICES     /tiingo/crypto/prices (resampleFreq=1day)
- INTRADAY_CRYPTO_PRICES  /tiingo/crypto/prices (resampleFreq=5min|60min)
- LATEST_CRYPTO_PRICE     /tiingo/crypto/top

Stock prices are quoted in USD. The crypto endpoint caps the span of one
response, so crypto history is downloaded in consecutive windows, each
starting at the last price received, until the requested end is reached
or a window brings nothing new.
"""

import logging
from collections.abc import Mapping
from datetime import timedelta
from typing import Any

import httpx

from pricesync.services.exceptions import InvalidResponseError, TickerNotFoundError
from pricesync.services.market_data.base import (
    Handler,
    IntradayInterval,
    PricePoint,
    PriceRequest,
    RequestType,
    clip_to_range,
    parse_timestamp,
    to_decimal,
)
from pricesync.services.market_data.http import HttpMarketDataProvider
from pricesync.services.rate_limiter import RateLimiter
from pricesync.utils.date_utils import utc_now

logger = logging.getLogger(__name__)

TIINGO_DAILY_BASE_URL = "https://api.tiingo.com/tiingo/daily"
TIINGO_IEX_BASE_URL = "https://api.tiingo.com/iex"
TIINGO_CRYPTO_BASE_URL = "https://api.tiingo.com/tiingo/crypto"

# Stock prices from the daily and IEX endpoints are always quoted in USD
TIINGO_STOCK_CURRENCY = "USD"

RESAMPLE_FREQUENCIES: dict[IntradayInterval | None, tuple[str, timedelta]] = {
    None: ("1day", timedelta(days=1)),
    IntradayInterval.FIVE_MINUTES: ("5min", timedelta(minutes=5)),
    IntradayInterval.ONE_HOUR: ("60min", timedelta(hours=1)),
}

# Safety net for the windowed crypto download
MAX_CRYPTO_WINDOWS = 50


class TiingoProvider(HttpMarketDataProvider):
    """
    Tiingo implementation of MarketDataProvider.

    Configuration:
        api_key: Tiingo API token (sent as the `token` query parameter)
    """

    def __init__(
            self,
            api_key: str,
            rate_limiter: RateLimiter,
            client: httpx.AsyncClient | None = None,
            timeout: float = 10.0,
    ) -> None:
        self._api_key = api_key
        super().__init__(rate_limiter, client=client, timeout=timeout)

    @property
    def name(self) -> str:
        return "tiingo"

    def handlers(self) -> Mapping[RequestType, Handler]:
        return {
            RequestType.DAILY_PRICES: self._daily_prices,
            RequestType.LATEST_PRICE: self._latest_price,
            RequestType.DAILY_CRYPTO_PRICES: self._crypto_prices,
            RequestType.INTRADAY_CRYPTO_PRICES: self._crypto_prices,
            RequestType.LATEST_CRYPTO_PRICE: self._latest_crypto_price,
        }

    # =========================================================================
    # STOCKS
    # =========================================================================

    async def _daily_prices(self, request: PriceRequest) -> list[PricePoint]:
        data = await self._get_json(
            f"{TIINGO_DAILY_BASE_URL}/{request.symbol}/prices",
            params={
                "token": self._api_key,
                "startDate": request.from_time.date().isoformat(),
                "endDate": request.to_time.date().isoformat(),
            },
            symbol=request.symbol,
        )
        if not isinstance(data, list):
            raise InvalidResponseError(self.name, "expected a list of prices")

        points = [
            PricePoint(
                symbol=request.symbol,
                currency_code=TIINGO_STOCK_CURRENCY,
                price=price,
                time=parse_timestamp(row["date"]),
            )
            for row in data
            if (price := to_decimal(row.get("close"))) is not None
        ]
        return clip_to_range(points, request.from_time, request.to_time)

    async def _latest_price(self, request: PriceRequest) -> PricePoint:
        data = await self._get_json(
            f"{TIINGO_IEX_BASE_URL}/{request.symbol}",
            params={"token": self._api_key},
            symbol=request.symbol,
        )
        if not data:
            raise TickerNotFoundError(request.symbol, self.name)

        top = data[0]
        price = to_decimal(top.get("tngoLast") or top.get("last"))
        if price is None:
            raise InvalidResponseError(self.name, "missing last price")

        return PricePoint(
            symbol=request.symbol,
            currency_code=TIINGO_STOCK_CURRENCY,
            price=price,
            time=utc_now(),
        )

    # =========================================================================
    # CRYPTO
    # =========================================================================

    async def _crypto_prices(self, request: PriceRequest) -> list[PricePoint]:
        resample_freq, step = RESAMPLE_FREQUENCIES[request.interval]
        ticker = self._crypto_ticker(request.symbol, request.currency_code)
        end_date = (request.to_time + timedelta(days=1)).date().isoformat()

        collected: list[PricePoint] = []
        window_start = request.from_time
        for _ in range(MAX_CRYPTO_WINDOWS):
            data = await self._get_json(
                f"{TIINGO_CRYPTO_BASE_URL}/prices",
                params={
                    "tickers": ticker,
                    "startDate": window_start.date().isoformat(),
                    "endDate": end_date,
                    "resampleFreq": resample_freq,
                    "token": self._api_key,
                },
                symbol=request.symbol,
            )
            window = self._parse_crypto_prices(data, request)
            last_time = collected[-1].time if collected else None
            fresh = [p for p in window if last_time is None or p.time > last_time]
            if not fresh:
                break

            collected.extend(fresh)
            if collected[-1].time >= request.to_time - step:
                break
            window_start = collected[-1].time

        return clip_to_range(collected, request.from_time, request.to_time)

    async def _latest_crypto_price(self, request: PriceRequest) -> PricePoint:
        data = await self._get_json(
            f"{TIINGO_CRYPTO_BASE_URL}/top",
            params={
                "tickers": self._crypto_ticker(request.symbol, request.currency_code),
                "token": self._api_key,
            },
            symbol=request.symbol,
        )
        try:
            price = to_decimal(data[0]["topOfBookData"][0]["lastPrice"])
        except (IndexError, KeyError, TypeError):
            raise InvalidResponseError(self.name, "missing top of book data")
        if price is None:
            raise InvalidResponseError(self.name, "missing last price")

        return PricePoint(
            symbol=request.symbol,
            currency_code=request.currency_code,
            price=price,
            time=utc_now(),
        )

    def _parse_crypto_prices(self, data: Any, request: PriceRequest) -> list[PricePoint]:
        if not isinstance(data, list):
            raise InvalidResponseError(self.name, "expected a list of tickers")
        if not data:
            return []

        points = []
        for row in data[0].get("priceData") or []:
            price = to_decimal(row.get("close"))
            if price is None:
                continue
            points.append(PricePoint(
                symbol=request.symbol,
                currency_code=request.currency_code,
                price=price,
                time=parse_timestamp(row["date"]),
            ))
        return sorted(points, key=lambda p: p.time)

    @staticmethod
    def _crypto_ticker(symbol: str, currency_code: str) -> str:
        return f"{symbol}{currency_code}".lower()


__all__ = ["TiingoProvider"]
