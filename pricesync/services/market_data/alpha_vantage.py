# pricesync/services/market_data/alpha_vantage.py
"""
Alpha Vantage market data provider implementation.

Supported requests:
- DAILY_PRICES   function=TIME_SERIES_DAILY_ADJUSTED (outputsize=full)
- LATEST_PRICE   function=GLOBAL_QUOTE

Daily closes are raw prices. Walking the series from newest to oldest,
every price is divided by the product of the split coefficients seen so
far, which expresses older prices in today's share units.

Alpha Vantage reports errors inside HTTP 200 bodies:
- "Error Message"           -> unknown symbol / bad request (permanent)
- "Note" / "Information"    -> quota exhausted (transient)
"""

import logging
from collections.abc import Mapping
from decimal import Decimal
from typing import Any

import httpx

from pricesync.services.exceptions import (
    InvalidResponseError,
    RateLimitError,
    TickerNotFoundError,
)
from pricesync.services.market_data.base import (
    Handler,
    PricePoint,
    PriceRequest,
    RequestType,
    parse_timestamp,
    to_decimal,
)
from pricesync.services.market_data.http import HttpMarketDataProvider
from pricesync.services.rate_limiter import RateLimiter
from pricesync.utils.date_utils import utc_now

logger = logging.getLogger(__name__)

ALPHA_VANTAGE_BASE_URL = "https://www.alphavantage.co/query"

DAILY_SERIES_KEY = "Time Series (Daily)"
CLOSE_KEY = "4. close"
SPLIT_COEFFICIENT_KEY = "8. split coefficient"
GLOBAL_QUOTE_KEY = "Global Quote"
QUOTE_PRICE_KEY = "05. price"


class AlphaVantageProvider(HttpMarketDataProvider):
    """
    Alpha Vantage implementation of MarketDataProvider.

    Configuration:
        api_key: Alpha Vantage API key (sent as `apikey`)
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
        return "alpha_vantage"

    def handlers(self) -> Mapping[RequestType, Handler]:
        return {
            RequestType.DAILY_PRICES: self._daily_prices,
            RequestType.LATEST_PRICE: self._latest_price,
        }

    async def _query(self, function: str, symbol: str, **params: str) -> dict[str, Any]:
        data = await self._get_json(
            ALPHA_VANTAGE_BASE_URL,
            params={"function": function, "symbol": symbol, "apikey": self._api_key, **params},
            symbol=symbol,
        )
        if not isinstance(data, dict):
            raise InvalidResponseError(self.name, "expected a JSON object")
        if "Error Message" in data:
            raise TickerNotFoundError(symbol, self.name)
        if "Note" in data or "Information" in data:
            raise RateLimitError(provider=self.name)
        return data

    async def _daily_prices(self, request: PriceRequest) -> list[PricePoint]:
        data = await self._query("TIME_SERIES_DAILY_ADJUSTED", request.symbol, outputsize="full")
        series = data.get(DAILY_SERIES_KEY)
        if not isinstance(series, dict):
            raise InvalidResponseError(self.name, f"missing '{DAILY_SERIES_KEY}'")

        points: list[PricePoint] = []
        split_factor = Decimal(1)
        for day in sorted(series, reverse=True):
            values = series[day]
            time = parse_timestamp(day)
            if time < request.from_time:
                break

            close = to_decimal(values.get(CLOSE_KEY))
            if time <= request.to_time and close is not None:
                points.append(PricePoint(
                    symbol=request.symbol,
                    currency_code=request.currency_code,
                    price=close / split_factor,
                    time=time,
                ))

            coefficient = to_decimal(values.get(SPLIT_COEFFICIENT_KEY))
            if coefficient:
                split_factor *= coefficient

        return sorted(points, key=lambda p: p.time)

    async def _latest_price(self, request: PriceRequest) -> PricePoint:
        data = await self._query("GLOBAL_QUOTE", request.symbol)
        quote = data.get(GLOBAL_QUOTE_KEY) or {}
        price = to_decimal(quote.get(QUOTE_PRICE_KEY))
        if price is None:
            raise TickerNotFoundError(request.symbol, self.name)

        return PricePoint(
            symbol=request.symbol,
            currency_code=request.currency_code,
            price=price,
            time=utc_now(),
        )


__all__ = ["AlphaVantageProvider"]
