# pricesync/services/market_data/open_exchange_rates.py
"""
Open Exchange Rates provider implementation.

Supported requests:
- LATEST_EXCHANGE_RATES  /api/latest.json

The response carries its own UNIX timestamp, which is used as the rate
time instead of the local clock.
"""

import logging
from collections.abc import Mapping

import httpx

from pricesync.services.exceptions import InvalidResponseError
from pricesync.services.market_data.base import (
    ExchangeRateSet,
    ExchangeRatesRequest,
    Handler,
    RequestType,
    parse_timestamp,
)
from pricesync.services.market_data.exchange_rate_host import parse_rates
from pricesync.services.market_data.http import HttpMarketDataProvider
from pricesync.services.rate_limiter import RateLimiter
from pricesync.utils.date_utils import utc_now

logger = logging.getLogger(__name__)

OPEN_EXCHANGE_RATES_BASE_URL = "https://openexchangerates.org/api"


class OpenExchangeRatesProvider(HttpMarketDataProvider):
    """
    Open Exchange Rates implementation of MarketDataProvider.

    Configuration:
        app_id: Application id (sent as `app_id`)
    """

    def __init__(
            self,
            app_id: str,
            rate_limiter: RateLimiter,
            client: httpx.AsyncClient | None = None,
            timeout: float = 10.0,
    ) -> None:
        self._app_id = app_id
        super().__init__(rate_limiter, client=client, timeout=timeout)

    @property
    def name(self) -> str:
        return "open_exchange_rates"

    def handlers(self) -> Mapping[RequestType, Handler]:
        return {RequestType.LATEST_EXCHANGE_RATES: self._latest_rates}

    async def _latest_rates(self, request: ExchangeRatesRequest) -> ExchangeRateSet:
        data = await self._get_json(
            f"{OPEN_EXCHANGE_RATES_BASE_URL}/latest.json",
            params={"app_id": self._app_id, "base": request.base_currency},
        )
        if not isinstance(data, dict) or not isinstance(data.get("rates"), dict):
            raise InvalidResponseError(self.name, "missing 'rates'")

        timestamp = data.get("timestamp")
        return ExchangeRateSet(
            base_currency=(data.get("base") or request.base_currency).upper(),
            time=parse_timestamp(timestamp) if timestamp is not None else utc_now(),
            rates=parse_rates(data["rates"]),
        )


__all__ = ["OpenExchangeRatesProvider"]
