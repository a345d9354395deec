# pricesync/services/market_data/fetcher.py
"""
Typed facade over the RequestRouter used by the jobs.

Builds canonical requests, routes them and unwraps the payload. A request
no provider could answer raises AllProvidersExhaustedError, which the jobs
catch per range.

Usage:
    fetcher = PriceFetcher(router)
    points = await fetcher.get_daily_prices("AAPL", "USD", start, end)
"""

import logging
from datetime import datetime

from pricesync.services.exceptions import AllProvidersExhaustedError
from pricesync.services.market_data.base import (
    ExchangeRateSet,
    ExchangeRatesRequest,
    InstrumentSplitRecord,
    InstrumentType,
    IntradayInterval,
    PricePoint,
    PriceRequest,
    Request,
    RequestType,
    SplitsRequest,
)
from pricesync.services.market_data.router import RequestRouter

logger = logging.getLogger(__name__)


class PriceFetcher:
    """Canonical data access over all registered providers."""

    def __init__(self, router: RequestRouter) -> None:
        self.router = router

    async def _fetch(self, request: Request):
        response = await self.router.route(request)
        if not response.ok:
            raise AllProvidersExhaustedError(
                request_type=request.request_type.value,
                reason=response.error_message or "unknown error",
            )
        return response.result

    # =========================================================================
    # INSTRUMENT PRICES
    # =========================================================================

    async def get_daily_prices(
            self,
            symbol: str,
            currency_code: str,
            from_time: datetime,
            to_time: datetime,
            instrument_type: InstrumentType = InstrumentType.STOCK,
    ) -> list[PricePoint]:
        """
        Daily historical prices within [from_time, to_time].

        Raises:
            AllProvidersExhaustedError: No provider returned data
        """
        request_type = (
            RequestType.DAILY_CRYPTO_PRICES
            if instrument_type == InstrumentType.CRYPTO
            else RequestType.DAILY_PRICES
        )
        return list(await self._fetch(PriceRequest(
            request_type=request_type,
            symbol=symbol,
            currency_code=currency_code,
            from_time=from_time,
            to_time=to_time,
        )))

    async def get_intraday_prices(
            self,
            symbol: str,
            currency_code: str,
            from_time: datetime,
            to_time: datetime,
            interval: IntradayInterval,
            instrument_type: InstrumentType = InstrumentType.STOCK,
    ) -> list[PricePoint]:
        """
        Intraday prices at 5-minute or 1-hour granularity.

        Raises:
            AllProvidersExhaustedError: No provider returned data
        """
        request_type = (
            RequestType.INTRADAY_CRYPTO_PRICES
            if instrument_type == InstrumentType.CRYPTO
            else RequestType.INTRADAY_PRICES
        )
        return list(await self._fetch(PriceRequest(
            request_type=request_type,
            symbol=symbol,
            currency_code=currency_code,
            from_time=from_time,
            to_time=to_time,
            interval=interval,
        )))

    async def get_latest_price(
            self,
            symbol: str,
            currency_code: str,
            instrument_type: InstrumentType = InstrumentType.STOCK,
    ) -> PricePoint:
        """
        Most recent price.

        Raises:
            AllProvidersExhaustedError: No provider returned data
        """
        request_type = (
            RequestType.LATEST_CRYPTO_PRICE
            if instrument_type == InstrumentType.CRYPTO
            else RequestType.LATEST_PRICE
        )
        return await self._fetch(PriceRequest(
            request_type=request_type,
            symbol=symbol,
            currency_code=currency_code,
        ))

    # =========================================================================
    # EXCHANGE RATES
    # =========================================================================

    async def get_daily_exchange_rates(
            self,
            base_currency: str,
            from_time: datetime,
            to_time: datetime,
    ) -> list[ExchangeRateSet]:
        return list(await self._fetch(ExchangeRatesRequest(
            request_type=RequestType.DAILY_EXCHANGE_RATES,
            base_currency=base_currency,
            from_time=from_time,
            to_time=to_time,
        )))

    async def get_latest_exchange_rates(self, base_currency: str) -> ExchangeRateSet:
        return await self._fetch(ExchangeRatesRequest(
            request_type=RequestType.LATEST_EXCHANGE_RATES,
            base_currency=base_currency,
        ))

    # =========================================================================
    # SPLITS
    # =========================================================================

    async def get_splits(
            self,
            symbol: str,
            from_time: datetime,
            to_time: datetime,
    ) -> list[InstrumentSplitRecord]:
        return list(await self._fetch(SplitsRequest(
            symbol=symbol,
            from_time=from_time,
            to_time=to_time,
        )))
