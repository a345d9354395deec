# pricesync/services/market_data/exchange_rate_host.py
"""
exchangerate.host exchange rate provider implementation.

Supported requests:
- DAILY_EXCHANGE_RATES   /timeseries (at most 365 days per call)
- LATEST_EXCHANGE_RATES  /latest

Longer histories are split into consecutive windows of at most 365 days,
requested concurrently. The request succeeds if any window succeeds;
otherwise the first window failure is reported.
"""

import asyncio
import logging
from collections.abc import Mapping
from datetime import datetime, timedelta
from typing import Any

import httpx

from pricesync.services.constants import EXCHANGE_RATE_TIMESERIES_MAX_DAYS
from pricesync.services.exceptions import InvalidResponseError, MarketDataError
from pricesync.services.market_data.base import (
    ExchangeRateSet,
    ExchangeRatesRequest,
    Handler,
    RequestType,
    parse_timestamp,
    to_decimal,
)
from pricesync.services.market_data.http import HttpMarketDataProvider
from pricesync.services.rate_limiter import RateLimiter
from pricesync.utils.date_utils import utc_now

logger = logging.getLogger(__name__)

EXCHANGE_RATE_HOST_BASE_URL = "https://api.exchangerate.host"


def split_into_windows(
        from_time: datetime,
        to_time: datetime,
        max_days: int = EXCHANGE_RATE_TIMESERIES_MAX_DAYS,
) -> list[tuple[datetime, datetime]]:
    """
    Split [from_time, to_time] into consecutive windows of at most max_days.

    Windows do not overlap: each one ends the day before the next starts,
    except the last one, which ends at to_time.
    """
    starts = []
    current = from_time
    while current < to_time:
        starts.append(current)
        current += timedelta(days=max_days)

    windows = []
    for i, start in enumerate(starts):
        end = to_time if i == len(starts) - 1 else starts[i + 1] - timedelta(days=1)
        windows.append((start, end))
    return windows


def parse_rates(rates: Mapping[str, Any]) -> dict[str, Any]:
    """Normalize a vendor rate table: upper-case codes, Decimal values, no garbage."""
    parsed = {}
    for code, value in rates.items():
        rate = to_decimal(value)
        if rate is not None and rate > 0:
            parsed[code.upper()] = rate
    return parsed


class ExchangeRateHostProvider(HttpMarketDataProvider):
    """
    exchangerate.host implementation of MarketDataProvider.

    Configuration:
        access_key: Optional access key (newer plans require one)
    """

    def __init__(
            self,
            rate_limiter: RateLimiter,
            access_key: str | None = None,
            client: httpx.AsyncClient | None = None,
            timeout: float = 10.0,
    ) -> None:
        self._access_key = access_key
        super().__init__(rate_limiter, client=client, timeout=timeout)

    @property
    def name(self) -> str:
        return "exchange_rate_host"

    def handlers(self) -> Mapping[RequestType, Handler]:
        return {
            RequestType.DAILY_EXCHANGE_RATES: self._daily_rates,
            RequestType.LATEST_EXCHANGE_RATES: self._latest_rates,
        }

    def _params(self, **params: str) -> dict[str, str]:
        if self._access_key:
            params["access_key"] = self._access_key
        return params

    async def _daily_rates(self, request: ExchangeRatesRequest) -> list[ExchangeRateSet]:
        windows = split_into_windows(request.from_time, request.to_time)
        results = await asyncio.gather(
            *(self._fetch_window(request.base_currency, start, end) for start, end in windows),
            return_exceptions=True,
        )

        rate_sets: list[ExchangeRateSet] = []
        failures: list[MarketDataError] = []
        for result in results:
            if isinstance(result, MarketDataError):
                failures.append(result)
            elif isinstance(result, BaseException):
                raise result
            else:
                rate_sets.extend(result)

        if failures and len(failures) == len(results):
            raise failures[0]
        if failures:
            logger.warning(
                f"{self.name}: {len(failures)} of {len(results)} windows failed "
                f"for base {request.base_currency}"
            )

        return sorted(
            (s for s in rate_sets if request.from_time <= s.time <= request.to_time),
            key=lambda s: s.time,
        )

    async def _fetch_window(self, base_currency: str, start: datetime, end: datetime) -> list[ExchangeRateSet]:
        data = await self._get_json(
            f"{EXCHANGE_RATE_HOST_BASE_URL}/timeseries",
            params=self._params(
                start_date=start.date().isoformat(),
                end_date=end.date().isoformat(),
                base=base_currency,
            ),
        )
        rates_by_day = data.get("rates") if isinstance(data, dict) else None
        if not isinstance(rates_by_day, dict):
            raise InvalidResponseError(self.name, "missing 'rates'")

        base = (data.get("base") or base_currency).upper()
        return [
            ExchangeRateSet(base_currency=base, time=parse_timestamp(day), rates=parse_rates(rates))
            for day, rates in rates_by_day.items()
        ]

    async def _latest_rates(self, request: ExchangeRatesRequest) -> ExchangeRateSet:
        data = await self._get_json(
            f"{EXCHANGE_RATE_HOST_BASE_URL}/latest",
            params=self._params(base=request.base_currency),
        )
        if not isinstance(data, dict) or not isinstance(data.get("rates"), dict):
            raise InvalidResponseError(self.name, "missing 'rates'")

        return ExchangeRateSet(
            base_currency=(data.get("base") or request.base_currency).upper(),
            time=utc_now(),
            rates=parse_rates(data["rates"]),
        )


__all__ = ["ExchangeRateHostProvider", "split_into_windows", "parse_rates"]
