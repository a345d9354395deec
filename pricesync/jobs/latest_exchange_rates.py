# pricesync/jobs/latest_exchange_rates.py
"""
Latest exchange rates job.

Fetches the latest rates of the default currency and stores those of known
currencies at "now" rounded down to 5 minutes. Does nothing until the
missing exchange rates job has started tracking the default currency.
"""

import logging
from datetime import datetime

from pricesync.services.constants import PRICE_TIME_RESOLUTION
from pricesync.services.exceptions import AllProvidersExhaustedError, NoDefaultCurrencyError
from pricesync.services.market_data.fetcher import PriceFetcher
from pricesync.services.protocols import CurrencyRepositoryProtocol, ExchangeRateRepositoryProtocol
from pricesync.services.types import ExchangeRateSet
from pricesync.jobs.base import Clock, Job, JobResult
from pricesync.utils.date_utils import round_down, utc_now

logger = logging.getLogger(__name__)


class LatestExchangeRatesJob(Job):
    """Stores the latest exchange rates of the default currency."""

    name = "latest_exchange_rates"

    def __init__(
            self,
            fetcher: PriceFetcher,
            currencies: CurrencyRepositoryProtocol,
            rates: ExchangeRateRepositoryProtocol,
            clock: Clock = utc_now,
    ) -> None:
        super().__init__(clock=clock)
        self.fetcher = fetcher
        self.currencies = currencies
        self.rates = rates

    async def execute(self, now: datetime, result: JobResult) -> None:
        default = self.currencies.get_default()
        if default is None:
            raise NoDefaultCurrencyError()

        if default.tracking_start_time is None:
            logger.info(f"{default.code} is not tracked yet, skipping latest exchange rates")
            return

        known = {c.code for c in self.currencies.list_all()} - {default.code}

        try:
            latest = await self.fetcher.get_latest_exchange_rates(default.code)
        except AllProvidersExhaustedError as e:
            result.ranges_failed += 1
            result.warn(f"{default.code}: no latest exchange rates: {e}")
        else:
            rates = {code: rate for code, rate in latest.rates.items() if code in known and rate > 0}
            rate_set = ExchangeRateSet(
                base_currency=default.code,
                time=round_down(now, PRICE_TIME_RESOLUTION),
                rates=rates,
            )
            result.points_inserted += self.rates.bulk_insert(default.code, [rate_set])
            result.entities_processed += 1

        self.currencies.update_tracking(default.code, last_update=now)
