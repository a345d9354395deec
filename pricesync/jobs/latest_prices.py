# pricesync/jobs/latest_prices.py
"""
Latest instrument prices job.

Fetches the most recent price of every tracked instrument and stores it at
"now" rounded down to 5 minutes, so repeated runs within the same slot
write the same timestamp (which the repository then skips).
"""

import logging
from datetime import datetime

from pricesync.models import Instrument
from pricesync.services.constants import PRICE_TIME_RESOLUTION
from pricesync.services.exceptions import AllProvidersExhaustedError, MissingConversionRateError
from pricesync.services.market_data.fetcher import PriceFetcher
from pricesync.services.protocols import (
    CurrencyConverterProtocol,
    InstrumentPriceRepositoryProtocol,
    InstrumentRepositoryProtocol,
)
from pricesync.jobs.base import Clock, Job, JobResult
from pricesync.utils.date_utils import round_down, utc_now

logger = logging.getLogger(__name__)


class LatestPricesJob(Job):
    """Stores the latest price of each tracked instrument."""

    name = "latest_prices"

    def __init__(
            self,
            fetcher: PriceFetcher,
            instruments: InstrumentRepositoryProtocol,
            prices: InstrumentPriceRepositoryProtocol,
            converter: CurrencyConverterProtocol,
            clock: Clock = utc_now,
            concurrency: int = 1,
    ) -> None:
        super().__init__(clock=clock, concurrency=concurrency)
        self.fetcher = fetcher
        self.instruments = instruments
        self.prices = prices
        self.converter = converter

    async def execute(self, now: datetime, result: JobResult) -> None:
        tracked = [i for i in self.instruments.list_all() if i.is_tracked]
        price_time = round_down(now, PRICE_TIME_RESOLUTION)

        async def process(instrument: Instrument) -> None:
            await self.process_instrument(instrument, price_time, now, result)

        await self.for_each_entity(tracked, process, result, describe=lambda i: i.symbol)

    async def process_instrument(
            self,
            instrument: Instrument,
            price_time: datetime,
            now: datetime,
            result: JobResult,
    ) -> None:
        try:
            latest = await self.fetcher.get_latest_price(
                instrument.symbol,
                instrument.currency_code,
                instrument_type=instrument.instrument_type,
            )
        except AllProvidersExhaustedError as e:
            result.ranges_failed += 1
            result.warn(f"{instrument.symbol}: no latest price: {e}")
            return

        try:
            point = self.converter.convert(latest.at(price_time), instrument.currency_code)
        except MissingConversionRateError as e:
            result.points_skipped += 1
            logger.warning(f"{instrument.symbol}: skipping latest price: {e}")
            return

        if point.price <= 0:
            result.points_skipped += 1
            logger.warning(f"{instrument.symbol}: ignoring non-positive latest price {point.price}")
            return

        result.points_inserted += self.prices.bulk_insert(instrument.id, [point])
        self.instruments.update_tracking(instrument.id, last_update=now)
