# pricesync/jobs/missing_prices.py
"""
Missing instrument prices job.

Keeps the stored prices of every tracked instrument at the density rule:
    - 5 minutes for prices within the last day
    - 1 hour for prices within the last 5 days
    - 1 day for older prices

For each instrument:
    1. GapDetector finds the ranges violating the rule, from the tracking
       start (or FINANCIAL_DATA_START_TIME) to now rounded down to 5 minutes
    2. Each range is fetched through the router: daily history when the
       range ended at least 5 days ago, intraday (5min / 1hour) otherwise
    3. Points are converted to the instrument's currency at their own time
    4. GapFiller carries the last known price forward through the range
    5. Points strictly inside the range are stored in bounded batches

A range no provider could serve is logged and skipped. The instrument's
last_update is advanced even when ranges failed, so permanently missing
history is not retried in a storm.

Usage:
    job = MissingInstrumentPricesJob(fetcher, instruments, prices, converter)
    result = await job.run()
"""

import logging
from collections.abc import Sequence
from datetime import datetime

from pricesync.models import Instrument
from pricesync.services.constants import (
    FINANCIAL_DATA_START_TIME,
    FIVE_MINUTES,
    INTRADAY_HOURLY_WINDOW,
    MAX_INSERT_BATCH_SIZE,
    PRICE_TIME_RESOLUTION,
)
from pricesync.services.exceptions import AllProvidersExhaustedError, MissingConversionRateError
from pricesync.services.gaps import GapDetector, GapFiller
from pricesync.services.intervals import INSTRUMENT_PRICE_POLICY
from pricesync.services.market_data.base import IntradayInterval
from pricesync.services.market_data.fetcher import PriceFetcher
from pricesync.services.protocols import (
    CurrencyConverterProtocol,
    InstrumentPriceRepositoryProtocol,
    InstrumentRepositoryProtocol,
)
from pricesync.services.types import PricePoint, TimeRange
from pricesync.jobs.base import Clock, Job, JobResult
from pricesync.utils.date_utils import ensure_utc, round_down, utc_now

logger = logging.getLogger(__name__)


class MissingInstrumentPricesJob(Job):
    """
    Fills gaps in the stored price history of tracked instruments.

    Attributes:
        fetcher: Routed access to the price providers
        instruments: Instrument repository
        prices: Instrument price repository
        converter: Currency conversion of fetched points
        batch_size: Maximum points per insert call
        start_time: Acquisition start for never-tracked instruments
    """

    name = "missing_instrument_prices"

    def __init__(
            self,
            fetcher: PriceFetcher,
            instruments: InstrumentRepositoryProtocol,
            prices: InstrumentPriceRepositoryProtocol,
            converter: CurrencyConverterProtocol,
            clock: Clock = utc_now,
            concurrency: int = 1,
            batch_size: int = MAX_INSERT_BATCH_SIZE,
            start_time: datetime = FINANCIAL_DATA_START_TIME,
    ) -> None:
        super().__init__(clock=clock, concurrency=concurrency)
        if not 1 <= batch_size <= MAX_INSERT_BATCH_SIZE:
            raise ValueError(f"batch_size must be within 1..{MAX_INSERT_BATCH_SIZE}, got {batch_size}")
        self.fetcher = fetcher
        self.instruments = instruments
        self.prices = prices
        self.converter = converter
        self.batch_size = batch_size
        self.start_time = start_time
        self.detector = GapDetector(INSTRUMENT_PRICE_POLICY)
        self.filler = GapFiller()

    async def execute(self, now: datetime, result: JobResult) -> None:
        tracked = [i for i in self.instruments.list_all() if i.is_tracked]
        logger.info(f"Checking {len(tracked)} tracked instruments for missing prices")

        async def process(instrument: Instrument) -> None:
            await self.process_instrument(instrument, now, result)

        await self.for_each_entity(tracked, process, result, describe=lambda i: i.symbol)

    # =========================================================================
    # PER INSTRUMENT
    # =========================================================================

    async def process_instrument(self, instrument: Instrument, now: datetime, result: JobResult) -> None:
        """
        Detect, fetch, fill and store the missing prices of one instrument.

        Ranges are processed in increasing from_time order. The anchor (last
        known price) is threaded through them: it comes from storage when a
        stored price precedes the range, otherwise from the previous range.
        """
        range_end = round_down(now, PRICE_TIME_RESOLUTION)
        start = ensure_utc(instrument.tracking_start_time) if instrument.tracking_start_time else self.start_time

        existing = self.prices.list_price_times(instrument.id, since=start)
        ranges = self.detector.find_missing_ranges(existing, start, range_end)
        logger.info(f"{instrument.symbol}: {len(ranges)} missing ranges since {start.isoformat()}")

        anchor: PricePoint | None = None
        earliest: datetime | None = None
        for time_range in ranges:
            try:
                fetched = await self._fetch_range(instrument, time_range, range_end)
            except AllProvidersExhaustedError as e:
                result.ranges_failed += 1
                result.warn(
                    f"{instrument.symbol}: no data for "
                    f"[{time_range.from_time.isoformat()}, {time_range.to_time.isoformat()}): {e}"
                )
                continue

            converted = self._convert(instrument, fetched, result)
            anchor = self._anchor_for(instrument, time_range, anchor)
            filled = self.filler.fill_range(([anchor] if anchor else []) + converted, time_range)

            accepted = [
                p for p in filled
                if time_range.from_time < p.time < time_range.to_time and p.price > 0
            ]
            result.points_inserted += self._store(instrument, accepted)

            if accepted:
                anchor = accepted[-1]
                if earliest is None or accepted[0].time < earliest:
                    earliest = accepted[0].time

        # startTime is set once; last_update always advances
        start_time = earliest if instrument.tracking_start_time is None else None
        self.instruments.update_tracking(instrument.id, start_time=start_time, last_update=now)

    async def _fetch_range(
            self,
            instrument: Instrument,
            time_range: TimeRange,
            now: datetime,
    ) -> list[PricePoint]:
        if now - time_range.to_time >= INTRADAY_HOURLY_WINDOW:
            return await self.fetcher.get_daily_prices(
                instrument.symbol,
                instrument.currency_code,
                time_range.from_time,
                time_range.to_time,
                instrument_type=instrument.instrument_type,
            )

        interval = (
            IntradayInterval.FIVE_MINUTES
            if time_range.interval <= FIVE_MINUTES
            else IntradayInterval.ONE_HOUR
        )
        return await self.fetcher.get_intraday_prices(
            instrument.symbol,
            instrument.currency_code,
            time_range.from_time,
            time_range.to_time,
            interval,
            instrument_type=instrument.instrument_type,
        )

    def _convert(self, instrument: Instrument, points: Sequence[PricePoint], result: JobResult) -> list[PricePoint]:
        """Express points in the instrument's currency, dropping those without a rate."""
        converted = []
        for point in points:
            try:
                converted.append(self.converter.convert(point, instrument.currency_code))
            except MissingConversionRateError as e:
                result.points_skipped += 1
                logger.warning(f"{instrument.symbol}: skipping price at {point.time.isoformat()}: {e}")
        return converted

    def _anchor_for(
            self,
            instrument: Instrument,
            time_range: TimeRange,
            carried: PricePoint | None,
    ) -> PricePoint | None:
        stored = self.prices.get_price_at(instrument.id, time_range.from_time)
        if stored is None:
            return carried
        return PricePoint(
            symbol=instrument.symbol,
            currency_code=instrument.currency_code,
            price=stored.price,
            time=time_range.from_time,
        )

    def _store(self, instrument: Instrument, points: Sequence[PricePoint]) -> int:
        inserted = 0
        for i in range(0, len(points), self.batch_size):
            inserted += self.prices.bulk_insert(instrument.id, points[i:i + self.batch_size])
        if inserted:
            logger.debug(f"{instrument.symbol}: stored {inserted} prices")
        return inserted
