# pricesync/jobs/splits.py
"""
Split fetch job.

For every tracked instrument, requests split events from the last stored
split (or the instrument's tracked_since) up to now and stores those
strictly newer than the last stored split.
"""

import logging
from datetime import datetime

from pricesync.models import Instrument
from pricesync.services.exceptions import AllProvidersExhaustedError
from pricesync.services.market_data.fetcher import PriceFetcher
from pricesync.services.protocols import InstrumentRepositoryProtocol, InstrumentSplitRepositoryProtocol
from pricesync.jobs.base import Clock, Job, JobResult
from pricesync.utils.date_utils import ensure_utc, utc_now

logger = logging.getLogger(__name__)


class SplitFetchJob(Job):
    """Detects new split events of tracked instruments."""

    name = "split_fetch"

    def __init__(
            self,
            fetcher: PriceFetcher,
            instruments: InstrumentRepositoryProtocol,
            splits: InstrumentSplitRepositoryProtocol,
            clock: Clock = utc_now,
            concurrency: int = 1,
    ) -> None:
        super().__init__(clock=clock, concurrency=concurrency)
        self.fetcher = fetcher
        self.instruments = instruments
        self.splits = splits

    async def execute(self, now: datetime, result: JobResult) -> None:
        tracked = [i for i in self.instruments.list_all() if i.is_tracked]

        async def process(instrument: Instrument) -> None:
            await self.process_instrument(instrument, now, result)

        await self.for_each_entity(tracked, process, result, describe=lambda i: i.symbol)

    async def process_instrument(self, instrument: Instrument, now: datetime, result: JobResult) -> None:
        existing = self.splits.list_splits(instrument.id)
        last_time = ensure_utc(existing[-1].time) if existing else None
        start = last_time or ensure_utc(instrument.tracked_since)

        try:
            fetched = await self.fetcher.get_splits(instrument.symbol, start, now)
        except AllProvidersExhaustedError as e:
            result.ranges_failed += 1
            result.warn(f"{instrument.symbol}: no split data: {e}")
            return

        for split in sorted(fetched, key=lambda s: s.time):
            if last_time is not None and split.time <= last_time:
                continue
            self.splits.add(instrument.id, split)
            last_time = split.time
            result.points_inserted += 1
            logger.info(
                f"{instrument.symbol} {split.numerator}-for-{split.denominator} "
                f"split detected on {split.time.date().isoformat()}"
            )
