# pricesync/jobs/missing_exchange_rates.py
"""
Missing exchange rates job.

Keeps daily exchange rates of the default currency against every other
known currency, from the default currency's tracking start (or
FINANCIAL_DATA_START_TIME) to now.

Each target currency's rates are treated as a price series: the same
GapFiller carries the last known rate forward over days the provider
skipped (weekends, holidays).

Raises NoDefaultCurrencyError before doing anything if no default currency
is configured; this aborts the run.

Usage:
    job = MissingExchangeRatesJob(fetcher, currencies, rates)
    result = await job.run()
"""

import logging
from collections import defaultdict
from collections.abc import Iterable, Sequence
from datetime import datetime
from decimal import Decimal

from pricesync.models import Currency
from pricesync.services.constants import (
    FINANCIAL_DATA_START_TIME,
    MAX_INSERT_BATCH_SIZE,
    PRICE_TIME_RESOLUTION,
)
from pricesync.services.exceptions import AllProvidersExhaustedError, NoDefaultCurrencyError
from pricesync.services.gaps import GapDetector, GapFiller
from pricesync.services.intervals import EXCHANGE_RATE_POLICY
from pricesync.services.market_data.fetcher import PriceFetcher
from pricesync.services.protocols import CurrencyRepositoryProtocol, ExchangeRateRepositoryProtocol
from pricesync.services.types import ExchangeRateSet, PricePoint, TimeRange
from pricesync.jobs.base import Clock, Job, JobResult
from pricesync.utils.date_utils import ensure_utc, round_down, utc_now

logger = logging.getLogger(__name__)


class MissingExchangeRatesJob(Job):
    """
    Fills gaps in the stored exchange rates of the default currency.

    Attributes:
        fetcher: Routed access to the exchange rate providers
        currencies: Currency repository
        rates: Exchange rate repository
        batch_size: Maximum rate sets per insert call
        start_time: Acquisition start when the default currency was never tracked
    """

    name = "missing_exchange_rates"

    def __init__(
            self,
            fetcher: PriceFetcher,
            currencies: CurrencyRepositoryProtocol,
            rates: ExchangeRateRepositoryProtocol,
            clock: Clock = utc_now,
            batch_size: int = MAX_INSERT_BATCH_SIZE,
            start_time: datetime = FINANCIAL_DATA_START_TIME,
    ) -> None:
        super().__init__(clock=clock)
        if not 1 <= batch_size <= MAX_INSERT_BATCH_SIZE:
            raise ValueError(f"batch_size must be within 1..{MAX_INSERT_BATCH_SIZE}, got {batch_size}")
        self.fetcher = fetcher
        self.currencies = currencies
        self.rates = rates
        self.batch_size = batch_size
        self.start_time = start_time
        self.detector = GapDetector(EXCHANGE_RATE_POLICY)
        self.filler = GapFiller()

    async def execute(self, now: datetime, result: JobResult) -> None:
        default = self.currencies.get_default()
        if default is None:
            raise NoDefaultCurrencyError()

        targets = sorted(c.code for c in self.currencies.list_all() if c.code != default.code)

        async def process(currency: Currency) -> None:
            await self.process_currency(currency, targets, now, result)

        await self.for_each_entity([default], process, result, describe=lambda c: c.code)

    async def process_currency(
            self,
            currency: Currency,
            targets: Sequence[str],
            now: datetime,
            result: JobResult,
    ) -> None:
        range_end = round_down(now, PRICE_TIME_RESOLUTION)
        start = ensure_utc(currency.tracking_start_time) if currency.tracking_start_time else self.start_time

        existing = self.rates.list_rate_times(currency.code, since=start)
        ranges = self.detector.find_missing_ranges(existing, start, range_end)
        logger.info(f"{currency.code}: {len(ranges)} missing exchange rate ranges since {start.isoformat()}")

        earliest: datetime | None = None
        for time_range in ranges:
            try:
                rate_sets = await self.fetcher.get_daily_exchange_rates(
                    currency.code, time_range.from_time, time_range.to_time
                )
            except AllProvidersExhaustedError as e:
                result.ranges_failed += 1
                result.warn(
                    f"{currency.code}: no exchange rates for "
                    f"[{time_range.from_time.isoformat()}, {time_range.to_time.isoformat()}): {e}"
                )
                continue

            filled = self._fill_targets(currency.code, targets, rate_sets, time_range)
            result.points_inserted += self._store(currency.code, filled)
            if filled and (earliest is None or filled[0].time < earliest):
                earliest = filled[0].time

        start_time = earliest if currency.tracking_start_time is None else None
        self.currencies.update_tracking(currency.code, start_time=start_time, last_update=now)

    def _fill_targets(
            self,
            base_currency: str,
            targets: Iterable[str],
            rate_sets: Sequence[ExchangeRateSet],
            time_range: TimeRange,
    ) -> list[ExchangeRateSet]:
        """
        Carry-forward fill each target's rate series and regroup by time.

        Returns:
            Rate sets strictly inside the range, sorted by time
        """
        by_time: dict[datetime, dict[str, Decimal]] = defaultdict(dict)
        for target in targets:
            series = [
                PricePoint(symbol=target, currency_code=target, price=s.rates[target], time=s.time)
                for s in rate_sets
                if target in s.rates
            ]
            stored = self.rates.get_rate_at(base_currency, target, time_range.from_time)
            if stored is not None:
                series.insert(0, PricePoint(
                    symbol=target,
                    currency_code=target,
                    price=Decimal(stored.rate),
                    time=time_range.from_time,
                ))

            for point in self.filler.fill_range(series, time_range):
                if time_range.from_time < point.time < time_range.to_time and point.price > 0:
                    by_time[point.time][target] = point.price

        return [
            ExchangeRateSet(base_currency=base_currency, time=time, rates=rates)
            for time, rates in sorted(by_time.items())
        ]

    def _store(self, base_currency: str, rate_sets: Sequence[ExchangeRateSet]) -> int:
        inserted = 0
        for i in range(0, len(rate_sets), self.batch_size):
            inserted += self.rates.bulk_insert(base_currency, rate_sets[i:i + self.batch_size])
        return inserted
