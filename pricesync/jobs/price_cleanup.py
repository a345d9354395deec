# pricesync/jobs/price_cleanup.py
"""
Instrument price cleanup job.

Stored prices become over-dense as they age: a 5-minute price from this
morning only needs daily density a week later. This job thins every
instrument's prices back to the density rule.

Anchor walk (prices in ascending time order):
    - the first price is the anchor
    - when a price lies further than one interval past the anchor, the
      previous price becomes the new anchor
    - a previous price that is not the anchor is superseded and removed

The newest price is never removed.
"""

import logging
from collections.abc import Iterable, Sequence
from datetime import datetime
from typing import Protocol

from pricesync.models import Instrument
from pricesync.services.intervals import INSTRUMENT_PRICE_POLICY, IntervalPolicy
from pricesync.services.protocols import InstrumentPriceRepositoryProtocol, InstrumentRepositoryProtocol
from pricesync.jobs.base import Clock, Job, JobResult
from pricesync.utils.date_utils import ensure_utc, utc_now

logger = logging.getLogger(__name__)


class _TimedRow(Protocol):
    id: int
    time: datetime


def find_superseded_prices(
        prices: Iterable[_TimedRow],
        now: datetime,
        policy: IntervalPolicy = INSTRUMENT_PRICE_POLICY,
) -> list[int]:
    """
    IDs of prices that are denser than the policy requires.

    Args:
        prices: Stored prices with `id` and `time`, any order
        now: Reference time the policy measures age from
        policy: Density rule

    Returns:
        IDs to delete, ascending by price time
    """
    anchor: _TimedRow | None = None
    previous: _TimedRow | None = None
    superseded: list[int] = []

    for price in sorted(prices, key=lambda p: ensure_utc(p.time)):
        time = ensure_utc(price.time)
        if anchor is None:
            anchor = price

        if ensure_utc(anchor.time) + policy.interval_at(now, time) < time:
            anchor = previous

        if previous is not None and previous is not anchor:
            superseded.append(previous.id)

        previous = price

    return superseded


class InstrumentPriceCleanupJob(Job):
    """Removes prices superseded within the density rule's interval."""

    name = "instrument_price_cleanup"

    def __init__(
            self,
            instruments: InstrumentRepositoryProtocol,
            prices: InstrumentPriceRepositoryProtocol,
            clock: Clock = utc_now,
            policy: IntervalPolicy = INSTRUMENT_PRICE_POLICY,
    ) -> None:
        super().__init__(clock=clock)
        self.instruments = instruments
        self.prices = prices
        self.policy = policy

    async def execute(self, now: datetime, result: JobResult) -> None:
        async def process(instrument: Instrument) -> None:
            stored: Sequence = self.prices.list_prices(instrument.id)
            superseded = find_superseded_prices(stored, now, self.policy)
            deleted = self.prices.delete_prices(superseded)
            result.points_deleted += deleted
            if deleted:
                logger.info(f"{instrument.symbol}: removed {deleted} superseded prices")

        await self.for_each_entity(self.instruments.list_all(), process, result, describe=lambda i: i.symbol)
