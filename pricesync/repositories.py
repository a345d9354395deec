# pricesync/repositories.py
"""
SQLAlchemy repositories consumed by the acquisition jobs.

Each repository wraps one Session and commits once per mutating call; the
jobs never manage transactions themselves. Times read back are normalized
to aware UTC (SQLite drops timezone information on round trip).

Usage:
    from pricesync.repositories import InstrumentPriceRepository

    prices = InstrumentPriceRepository(db)
    times = prices.list_price_times(instrument.id, since=start)
    inserted = prices.bulk_insert(instrument.id, points)
"""

import logging
from collections.abc import Iterable, Sequence
from datetime import datetime

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from pricesync.models import (
    Currency,
    CurrencyExchangeRate,
    Instrument,
    InstrumentPrice,
    InstrumentSplit,
)
from pricesync.services.constants import MAX_INSERT_BATCH_SIZE
from pricesync.services.types import ExchangeRateSet, InstrumentSplitRecord, PricePoint
from pricesync.utils.date_utils import ensure_utc

logger = logging.getLogger(__name__)


def _check_batch_size(count: int) -> None:
    if count > MAX_INSERT_BATCH_SIZE:
        raise ValueError(
            f"Cannot insert {count} rows in one call, maximum is {MAX_INSERT_BATCH_SIZE}"
        )


# =============================================================================
# INSTRUMENTS
# =============================================================================

class InstrumentRepository:
    """Instrument lookup and tracking bookkeeping."""

    def __init__(self, db: Session) -> None:
        self.db = db

    def list_all(self) -> Sequence[Instrument]:
        return self.db.scalars(select(Instrument).order_by(Instrument.id)).all()

    def exists(self, instrument_id: int) -> bool:
        return self.db.get(Instrument, instrument_id) is not None

    def update_tracking(
            self,
            instrument_id: int,
            start_time: datetime | None = None,
            last_update: datetime | None = None,
    ) -> None:
        """
        Update the tracking columns of an instrument.

        Only the given values are written. A missing instrument is ignored
        (it may have been deleted while the job ran).
        """
        instrument = self.db.get(Instrument, instrument_id)
        if instrument is None:
            logger.warning(f"Instrument {instrument_id} no longer exists, tracking not updated")
            return
        if start_time is not None:
            instrument.tracking_start_time = start_time
        if last_update is not None:
            instrument.last_update = last_update
        self.db.commit()


class InstrumentPriceRepository:
    """Stored instrument prices."""

    def __init__(self, db: Session) -> None:
        self.db = db

    def list_price_times(self, instrument_id: int, since: datetime | None = None) -> list[datetime]:
        """Stored price timestamps of an instrument, ascending."""
        query = select(InstrumentPrice.time).where(InstrumentPrice.instrument_id == instrument_id)
        if since is not None:
            query = query.where(InstrumentPrice.time >= since)
        return [ensure_utc(t) for t in self.db.scalars(query.order_by(InstrumentPrice.time)).all()]

    def get_price_at(self, instrument_id: int, time: datetime) -> InstrumentPrice | None:
        """Latest stored price at or before the given time."""
        query = (
            select(InstrumentPrice)
            .where(
                InstrumentPrice.instrument_id == instrument_id,
                InstrumentPrice.time <= time,
            )
            .order_by(InstrumentPrice.time.desc())
            .limit(1)
        )
        return self.db.scalar(query)

    def list_prices(self, instrument_id: int) -> Sequence[InstrumentPrice]:
        query = (
            select(InstrumentPrice)
            .where(InstrumentPrice.instrument_id == instrument_id)
            .order_by(InstrumentPrice.time)
        )
        return self.db.scalars(query).all()

    def bulk_insert(self, instrument_id: int, points: Iterable[PricePoint]) -> int:
        """
        Insert price points, skipping timestamps already stored.

        Args:
            instrument_id: Owner of the prices
            points: At most MAX_INSERT_BATCH_SIZE points

        Returns:
            Number of rows inserted

        Raises:
            ValueError: If the batch is larger than MAX_INSERT_BATCH_SIZE
        """
        points = list(points)
        _check_batch_size(len(points))
        if not points:
            return 0

        times = [p.time for p in points]
        existing_query = select(InstrumentPrice.time).where(
            InstrumentPrice.instrument_id == instrument_id,
            InstrumentPrice.time >= min(times),
            InstrumentPrice.time <= max(times),
        )
        seen = {ensure_utc(t) for t in self.db.scalars(existing_query).all()}

        rows = []
        for point in points:
            time = ensure_utc(point.time)
            if time in seen:
                continue
            seen.add(time)
            rows.append(InstrumentPrice(instrument_id=instrument_id, time=time, price=point.price))

        self.db.add_all(rows)
        self.db.commit()
        logger.debug(f"Inserted {len(rows)} prices for instrument {instrument_id}")
        return len(rows)

    def delete_prices(self, price_ids: Iterable[int]) -> int:
        price_ids = list(price_ids)
        if not price_ids:
            return 0
        result = self.db.execute(delete(InstrumentPrice).where(InstrumentPrice.id.in_(price_ids)))
        self.db.commit()
        return result.rowcount


class InstrumentSplitRepository:
    """Stored split events."""

    def __init__(self, db: Session) -> None:
        self.db = db

    def list_splits(self, instrument_id: int) -> Sequence[InstrumentSplit]:
        """Splits of an instrument, oldest first."""
        query = (
            select(InstrumentSplit)
            .where(InstrumentSplit.instrument_id == instrument_id)
            .order_by(InstrumentSplit.time)
        )
        return self.db.scalars(query).all()

    def add(self, instrument_id: int, split: InstrumentSplitRecord) -> None:
        self.db.add(InstrumentSplit(
            instrument_id=instrument_id,
            time=split.time,
            numerator=split.numerator,
            denominator=split.denominator,
        ))
        self.db.commit()


# =============================================================================
# CURRENCIES
# =============================================================================

class CurrencyRepository:
    """Known currencies and tracking bookkeeping of the default one."""

    def __init__(self, db: Session) -> None:
        self.db = db

    def get_default(self) -> Currency | None:
        return self.db.scalar(select(Currency).where(Currency.is_default.is_(True)))

    def list_all(self) -> Sequence[Currency]:
        return self.db.scalars(select(Currency).order_by(Currency.code)).all()

    def update_tracking(
            self,
            code: str,
            start_time: datetime | None = None,
            last_update: datetime | None = None,
    ) -> None:
        currency = self.db.get(Currency, code)
        if currency is None:
            logger.warning(f"Currency {code} no longer exists, tracking not updated")
            return
        if start_time is not None:
            currency.tracking_start_time = start_time
        if last_update is not None:
            currency.last_update = last_update
        self.db.commit()


class ExchangeRateRepository:
    """
    Stored exchange rates.

    Convention: 1 base_currency = rate target_currency
    """

    def __init__(self, db: Session) -> None:
        self.db = db

    def list_rate_times(
            self,
            base_currency: str,
            target_currency: str | None = None,
            since: datetime | None = None,
    ) -> list[datetime]:
        """
        Distinct timestamps with a stored rate of the base currency, ascending.

        Without a target currency, a timestamp counts if any target has a rate.
        """
        query = select(CurrencyExchangeRate.time).where(CurrencyExchangeRate.base_currency == base_currency)
        if target_currency is not None:
            query = query.where(CurrencyExchangeRate.target_currency == target_currency)
        if since is not None:
            query = query.where(CurrencyExchangeRate.time >= since)
        query = query.distinct().order_by(CurrencyExchangeRate.time)
        return [ensure_utc(t) for t in self.db.scalars(query).all()]

    def get_rate_at(self, base_currency: str, target_currency: str, time: datetime) -> CurrencyExchangeRate | None:
        """Latest stored rate at or before the given time."""
        query = (
            select(CurrencyExchangeRate)
            .where(
                CurrencyExchangeRate.base_currency == base_currency,
                CurrencyExchangeRate.target_currency == target_currency,
                CurrencyExchangeRate.time <= time,
            )
            .order_by(CurrencyExchangeRate.time.desc())
            .limit(1)
        )
        return self.db.scalar(query)

    def bulk_insert(self, base_currency: str, rate_sets: Iterable[ExchangeRateSet]) -> int:
        """
        Insert one row per (time, target) of the given rate sets.

        Targets equal to the base currency and (base, target, time) triples
        already stored are skipped.

        Returns:
            Number of rows inserted

        Raises:
            ValueError: If more than MAX_INSERT_BATCH_SIZE rate sets are given
        """
        rate_sets = list(rate_sets)
        _check_batch_size(len(rate_sets))
        if not rate_sets:
            return 0

        times = [s.time for s in rate_sets]
        existing_query = select(CurrencyExchangeRate.target_currency, CurrencyExchangeRate.time).where(
            CurrencyExchangeRate.base_currency == base_currency,
            CurrencyExchangeRate.time >= min(times),
            CurrencyExchangeRate.time <= max(times),
        )
        seen = {(target, ensure_utc(time)) for target, time in self.db.execute(existing_query).all()}

        rows = []
        for rate_set in rate_sets:
            time = ensure_utc(rate_set.time)
            for target, rate in rate_set.rates.items():
                if target == base_currency or (target, time) in seen:
                    continue
                seen.add((target, time))
                rows.append(CurrencyExchangeRate(
                    base_currency=base_currency,
                    target_currency=target,
                    time=time,
                    rate=rate,
                ))

        self.db.add_all(rows)
        self.db.commit()
        logger.debug(f"Inserted {len(rows)} exchange rates for base {base_currency}")
        return len(rows)
