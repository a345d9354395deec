# pricesync/services/protocols.py
"""
Protocol interfaces for the jobs' collaborators.

Using typing.Protocol enables structural subtyping:
- The SQLAlchemy repositories satisfy these protocols without inheritance
- In-memory test fakes work without explicit inheritance
- Clear documentation of what the jobs actually consume
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from pricesync.models import (
        Currency,
        CurrencyExchangeRate,
        Instrument,
        InstrumentPrice,
        InstrumentSplit,
    )
    from pricesync.services.types import ExchangeRateSet, InstrumentSplitRecord, PricePoint


class InstrumentRepositoryProtocol(Protocol):
    """Instrument lookup and tracking bookkeeping."""

    def list_all(self) -> Sequence[Instrument]:
        ...

    def exists(self, instrument_id: int) -> bool:
        ...

    def update_tracking(
        self,
        instrument_id: int,
        start_time: datetime | None = None,
        last_update: datetime | None = None,
    ) -> None:
        ...


class InstrumentPriceRepositoryProtocol(Protocol):
    """Stored instrument prices."""

    def list_price_times(self, instrument_id: int, since: datetime | None = None) -> list[datetime]:
        ...

    def get_price_at(self, instrument_id: int, time: datetime) -> InstrumentPrice | None:
        ...

    def bulk_insert(self, instrument_id: int, points: Iterable[PricePoint]) -> int:
        ...

    def list_prices(self, instrument_id: int) -> Sequence[InstrumentPrice]:
        ...

    def delete_prices(self, price_ids: Iterable[int]) -> int:
        ...


class CurrencyRepositoryProtocol(Protocol):
    """Known currencies and the default currency's tracking bookkeeping."""

    def get_default(self) -> Currency | None:
        ...

    def list_all(self) -> Sequence[Currency]:
        ...

    def update_tracking(
        self,
        code: str,
        start_time: datetime | None = None,
        last_update: datetime | None = None,
    ) -> None:
        ...


class ExchangeRateRepositoryProtocol(Protocol):
    """Stored exchange rates."""

    def list_rate_times(
        self,
        base_currency: str,
        target_currency: str | None = None,
        since: datetime | None = None,
    ) -> list[datetime]:
        ...

    def get_rate_at(self, base_currency: str, target_currency: str, time: datetime) -> CurrencyExchangeRate | None:
        ...

    def bulk_insert(self, base_currency: str, rate_sets: Iterable[ExchangeRateSet]) -> int:
        ...


class InstrumentSplitRepositoryProtocol(Protocol):
    """Stored split events."""

    def list_splits(self, instrument_id: int) -> Sequence[InstrumentSplit]:
        ...

    def add(self, instrument_id: int, split: InstrumentSplitRecord) -> None:
        ...


class CurrencyConverterProtocol(Protocol):
    """Interface required by the price jobs."""

    def get_rate(self, from_currency: str, to_currency: str, time: datetime) -> Decimal:
        ...

    def convert(self, point: PricePoint, target_currency: str) -> PricePoint:
        ...
