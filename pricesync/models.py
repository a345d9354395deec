# pricesync/models.py
import enum
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import Boolean, DateTime, Enum, ForeignKey, Index, Integer, Numeric, String, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""
    pass


class InstrumentType(str, enum.Enum):
    STOCK = "STOCK"
    ETF = "ETF"
    MUTUAL_FUND = "MUTUAL_FUND"
    INDEX = "INDEX"
    COMMODITY = "COMMODITY"
    CRYPTO = "CRYPTO"
    OTHER = "OTHER"


class Instrument(Base):
    """
    A tracked financial instrument.

    Tracking columns are owned by the acquisition jobs:
    - tracking_start_time: earliest time acquisition was attempted from,
      set once to the earliest price a provider actually returned
    - tracked_since: when tracking of the instrument began
    - last_update: end of the latest job run, advanced even on failure
    """
    __tablename__ = "instruments"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    symbol: Mapped[str] = mapped_column(String, unique=True, index=True)  # e.g. "AAPL"
    name: Mapped[str | None] = mapped_column(String, nullable=True)
    currency_code: Mapped[str] = mapped_column(String(3))  # ISO 4217
    instrument_type: Mapped[InstrumentType] = mapped_column(Enum(InstrumentType), default=InstrumentType.STOCK)
    is_tracked: Mapped[bool] = mapped_column(Boolean, default=True)

    tracking_start_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    tracked_since: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    last_update: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    prices: Mapped[list["InstrumentPrice"]] = relationship(back_populates="instrument", cascade="all, delete-orphan")
    splits: Mapped[list["InstrumentSplit"]] = relationship(back_populates="instrument", cascade="all, delete-orphan")


class InstrumentPrice(Base):
    """
    One stored price of an instrument, in the instrument's currency.

    Real and carried-forward prices share this table; a timestamp is
    stored at most once per instrument.
    """
    __tablename__ = "instrument_prices"
    __table_args__ = (
        UniqueConstraint('instrument_id', 'time', name='uq_instrument_price_time'),
    )

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    instrument_id: Mapped[int] = mapped_column(ForeignKey("instruments.id"), index=True)
    time: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)

    # Numeric(18, 8) supports values up to 9,999,999,999.99999999
    price: Mapped[Decimal] = mapped_column(Numeric(18, 8))

    instrument: Mapped["Instrument"] = relationship(back_populates="prices")


class InstrumentSplit(Base):
    """A split event: share count multiplies by numerator / denominator."""
    __tablename__ = "instrument_splits"
    __table_args__ = (
        UniqueConstraint('instrument_id', 'time', name='uq_instrument_split_time'),
    )

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    instrument_id: Mapped[int] = mapped_column(ForeignKey("instruments.id"), index=True)
    time: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    numerator: Mapped[int] = mapped_column(Integer)
    denominator: Mapped[int] = mapped_column(Integer)

    instrument: Mapped["Instrument"] = relationship(back_populates="splits")


class Currency(Base):
    """
    A known currency. Exactly one currency should be the default, which is
    the base of every stored exchange rate.
    """
    __tablename__ = "currencies"

    code: Mapped[str] = mapped_column(String(3), primary_key=True)  # ISO 4217
    name: Mapped[str | None] = mapped_column(String, nullable=True)
    is_default: Mapped[bool] = mapped_column(Boolean, default=False)

    tracking_start_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    tracked_since: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    last_update: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class CurrencyExchangeRate(Base):
    """
    Exchange rate between two currencies at a point in time.

    Convention: 1 base_currency = rate target_currency
    """
    __tablename__ = "currency_exchange_rates"
    __table_args__ = (
        # UniqueConstraint automatically creates an index on (base, target, time)
        UniqueConstraint('base_currency', 'target_currency', 'time',
                         name='uq_exchange_rate_base_target_time'),
        # Reverse lookups for inverse conversion
        Index('ix_exchange_rate_target_base_time', 'target_currency', 'base_currency', 'time'),
    )

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    base_currency: Mapped[str] = mapped_column(ForeignKey("currencies.code"))
    target_currency: Mapped[str] = mapped_column(ForeignKey("currencies.code"))
    time: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    rate: Mapped[Decimal] = mapped_column(Numeric(18, 8))
