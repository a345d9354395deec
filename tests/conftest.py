# tests/conftest.py
"""
Pytest configuration and fixtures.

This module provides shared fixtures for all tests:
- Database session fixtures (in-memory SQLite)
- A fixed "now"
- A scriptable fake market data provider
- Sample instruments and currencies
"""

import os

os.environ.setdefault("ENVIRONMENT", "test")

from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Iterator

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from pricesync.models import Base, Currency, Instrument, InstrumentType
from pricesync.services.market_data.base import Handler, MarketDataProvider, RequestType
from pricesync.services.market_data.fetcher import PriceFetcher
from pricesync.services.market_data.retry import RetryPolicy
from pricesync.services.market_data.router import RequestRouter
from pricesync.services.rate_limiter import RateLimiter
from pricesync.services.types import PricePoint

UTC = timezone.utc

# A Friday, exactly on a 5-minute boundary
NOW = datetime(2024, 6, 14, 12, 0, tzinfo=UTC)


# =============================================================================
# DATABASE FIXTURES
# =============================================================================

@pytest.fixture(scope="function")
def db_engine():
    """Create an in-memory SQLite database engine for testing."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)


@pytest.fixture(scope="function")
def db(db_engine) -> Iterator[Session]:
    """Create a database session for testing."""
    SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=db_engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


# =============================================================================
# TIME
# =============================================================================

@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def clock() -> Callable[[], datetime]:
    return lambda: NOW


# =============================================================================
# FAKE MARKET DATA PROVIDER
# =============================================================================

def make_limiter(name: str = "fake", max_requests: int = 1000) -> RateLimiter:
    return RateLimiter(name=name, max_requests=max_requests, window=timedelta(hours=1))


class FakeProvider(MarketDataProvider):
    """
    Scriptable provider for router and job tests.

    Each request type maps to either a list of outcomes consumed one per
    call (the last one repeats), or a callable receiving the request.
    An outcome that is an exception instance is raised by the handler,
    so `process()` classifies it like a real provider's failure.
    """

    def __init__(
            self,
            name: str = "fake",
            script: dict[RequestType, Any] | None = None,
            rate_limiter: RateLimiter | None = None,
    ) -> None:
        self._name = name
        self._script = dict(script or {})
        self.calls: list[Any] = []
        super().__init__(rate_limiter or make_limiter(name))

    @property
    def name(self) -> str:
        return self._name

    def handlers(self) -> dict[RequestType, Handler]:
        return {request_type: self._handle for request_type in self._script}

    async def _handle(self, request: Any) -> Any:
        self.calls.append(request)
        outcome = self._script[request.request_type]
        if callable(outcome):
            outcome = outcome(request)
        elif isinstance(outcome, list):
            outcome = outcome.pop(0) if len(outcome) > 1 else outcome[0]
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


@pytest.fixture
def fake_provider_factory() -> Callable[..., FakeProvider]:
    return FakeProvider


async def no_sleep(seconds: float) -> None:
    return None


def make_fetcher(*providers: MarketDataProvider) -> PriceFetcher:
    """Fetcher over the given providers, single attempt per provider."""
    return PriceFetcher(RequestRouter(list(providers), retry_policy=RetryPolicy.NONE, sleep=no_sleep))


# =============================================================================
# SAMPLE DATA
# =============================================================================

def price_point(time: datetime, price: str = "100", symbol: str = "AAPL", currency: str = "USD") -> PricePoint:
    return PricePoint(symbol=symbol, currency_code=currency, price=Decimal(price), time=time)


@pytest.fixture
def instrument(db: Session) -> Instrument:
    """A tracked USD stock."""
    item = Instrument(
        symbol="AAPL",
        name="Apple Inc.",
        currency_code="USD",
        instrument_type=InstrumentType.STOCK,
        is_tracked=True,
        tracked_since=NOW - timedelta(days=30),
    )
    db.add(item)
    db.commit()
    return item


@pytest.fixture
def currencies(db: Session) -> list[Currency]:
    """USD (default), EUR and CZK."""
    items = [
        Currency(code="USD", name="US Dollar", is_default=True),
        Currency(code="EUR", name="Euro", is_default=False),
        Currency(code="CZK", name="Czech Koruna", is_default=False),
    ]
    db.add_all(items)
    db.commit()
    return items
