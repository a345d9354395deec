# tests/jobs/test_missing_exchange_rates_job.py
"""
Tests for MissingExchangeRatesJob.

Provider dates are midnight UTC like real daily rate feeds; the range
ends at NOW (2024-06-14 12:00 UTC).
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from conftest import NOW, FakeProvider, make_fetcher
from pricesync.jobs.missing_exchange_rates import MissingExchangeRatesJob
from pricesync.models import Currency
from pricesync.repositories import CurrencyRepository, ExchangeRateRepository
from pricesync.services.exceptions import NoDefaultCurrencyError, ProviderUnavailableError
from pricesync.services.market_data.base import RequestType
from pricesync.services.types import ExchangeRateSet
from pricesync.utils.date_utils import ensure_utc

UTC = timezone.utc


def day(n: int) -> datetime:
    return datetime(2024, 6, n, tzinfo=UTC)


def build_job(db, provider, **kwargs) -> MissingExchangeRatesJob:
    return MissingExchangeRatesJob(
        make_fetcher(provider),
        CurrencyRepository(db),
        ExchangeRateRepository(db),
        clock=lambda: NOW,
        start_time=day(9),
        **kwargs,
    )


def stored_rates(db, target: str) -> dict:
    repo = ExchangeRateRepository(db)
    return {
        t: repo.get_rate_at("USD", target, t).rate
        for t in repo.list_rate_times("USD", target)
    }


class TestMissingExchangeRatesJob:
    """Tests for the daily exchange rate gap filler."""

    @pytest.mark.asyncio
    async def test_fills_each_target_forward(self, db, currencies):
        """Should carry each currency's last rate over the days the feed skipped."""
        provider = FakeProvider("fx", {
            RequestType.DAILY_EXCHANGE_RATES: [[
                ExchangeRateSet("USD", day(10), {"EUR": Decimal("0.9"), "CZK": Decimal("23")}),
                ExchangeRateSet("USD", day(12), {"EUR": Decimal("0.91")}),
            ]],
        })

        result = await build_job(db, provider).run()

        assert provider.calls[0].base_currency == "USD"
        assert provider.calls[0].from_time == day(9)
        assert provider.calls[0].to_time == NOW
        assert stored_rates(db, "EUR") == {
            day(10): Decimal("0.9"),
            day(11): Decimal("0.9"),
            day(12): Decimal("0.91"),
            day(13): Decimal("0.91"),
            day(14): Decimal("0.91"),
        }
        assert set(stored_rates(db, "CZK").values()) == {Decimal("23")}
        assert len(stored_rates(db, "CZK")) == 5
        assert result.points_inserted == 10

    @pytest.mark.asyncio
    async def test_tracking_updated(self, db, currencies):
        """Should set the tracking start to the earliest stored rate."""
        provider = FakeProvider("fx", {
            RequestType.DAILY_EXCHANGE_RATES: [[ExchangeRateSet("USD", day(11), {"EUR": Decimal("0.9")})]],
        })

        await build_job(db, provider).run()

        usd = db.get(Currency, "USD")
        db.refresh(usd)
        assert ensure_utc(usd.tracking_start_time) == day(11)
        assert ensure_utc(usd.last_update) == NOW

    @pytest.mark.asyncio
    async def test_stored_rate_is_carried_when_feed_is_empty(self, db, currencies):
        """Should fill forward from a stored rate when the provider returns nothing."""
        ExchangeRateRepository(db).bulk_insert("USD", [ExchangeRateSet("USD", day(9), {"EUR": Decimal("0.8")})])
        provider = FakeProvider("fx", {RequestType.DAILY_EXCHANGE_RATES: [[]]})

        result = await build_job(db, provider).run()

        assert result.points_inserted == 5
        assert stored_rates(db, "EUR")[day(14)] == Decimal("0.8")
        assert stored_rates(db, "CZK") == {}

    @pytest.mark.asyncio
    async def test_complete_history_makes_no_request(self, db, currencies):
        """Should not call the provider when no day is missing."""
        ExchangeRateRepository(db).bulk_insert("USD", [
            ExchangeRateSet("USD", day(n), {"EUR": Decimal("0.9")}) for n in range(9, 15)
        ])
        provider = FakeProvider("fx", {RequestType.DAILY_EXCHANGE_RATES: [[]]})

        result = await build_job(db, provider).run()

        assert provider.calls == []
        assert result.status == "completed"

    @pytest.mark.asyncio
    async def test_failed_range_is_counted(self, db, currencies):
        """Should count a range no provider could serve."""
        provider = FakeProvider("fx", {
            RequestType.DAILY_EXCHANGE_RATES: [ProviderUnavailableError("fx", "HTTP 503")],
        })

        result = await build_job(db, provider).run()

        assert result.ranges_failed == 1
        assert result.status == "partial"
        assert "HTTP 503" in result.warnings[0]

    @pytest.mark.asyncio
    async def test_no_default_currency_aborts(self, db):
        """Should raise when no default currency is configured."""
        db.add(Currency(code="EUR", name="Euro", is_default=False))
        db.commit()
        provider = FakeProvider("fx", {RequestType.DAILY_EXCHANGE_RATES: [[]]})

        with pytest.raises(NoDefaultCurrencyError):
            await build_job(db, provider).run()

        assert provider.calls == []
