# tests/jobs/test_missing_prices_job.py
"""
Tests for MissingInstrumentPricesJob.

The job runs against an in-memory database and a scripted provider;
NOW is fixed at 2024-06-14 12:00 UTC.
"""

from datetime import timedelta
from decimal import Decimal

import pytest

from conftest import NOW, FakeProvider, make_fetcher, make_limiter, price_point
from pricesync.models import Instrument, InstrumentType
from pricesync.jobs.missing_prices import MissingInstrumentPricesJob
from pricesync.repositories import (
    ExchangeRateRepository,
    InstrumentPriceRepository,
    InstrumentRepository,
)
from pricesync.services.currency_converter import CurrencyConverter
from pricesync.services.exceptions import TickerNotFoundError
from pricesync.services.market_data.base import IntradayInterval, RequestType
from pricesync.services.types import ExchangeRateSet
from pricesync.utils.date_utils import ensure_utc


def build_job(db, provider, **kwargs) -> MissingInstrumentPricesJob:
    return MissingInstrumentPricesJob(
        make_fetcher(provider),
        InstrumentRepository(db),
        InstrumentPriceRepository(db),
        CurrencyConverter(ExchangeRateRepository(db), "USD"),
        clock=lambda: NOW,
        **kwargs,
    )


def stored_prices(db, instrument) -> dict:
    return {
        ensure_utc(p.time): p.price
        for p in InstrumentPriceRepository(db).list_prices(instrument.id)
    }


class TestRangeRequests:
    """Tests for how missing ranges are fetched."""

    @pytest.mark.asyncio
    async def test_request_granularity_per_range(self, db, instrument):
        """Should fetch daily for old ranges and hourly or 5-minute for recent ones."""
        provider = FakeProvider("fake", {
            RequestType.DAILY_PRICES: [[]],
            RequestType.INTRADAY_PRICES: [[]],
        })

        result = await build_job(db, provider, start_time=NOW - timedelta(days=10)).run()

        assert [(c.request_type, c.interval) for c in provider.calls] == [
            (RequestType.DAILY_PRICES, None),
            (RequestType.INTRADAY_PRICES, IntradayInterval.ONE_HOUR),
            (RequestType.INTRADAY_PRICES, IntradayInterval.FIVE_MINUTES),
        ]
        assert provider.calls[0].from_time == NOW - timedelta(days=10)
        assert provider.calls[0].to_time == NOW - timedelta(days=5)
        assert result.points_inserted == 0
        assert result.status == "completed"

    @pytest.mark.asyncio
    async def test_untracked_instruments_are_skipped(self, db, instrument):
        """Should not fetch anything for untracked instruments."""
        instrument.is_tracked = False
        db.commit()
        provider = FakeProvider("fake", {RequestType.INTRADAY_PRICES: [[]]})

        result = await build_job(db, provider, start_time=NOW - timedelta(hours=1)).run()

        assert provider.calls == []
        assert result.entities_processed == 0


class TestFilling:
    """Tests for carry-forward filling and storage."""

    @pytest.mark.asyncio
    async def test_fills_hourly_and_five_minute_ranges(self, db, instrument):
        """Should store real and carried prices at each range's density."""
        def intraday(request):
            if request.interval == IntradayInterval.ONE_HOUR:
                return [price_point(request.from_time + timedelta(hours=2), "101")]
            return [price_point(request.from_time + timedelta(minutes=10), "102")]

        provider = FakeProvider("fake", {RequestType.INTRADAY_PRICES: intraday})

        result = await build_job(db, provider, start_time=NOW - timedelta(days=2)).run()

        prices = stored_prices(db, instrument)
        day_ago = NOW - timedelta(days=1)
        # hourly range: real point at +2h, carried hourly until the range end
        assert prices[NOW - timedelta(days=2, hours=-2)] == Decimal("101")
        assert prices[day_ago - timedelta(hours=1)] == Decimal("101")
        # 5-minute range: carried from the stored hourly price, then the new one
        assert prices[day_ago + timedelta(minutes=5)] == Decimal("101")
        assert prices[day_ago + timedelta(minutes=10)] == Decimal("102")
        assert prices[NOW - timedelta(minutes=5)] == Decimal("102")
        assert result.points_inserted == 22 + 287
        assert len(prices) == result.points_inserted

    @pytest.mark.asyncio
    async def test_range_boundaries_are_not_stored(self, db, instrument):
        """Should only store points strictly inside each range."""
        provider = FakeProvider("fake", {
            RequestType.INTRADAY_PRICES: lambda request: [price_point(request.from_time, "100")],
        })

        await build_job(db, provider, start_time=NOW - timedelta(hours=1)).run()

        prices = stored_prices(db, instrument)
        assert NOW - timedelta(hours=1) not in prices
        assert NOW not in prices
        assert len(prices) == 11

    @pytest.mark.asyncio
    async def test_anchor_from_storage_fills_empty_fetch(self, db, instrument):
        """Should carry a stored price forward when the provider returns nothing."""
        InstrumentPriceRepository(db).bulk_insert(instrument.id, [price_point(NOW - timedelta(hours=1), "50")])
        provider = FakeProvider("fake", {RequestType.INTRADAY_PRICES: [[]]})

        result = await build_job(db, provider, start_time=NOW - timedelta(hours=1), batch_size=4).run()

        prices = stored_prices(db, instrument)
        assert result.points_inserted == 11
        assert set(prices.values()) == {Decimal("50")}
        assert max(prices) == NOW - timedelta(minutes=5)

    @pytest.mark.asyncio
    async def test_points_are_converted_to_instrument_currency(self, db, instrument, currencies):
        """Should convert fetched prices and skip those without a rate."""
        instrument.currency_code = "EUR"
        db.commit()
        ExchangeRateRepository(db).bulk_insert("USD", [
            ExchangeRateSet("USD", NOW - timedelta(minutes=30), {"EUR": Decimal("0.9")}),
        ])
        provider = FakeProvider("fake", {
            RequestType.INTRADAY_PRICES: [[
                price_point(NOW - timedelta(minutes=50), "100"),
                price_point(NOW - timedelta(minutes=20), "100"),
            ]],
        })

        result = await build_job(db, provider, start_time=NOW - timedelta(hours=1)).run()

        prices = stored_prices(db, instrument)
        assert result.points_skipped == 1
        assert result.points_inserted == 4
        assert sorted(prices) == [NOW - timedelta(minutes=m) for m in (20, 15, 10, 5)]
        assert set(prices.values()) == {Decimal("90")}


class TestTracking:
    """Tests for tracking bookkeeping and failures."""

    @pytest.mark.asyncio
    async def test_tracking_start_set_to_earliest_stored(self, db, instrument):
        """Should set the tracking start once, to the earliest stored price."""
        provider = FakeProvider("fake", {
            RequestType.INTRADAY_PRICES: [[price_point(NOW - timedelta(minutes=30), "100")]],
        })

        await build_job(db, provider, start_time=NOW - timedelta(hours=1)).run()

        db.refresh(instrument)
        assert ensure_utc(instrument.tracking_start_time) == NOW - timedelta(minutes=30)
        assert ensure_utc(instrument.last_update) == NOW

    @pytest.mark.asyncio
    async def test_existing_tracking_start_is_kept(self, db, instrument):
        """Should start from the stored tracking start and never move it."""
        instrument.tracking_start_time = NOW - timedelta(hours=2)
        db.commit()
        provider = FakeProvider("fake", {
            RequestType.INTRADAY_PRICES: [[price_point(NOW - timedelta(minutes=30), "100")]],
        })

        await build_job(db, provider, start_time=NOW - timedelta(days=300)).run()

        db.refresh(instrument)
        assert provider.calls[0].from_time == NOW - timedelta(hours=2)
        assert ensure_utc(instrument.tracking_start_time) == NOW - timedelta(hours=2)

    @pytest.mark.asyncio
    async def test_failed_ranges_are_skipped(self, db, instrument):
        """Should count every unserved range and still advance last_update."""
        provider = FakeProvider("fake", {
            RequestType.DAILY_PRICES: [TickerNotFoundError("AAPL", "fake")],
            RequestType.INTRADAY_PRICES: [TickerNotFoundError("AAPL", "fake")],
        })

        result = await build_job(db, provider, start_time=NOW - timedelta(days=10)).run()

        db.refresh(instrument)
        assert result.ranges_failed == 3
        assert len(result.warnings) == 3
        assert result.entities_processed == 1
        assert result.status == "partial"
        assert ensure_utc(instrument.last_update) == NOW
        assert instrument.tracking_start_time is None

    @pytest.mark.asyncio
    async def test_cancelled_before_run(self, db, instrument):
        """Should stop before processing any instrument once cancelled."""
        provider = FakeProvider("fake", {RequestType.INTRADAY_PRICES: [[]]})
        job = build_job(db, provider, start_time=NOW - timedelta(hours=1))
        job.cancel()

        result = await job.run()

        assert result.status == "cancelled"
        assert provider.calls == []

    @pytest.mark.asyncio
    async def test_cancelled_job_can_run_again(self, db, instrument):
        """Should run normally after a cancelled run."""
        provider = FakeProvider("fake", {RequestType.INTRADAY_PRICES: [[]]})
        job = build_job(db, provider, start_time=NOW - timedelta(hours=1))
        job.cancel()

        first = await job.run()
        second = await job.run()

        assert first.status == "cancelled"
        assert second.status == "completed"
        assert second.entities_processed == 1
        assert len(provider.calls) == 1

    def test_rejects_invalid_batch_size(self, db):
        """Should reject batch sizes outside the insert limit."""
        with pytest.raises(ValueError):
            build_job(db, FakeProvider("fake", {}), batch_size=0)


class TestConcurrency:
    """Tests for instruments processed in parallel."""

    @pytest.mark.asyncio
    async def test_parallel_instruments_share_provider_quota(self, db, instrument):
        """Should never issue more provider calls than the shared limiter admits."""
        db.add_all([
            Instrument(
                symbol=symbol,
                name=symbol,
                currency_code="USD",
                instrument_type=InstrumentType.STOCK,
                is_tracked=True,
                tracked_since=NOW - timedelta(days=30),
            )
            for symbol in ("MSFT", "NVDA", "AMZN", "META", "TSLA")
        ])
        db.commit()
        provider = FakeProvider(
            "fake",
            {RequestType.INTRADAY_PRICES: [[]]},
            rate_limiter=make_limiter("fake", max_requests=3),
        )

        result = await build_job(db, provider, start_time=NOW - timedelta(hours=1), concurrency=4).run()

        assert len(provider.calls) == 3
        assert result.ranges_failed == 3
        assert result.entities_processed == 6
        assert provider.rate_limiter.rejected_count == 3
