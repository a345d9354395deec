# tests/jobs/test_split_fetch_job.py
"""
Tests for SplitFetchJob.
"""

from datetime import timedelta

import pytest

from conftest import NOW, FakeProvider, make_fetcher
from pricesync.jobs.splits import SplitFetchJob
from pricesync.repositories import InstrumentRepository, InstrumentSplitRepository
from pricesync.services.exceptions import ProviderUnavailableError
from pricesync.services.market_data.base import RequestType
from pricesync.services.types import InstrumentSplitRecord
from pricesync.utils.date_utils import ensure_utc


def build_job(db, provider) -> SplitFetchJob:
    return SplitFetchJob(
        make_fetcher(provider),
        InstrumentRepository(db),
        InstrumentSplitRepository(db),
        clock=lambda: NOW,
    )


class TestSplitFetchJob:
    """Tests for split detection."""

    @pytest.mark.asyncio
    async def test_first_run_starts_at_tracked_since(self, db, instrument):
        """Should request splits since the instrument was tracked and store them."""
        provider = FakeProvider("fake", {
            RequestType.SPLITS: [[InstrumentSplitRecord(NOW - timedelta(days=5), 4, 1)]],
        })

        result = await build_job(db, provider).run()

        assert provider.calls[0].from_time == NOW - timedelta(days=30)
        assert provider.calls[0].to_time == NOW
        splits = InstrumentSplitRepository(db).list_splits(instrument.id)
        assert [(ensure_utc(s.time), s.numerator, s.denominator) for s in splits] == [
            (NOW - timedelta(days=5), 4, 1),
        ]
        assert result.points_inserted == 1

    @pytest.mark.asyncio
    async def test_only_newer_splits_are_added(self, db, instrument):
        """Should start at the last stored split and skip it when returned again."""
        repo = InstrumentSplitRepository(db)
        repo.add(instrument.id, InstrumentSplitRecord(NOW - timedelta(days=10), 2, 1))
        provider = FakeProvider("fake", {
            RequestType.SPLITS: [[
                InstrumentSplitRecord(NOW - timedelta(days=3), 3, 2),
                InstrumentSplitRecord(NOW - timedelta(days=10), 2, 1),
            ]],
        })

        result = await build_job(db, provider).run()

        assert provider.calls[0].from_time == NOW - timedelta(days=10)
        assert result.points_inserted == 1
        assert [ensure_utc(s.time) for s in repo.list_splits(instrument.id)] == [
            NOW - timedelta(days=10),
            NOW - timedelta(days=3),
        ]

    @pytest.mark.asyncio
    async def test_exhausted_is_counted(self, db, instrument):
        """Should count a split request no provider could serve."""
        provider = FakeProvider("fake", {RequestType.SPLITS: [ProviderUnavailableError("fake", "HTTP 502")]})

        result = await build_job(db, provider).run()

        assert result.ranges_failed == 1
        assert result.status == "partial"
        assert InstrumentSplitRepository(db).list_splits(instrument.id) == []
