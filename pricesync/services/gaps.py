# pricesync/services/gaps.py
"""
Gap detection and carry-forward filling for price series.

GapDetector finds the time ranges where stored points are spaced wider
than the density policy allows, then splits every range that straddles a
density boundary so each emitted range has one uniform interval.

GapFiller synthesizes points for closed-market periods by repeating the
last observed price at the range's interval.

Both are pure: no I/O, no clock. "Now" is always the end of the requested
range.

Usage:
    from pricesync.services.gaps import GapDetector, GapFiller
    from pricesync.services.intervals import INSTRUMENT_PRICE_POLICY

    detector = GapDetector(INSTRUMENT_PRICE_POLICY)
    ranges = detector.find_missing_ranges(existing_times, start, now)

    filler = GapFiller()
    points = filler.fill_range(fetched_points, ranges[0])
"""

import logging
from collections import deque
from collections.abc import Iterable
from datetime import datetime

from pricesync.services.intervals import DensityBoundary, IntervalPolicy
from pricesync.services.types import PricePoint, TimeRange
from pricesync.utils.date_utils import round_up

logger = logging.getLogger(__name__)


# =============================================================================
# GAP DETECTOR
# =============================================================================

class GapDetector:
    """
    Computes ranges violating a density policy.

    Attributes:
        policy: Density rule used to judge spacing
        coalesce: Merge touching output ranges that share an interval
    """

    def __init__(self, policy: IntervalPolicy, coalesce: bool = True) -> None:
        self.policy = policy
        self.coalesce = coalesce

    def find_missing_ranges(
            self,
            existing_times: Iterable[datetime],
            range_start: datetime,
            range_end: datetime,
    ) -> list[TimeRange]:
        """
        Find every gap in [range_start, range_end] given stored timestamps.

        The boundaries are added to the stored timestamps and consecutive
        pairs (prev, cur) are compared against the interval required just
        before cur, measured from range_end. Gaps crossing a density
        boundary are then split.

        Args:
            existing_times: Stored timestamps, any order, duplicates allowed
            range_start: Earliest time that should be covered
            range_end: Reference "now" and latest time that should be covered

        Returns:
            Disjoint ranges sorted by from_time. Empty for a zero-length or
            inverted range.
        """
        if range_end <= range_start:
            return []

        times = sorted(
            {t for t in existing_times if range_start <= t <= range_end}
            | {range_start, range_end}
        )

        candidates: list[TimeRange] = []
        for prev, cur in zip(times, times[1:]):
            interval = self.policy.interval_before(range_end, cur)
            if cur - prev > interval:
                candidates.append(TimeRange(prev, cur, interval))

        ranges = self.split_at_interval_changes(candidates, range_end)
        if self.coalesce:
            ranges = _coalesce(ranges)

        logger.debug(
            f"Found {len(ranges)} missing ranges between "
            f"{range_start.isoformat()} and {range_end.isoformat()}"
        )
        return ranges

    def split_at_interval_changes(
            self,
            ranges: Iterable[TimeRange],
            base_time: datetime,
    ) -> list[TimeRange]:
        """
        Split ranges that straddle one of the policy's density boundaries.

        Produced halves go back on the worklist, so a range reaching from
        the daily band into the 5-minute band is split twice.

        Args:
            ranges: Candidate ranges
            base_time: "Now" the boundaries are measured from

        Returns:
            Ranges with a uniform interval each, sorted by from_time
        """
        pending = deque(ranges)
        result: list[TimeRange] = []

        while pending:
            current = pending.popleft()
            for boundary in self.policy.boundaries:
                if _should_split(current, base_time, boundary):
                    cut = base_time - boundary.age
                    pending.append(TimeRange(current.from_time, cut, boundary.older_interval))
                    pending.append(TimeRange(cut, current.to_time, boundary.newer_interval))
                    break
            else:
                result.append(current)

        return sorted(result, key=lambda r: r.from_time)


def _should_split(time_range: TimeRange, base_time: datetime, boundary: DensityBoundary) -> bool:
    """
    Whether a range crosses a boundary far enough to be split.

    The newer part must be at least one newer_interval long, otherwise the
    split would leave a degenerate sliver.
    """
    cutoff = base_time - boundary.age
    return (
        base_time - time_range.from_time > boundary.age
        and base_time - time_range.to_time < boundary.age
        and time_range.to_time >= cutoff + boundary.newer_interval
    )


def _coalesce(ranges: list[TimeRange]) -> list[TimeRange]:
    merged: list[TimeRange] = []
    for current in ranges:
        if merged and merged[-1].to_time == current.from_time and merged[-1].interval == current.interval:
            merged[-1] = TimeRange(merged[-1].from_time, current.to_time, current.interval)
        else:
            merged.append(current)
    return merged


# =============================================================================
# GAP FILLER
# =============================================================================

class GapFiller:
    """Synthesizes carry-forward points inside a gap range."""

    def fill(self, points: Iterable[PricePoint], time_range: TimeRange) -> list[PricePoint]:
        """
        Fill one range from the latest point at or before its start.

        Steps start at from_time rounded up to the range interval and stop
        before to_time. Only steps strictly after from_time that have no
        real point at that exact time get a synthetic copy of the anchor.

        Args:
            points: Real points, any order. Should include the anchor.
            time_range: Range to fill

        Returns:
            The real points plus synthetic points, sorted by time. Without
            an anchor the real points are returned unchanged.
        """
        ordered = sorted(points, key=lambda p: p.time, reverse=True)
        anchor = next((p for p in ordered if p.time <= time_range.from_time), None)
        result = list(reversed(ordered))
        if anchor is None:
            return result

        existing = {p.time for p in ordered}
        synthetic: list[PricePoint] = []
        current = round_up(time_range.from_time, time_range.interval)
        while current < time_range.to_time:
            if current > time_range.from_time and current not in existing:
                synthetic.append(anchor.at(current))
            current += time_range.interval

        return sorted(result + synthetic, key=lambda p: p.time)

    def fill_range(self, points: Iterable[PricePoint], time_range: TimeRange) -> list[PricePoint]:
        """
        Carry-forward fill of a whole fetched range.

        Splits the range at every real point into sub-gaps and fills each
        one from its own latest preceding point, so a price is carried only
        until the next observed one.

        Args:
            points: Anchor before the range plus the points fetched for it
            time_range: Range the points were fetched for

        Returns:
            Real and synthetic points, sorted by time
        """
        points = list(points)
        inner_times = [p.time for p in points if time_range.contains(p.time)]
        detector = GapDetector(IntervalPolicy(time_range.interval), coalesce=False)
        sub_gaps = detector.find_missing_ranges(inner_times, time_range.from_time, time_range.to_time)

        by_time: dict[datetime, PricePoint] = {p.time: p for p in points}
        for sub_gap in sub_gaps:
            for point in self.fill(points, sub_gap):
                by_time.setdefault(point.time, point)

        filled = sorted(by_time.values(), key=lambda p: p.time)
        logger.debug(
            f"Filled {len(filled) - len(points)} points into "
            f"[{time_range.from_time.isoformat()}, {time_range.to_time.isoformat()})"
        )
        return filled
