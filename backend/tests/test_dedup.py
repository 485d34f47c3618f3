"""
Canopy Backend - Duplicate Guard Unit Tests
=============================================

What we test:
    ✅ Dates closer than the window collide; exactly the window does not
    ✅ Identical creation timestamps collide regardless of date
    ✅ The window is configurable
    ✅ check() raises with the bucket year and the colliding timestamp
"""

from datetime import datetime, timedelta, timezone

import pytest

from canopy.exceptions import DuplicateEntryError
from canopy.ledger import DedupGuard, HistoryEntry

DAY = datetime(2024, 5, 1, 10, 0, 0, tzinfo=timezone.utc)


def entry(offset_ms: int = 0, timestamp: int = 1) -> HistoryEntry:
    return HistoryEntry(date=DAY + timedelta(milliseconds=offset_ms), timestamp=timestamp)


class TestDedupGuard:

    def setup_method(self):
        self.guard = DedupGuard()

    def test_within_window_collides(self):
        assert self.guard.collides(entry(59_999, timestamp=2), entry(0, timestamp=1))

    def test_exact_window_does_not_collide(self):
        assert not self.guard.collides(entry(60_000, timestamp=2), entry(0, timestamp=1))

    def test_earlier_candidate_also_collides(self):
        assert self.guard.collides(entry(-1_000, timestamp=2), entry(0, timestamp=1))

    def test_identical_timestamp_collides(self):
        far_apart = HistoryEntry(date=DAY + timedelta(days=90), timestamp=7)
        assert self.guard.collides(far_apart, entry(0, timestamp=7))

    def test_zero_window_keeps_only_timestamp_rule(self):
        guard = DedupGuard(window_ms=0)
        assert not guard.collides(entry(0, timestamp=2), entry(0, timestamp=1))
        assert guard.collides(entry(0, timestamp=1), entry(0, timestamp=1))

    def test_negative_window_rejected(self):
        with pytest.raises(ValueError):
            DedupGuard(window_ms=-1)

    def test_find_collision_returns_first_match(self):
        bucket = [entry(3_600_000, timestamp=1), entry(10_000, timestamp=2)]
        assert self.guard.find_collision(entry(0, timestamp=3), bucket) is bucket[1]
        assert self.guard.find_collision(entry(7_200_000, timestamp=3), bucket) is None

    def test_check_raises_with_context(self):
        with pytest.raises(DuplicateEntryError) as exc_info:
            self.guard.check(entry(1_000, timestamp=9), [entry(0, timestamp=4)], "2024")

        assert exc_info.value.context == {"year": "2024", "existing_timestamp": 4}
