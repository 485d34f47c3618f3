"""
Canopy Backend - Duplicate Entry Guard
========================================

What:  Decides whether a candidate history entry collides with one already
       stored in its target year bucket.
Why:   Field crews on flaky connections resubmit the same measurement. The
       guard rejects the retry instead of storing the observation twice.

Collision rule (either condition is enough):
    (a) |candidate.date - existing.date| < window_ms     (default 60 000 ms)
    (b) candidate.timestamp == existing.timestamp

A collision is always a rejection. Entries are never merged.
"""

from typing import Iterable, Optional

from canopy.exceptions import DuplicateEntryError
from canopy.ledger.entry import HistoryEntry

DEFAULT_WINDOW_MS = 60_000


class DedupGuard:
    """Collision policy for one year bucket."""

    def __init__(self, window_ms: int = DEFAULT_WINDOW_MS):
        if window_ms < 0:
            raise ValueError("window_ms must be >= 0")
        self.window_ms = window_ms

    def collides(self, candidate: HistoryEntry, existing: HistoryEntry) -> bool:
        if candidate.timestamp == existing.timestamp:
            return True
        return abs(candidate.date_ms - existing.date_ms) < self.window_ms

    def find_collision(
        self, candidate: HistoryEntry, bucket: Iterable[HistoryEntry]
    ) -> Optional[HistoryEntry]:
        """Return the first stored entry the candidate collides with, if any."""
        for existing in bucket:
            if self.collides(candidate, existing):
                return existing
        return None

    def check(self, candidate: HistoryEntry, bucket: Iterable[HistoryEntry], year: str) -> None:
        """
        Raise DuplicateEntryError when the candidate collides with the bucket.

        Args:
            candidate: The entry about to be inserted
            bucket:    Entries already in the target year (minus the entry
                       being edited, when this is an edit)
            year:      Bucket label, reported back in the error context
        """
        existing = self.find_collision(candidate, bucket)
        if existing is not None:
            raise DuplicateEntryError(year=year, existing_timestamp=existing.timestamp)
