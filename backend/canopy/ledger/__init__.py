# Ledger package init
"""
Canopy Backend - History Ledger (Domain Layer)
================================================

What:  Pure domain logic for the observation history embedded in a subject.
Why:   Kept free of HTTP and database imports so every invariant can be unit
       tested on plain dicts and datetimes.

Module Inventory:
    - entry.py:       HistoryEntry record, date and field normalization
    - dedup.py:       DedupGuard (60 s window / identical timestamp rule)
    - ledger.py:      Ledger (year buckets, add/edit/delete/query)
    - stats.py:       compute_stats() aggregation
    - size_guard.py:  SizeGuard (serialized document ceiling)
"""

from canopy.ledger.dedup import DedupGuard
from canopy.ledger.entry import HistoryEntry
from canopy.ledger.ledger import Ledger, LedgerChange
from canopy.ledger.size_guard import SizeGuard, serialized_size
from canopy.ledger.stats import HistoryStats, compute_stats

__all__ = [
    "DedupGuard",
    "HistoryEntry",
    "HistoryStats",
    "Ledger",
    "LedgerChange",
    "SizeGuard",
    "compute_stats",
    "serialized_size",
]
