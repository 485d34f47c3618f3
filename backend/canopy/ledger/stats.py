"""
Canopy Backend - History Statistics
=====================================

What:  Read-only aggregation over a subject's history buckets.
How:   compute_stats() walks the entries in scope once per measurement and
       returns a frozen HistoryStats tree that the API layer serializes.

Output shape (camelCase on the wire):
    totalEntries         number of entries in scope
    years                bucket labels present in the ledger (ascending)
    dateRange            {min, max} over entry dates
    height / diameter    {count, min, max, avg}, absent when nothing was measured
    healthDistribution   label → count over entries with a health label
    byYear               only without a year filter: {count, avgHeight, avgDiameter}

With zero entries in scope only totalEntries, years and a message are filled;
min/max/avg are undefined over an empty set and are not attempted.
"""

from collections import Counter
from dataclasses import dataclass
from statistics import fmean
from typing import Dict, List, Mapping, Optional, Sequence

from canopy.ledger.entry import HistoryEntry, format_iso

EMPTY_HISTORY_MESSAGE = "No history data available"


@dataclass(frozen=True)
class MeasurementSummary:
    count: int
    min: float
    max: float
    avg: float


@dataclass(frozen=True)
class DateRange:
    min: str
    max: str


@dataclass(frozen=True)
class YearSummary:
    count: int
    avg_height: Optional[float] = None
    avg_diameter: Optional[float] = None


@dataclass(frozen=True)
class HistoryStats:
    total_entries: int
    years: List[str]
    date_range: Optional[DateRange] = None
    height: Optional[MeasurementSummary] = None
    diameter: Optional[MeasurementSummary] = None
    health_distribution: Optional[Dict[str, int]] = None
    by_year: Optional[Dict[str, YearSummary]] = None
    message: Optional[str] = None


def summarize(values: Sequence[float]) -> Optional[MeasurementSummary]:
    if not values:
        return None
    return MeasurementSummary(
        count=len(values),
        min=min(values),
        max=max(values),
        avg=fmean(values),
    )


def _average(values: Sequence[float]) -> Optional[float]:
    return fmean(values) if values else None


def _heights(entries: Sequence[HistoryEntry]) -> List[float]:
    return [e.height for e in entries if e.height is not None]


def _diameters(entries: Sequence[HistoryEntry]) -> List[float]:
    return [e.diameter for e in entries if e.diameter is not None]


def compute_stats(
    buckets: Mapping[str, Sequence[HistoryEntry]],
    year: Optional[str] = None,
) -> HistoryStats:
    """
    Aggregate statistics over the ledger, optionally restricted to one year.

    Args:
        buckets: Year label → entries, as produced by Ledger.buckets()
        year:    Restrict to this bucket label. A label with no bucket yields
                 the empty-scope result rather than falling back to all years.

    Returns:
        HistoryStats. Pure function: the input is never modified.
    """
    years = sorted(buckets)

    if year is not None:
        in_scope: List[HistoryEntry] = list(buckets.get(year, ()))
    else:
        in_scope = [entry for label in years for entry in buckets[label]]

    if not in_scope:
        return HistoryStats(total_entries=0, years=years, message=EMPTY_HISTORY_MESSAGE)

    dates = [entry.date for entry in in_scope]
    health = Counter(entry.health for entry in in_scope if entry.health is not None)

    by_year: Optional[Dict[str, YearSummary]] = None
    if year is None:
        by_year = {
            label: YearSummary(
                count=len(buckets[label]),
                avg_height=_average(_heights(buckets[label])),
                avg_diameter=_average(_diameters(buckets[label])),
            )
            for label in years
        }

    return HistoryStats(
        total_entries=len(in_scope),
        years=years,
        date_range=DateRange(min=format_iso(min(dates)), max=format_iso(max(dates))),
        height=summarize(_heights(in_scope)),
        diameter=summarize(_diameters(in_scope)),
        health_distribution=dict(health),
        by_year=by_year,
    )
