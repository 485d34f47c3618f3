"""
Canopy Backend - Year-Bucketed History Ledger
===============================================

What:  The in-memory history of one subject: a map from calendar year to the
       entries observed that year, plus the add/edit/delete/query operations.
Why:   The history is embedded in the subject document, so every invariant
       has to hold on the plain JSON mapping that gets written back.
How:   Built from the stored `history` field, mutated through the methods
       below, serialized back with to_document(). All bucket manipulation goes
       through _insert() and _remove(), which re-establish the invariants.

Invariants (hold after every successful operation):
    - Within a bucket, entries are sorted by date, newest first.
    - No two entries in a bucket collide under the DedupGuard
      (dates within the window, or identical timestamps).
    - A bucket with no entries is removed, never kept empty.

Failure semantics:
    Every operation validates and checks for collisions BEFORE touching the
    buckets, so a raised exception leaves the ledger exactly as it was.
    Operations are deterministic given (state, arguments, now), which makes a
    blind retry after a revision conflict safe.

Concurrency:
    None. A Ledger instance belongs to a single in-flight request. Cross-request
    safety is the job of the SubjectStore's compare-and-swap.

Pagination quirk:
    query() applies offset/limit inside EACH year bucket independently, not
    over the flattened history. Clients wanting one chronological page across
    years must flatten and slice themselves.
"""

from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any, Dict, Iterator, List, Mapping, Optional, Sequence, Tuple

from canopy.exceptions import InternalError, NotFoundError, ValidationError
from canopy.ledger.dedup import DedupGuard
from canopy.ledger.entry import (
    HistoryEntry,
    format_iso,
    normalize_label,
    normalize_measurement,
    normalize_notes,
    parse_event_date,
    parse_year_label,
    to_epoch_ms,
    year_label,
)
from canopy.ledger.stats import HistoryStats, compute_stats

EDITABLE_FIELDS = ("date", "height", "diameter", "health", "notes")
DEFAULT_HEALTH_MAX_LENGTH = 50


@dataclass(frozen=True)
class LedgerChange:
    """Result of a successful add or edit: the stored entry and its bucket label."""

    year: str
    entry: HistoryEntry


def _sort_key(entry: HistoryEntry) -> Tuple[datetime, int]:
    return (entry.date, entry.timestamp)


def _parse_timestamp(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value)
        except ValueError:
            return None
    return None


class Ledger:
    """
    Year-bucketed history for one subject.

    Usage:
        ledger = Ledger.from_document(subject.get("history"))
        change = ledger.add_entry(date="2024-05-01", height=4.2, actor="u1", now=now)
        subject["history"] = ledger.to_document()
    """

    def __init__(
        self,
        dedup_guard: Optional[DedupGuard] = None,
        health_max_length: int = DEFAULT_HEALTH_MAX_LENGTH,
    ):
        self._buckets: Dict[int, List[HistoryEntry]] = {}
        self.dedup_guard = dedup_guard or DedupGuard()
        self.health_max_length = health_max_length

    # ── Loading & serialization ───────────────────────────────────────────

    @classmethod
    def from_document(
        cls,
        history: Optional[Mapping[str, Sequence[Mapping[str, Any]]]],
        dedup_guard: Optional[DedupGuard] = None,
        health_max_length: int = DEFAULT_HEALTH_MAX_LENGTH,
    ) -> "Ledger":
        """
        Build a ledger from the stored `history` mapping.

        A missing or null mapping is an empty ledger. Stored bucket labels are
        kept as-is (they address entries in URLs); buckets are re-sorted and
        empty ones dropped so ordering and non-empty buckets hold from the start.

        Raises:
            InternalError: a stored year key or entry is unreadable (500).
        """
        ledger = cls(dedup_guard=dedup_guard, health_max_length=health_max_length)
        for label, raw_entries in (history or {}).items():
            year = parse_year_label(label)
            if year is None:
                raise InternalError(
                    context={"reason": "corrupt stored history", "year_key": str(label)},
                )
            try:
                entries = [HistoryEntry.from_document(raw) for raw in raw_entries or ()]
            except (ValidationError, TypeError, ValueError, AttributeError) as e:
                raise InternalError(
                    context={
                        "reason": "corrupt stored history",
                        "year_key": str(label),
                        "error_type": type(e).__name__,
                    },
                )
            if entries:
                entries.sort(key=_sort_key, reverse=True)
                ledger._buckets[year] = entries
        return ledger

    def to_document(self) -> Dict[str, List[Dict[str, Any]]]:
        """Serialize to {"2023": [...], "2024": [...]} with years ascending."""
        return {
            year_label(year): [entry.to_document() for entry in self._buckets[year]]
            for year in sorted(self._buckets)
        }

    # ── Read access ───────────────────────────────────────────────────────

    def years(self) -> List[str]:
        return [year_label(year) for year in sorted(self._buckets)]

    def buckets(self) -> Dict[str, List[HistoryEntry]]:
        """Copy of the bucket map keyed by year label, years ascending."""
        return {year_label(year): list(self._buckets[year]) for year in sorted(self._buckets)}

    def bucket(self, year: Any) -> List[HistoryEntry]:
        key = parse_year_label(year)
        return list(self._buckets.get(key, ())) if key is not None else []

    def entries(self) -> Iterator[HistoryEntry]:
        for year in sorted(self._buckets):
            yield from self._buckets[year]

    def __len__(self) -> int:
        return sum(len(bucket) for bucket in self._buckets.values())

    def get_entry(self, year: Any, timestamp: Any) -> HistoryEntry:
        key, index = self._locate(year, timestamp)
        return self._buckets[key][index]

    # ── Mutations ─────────────────────────────────────────────────────────

    def add_entry(
        self,
        *,
        date: Any,
        height: Any = None,
        diameter: Any = None,
        health: Any = None,
        notes: Any = None,
        actor: str,
        now: datetime,
    ) -> LedgerChange:
        """
        Append a new observation.

        Args:
            date:     Event time (required). Determines the target year.
            height, diameter:  Optional non-negative measurements
            health, notes:     Optional labels / free text
            actor:    User id stamped as addedBy
            now:      Current time; becomes `timestamp` (epoch ms) and `addedAt`

        Returns:
            LedgerChange with the stored entry and its year label.

        Raises:
            ValidationError:     missing date, negative measurement, bad label
            DuplicateEntryError: collides with an entry in the target year
        """
        candidate = HistoryEntry(
            date=parse_event_date(date),
            timestamp=to_epoch_ms(now),
            height=normalize_measurement("height", height),
            diameter=normalize_measurement("diameter", diameter),
            health=normalize_label(health, self.health_max_length),
            notes=normalize_notes(notes),
            added_by=actor,
            added_at=format_iso(now),
        )
        label = year_label(candidate.year)
        self.dedup_guard.check(candidate, self._buckets.get(candidate.year, ()), label)

        self._insert(candidate.year, candidate)
        return LedgerChange(year=label, entry=candidate)

    def edit_entry(
        self,
        year: Any,
        timestamp: Any,
        patch: Mapping[str, Any],
        *,
        actor: str,
        now: datetime,
    ) -> LedgerChange:
        """
        Apply a partial update to the entry addressed by (year, timestamp).

        Only keys present in `patch` are applied; a key present with value None
        clears that field. `date` cannot be cleared. When the new date falls in
        another year the entry moves to that bucket (creating it if needed) and
        the old bucket is dropped if it became empty.

        Returns:
            LedgerChange with the updated entry and the bucket it now lives in.

        Raises:
            NotFoundError:       no entry at (year, timestamp)
            ValidationError:     unknown field, cleared date, bad value
            DuplicateEntryError: the new date collides in the target year
        """
        key, index = self._locate(year, timestamp)
        existing = self._buckets[key][index]

        unknown = sorted(set(patch) - set(EDITABLE_FIELDS))
        if unknown:
            raise ValidationError(
                message=f"Unknown history field(s): {', '.join(unknown)}",
                field=unknown[0],
            )

        changes: Dict[str, Any] = {}
        if "date" in patch:
            if patch["date"] is None:
                raise ValidationError(message="The date cannot be removed", field="date")
            changes["date"] = parse_event_date(patch["date"])
        if "height" in patch:
            changes["height"] = normalize_measurement("height", patch["height"])
        if "diameter" in patch:
            changes["diameter"] = normalize_measurement("diameter", patch["diameter"])
        if "health" in patch:
            changes["health"] = normalize_label(patch["health"], self.health_max_length)
        if "notes" in patch:
            changes["notes"] = normalize_notes(patch["notes"])

        updated = replace(existing, **changes, updated_by=actor, updated_at=format_iso(now))

        target = key
        if "date" in changes:
            target = updated.year
            if updated.date != existing.date:
                others = [e for e in self._buckets.get(target, ()) if e is not existing]
                self.dedup_guard.check(updated, others, year_label(target))

        self._remove(key, index)
        self._insert(target, updated)
        return LedgerChange(year=year_label(target), entry=updated)

    def delete_entry(self, year: Any, timestamp: Any) -> HistoryEntry:
        """
        Remove the entry addressed by (year, timestamp) and return it.

        Raises:
            NotFoundError: no entry at (year, timestamp)
        """
        key, index = self._locate(year, timestamp)
        return self._remove(key, index)

    # ── Query & stats ─────────────────────────────────────────────────────

    def query(
        self,
        year: Any = None,
        offset: int = 0,
        limit: Optional[int] = None,
    ) -> Dict[str, List[HistoryEntry]]:
        """
        Return {year label: entries} with per-bucket pagination.

        Args:
            year:   Only consider this bucket. Unknown or malformed → {}.
            offset: Entries to skip at the start of EACH bucket
            limit:  Max entries kept from EACH bucket (None = all)

        A bucket whose slice is empty is still listed, with an empty list.
        """
        if offset < 0:
            raise ValidationError(message="The offset must not be negative", field="offset")
        if limit is not None and limit < 0:
            raise ValidationError(message="The limit must not be negative", field="limit")

        if year is None:
            keys = sorted(self._buckets)
        else:
            key = parse_year_label(year)
            keys = [key] if key in self._buckets else []

        end = None if limit is None else offset + limit
        return {year_label(key): self._buckets[key][offset:end] for key in keys}

    def stats(self, year: Any = None) -> HistoryStats:
        label = None
        if year is not None:
            key = parse_year_label(year)
            label = year_label(key) if key is not None else str(year)
        return compute_stats(self.buckets(), label)

    # ── Bucket helpers (the only code that touches _buckets directly) ─────

    def _locate(self, year: Any, timestamp: Any) -> Tuple[int, int]:
        # Both parts may come straight from a URL; anything unparseable addresses nothing
        key = parse_year_label(year)
        wanted = _parse_timestamp(timestamp)
        bucket = self._buckets.get(key) if key is not None else None
        if bucket is not None and wanted is not None:
            for index, entry in enumerate(bucket):
                if entry.timestamp == wanted:
                    return key, index
        raise NotFoundError(
            resource="history entry",
            resource_id=f"{year}/{timestamp}",
        )

    def _insert(self, year: int, entry: HistoryEntry) -> None:
        bucket = self._buckets.setdefault(year, [])
        bucket.append(entry)
        bucket.sort(key=_sort_key, reverse=True)

    def _remove(self, year: int, index: int) -> HistoryEntry:
        bucket = self._buckets[year]
        removed = bucket.pop(index)
        if not bucket:
            del self._buckets[year]
        return removed
