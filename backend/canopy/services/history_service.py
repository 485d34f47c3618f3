"""
Canopy Backend - History Service (Ledger Orchestrator)
========================================================

What:  Runs each history operation end to end: load, authorize, apply to the
       ledger, size check, compare-and-swap write.
Why:   Keeps the ledger free of I/O and the routes free of business rules.
Who:   Called by the history route handlers; uses SubjectStore,
       ProjectDirectory and the ledger package.

Mutation Flow (add / edit / delete):
    ┌──────────┐   ┌───────────┐   ┌──────────────┐   ┌───────────┐   ┌───────────┐
    │   Load   │──▶│ Membership│──▶│ Ledger op on │──▶│ SizeGuard │──▶│ CAS write │
    │ (+ rev)  │   │   check   │   │  a copy      │   │ (≤ 15MiB) │   │ (rev)     │
    └──────────┘   └───────────┘   └──────────────┘   └───────────┘   └───────────┘

    Any exception before the write leaves the stored document untouched.
    A stale revision (client If-Match, or a concurrent writer between load
    and write) is reported as RevisionConflictError and never retried here.

Clock:
    `clock` returns the current aware datetime. It feeds entry timestamps
    and the addedAt/updatedAt stamps; tests replace it to get
    deterministic timestamps.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple, TypeVar, Union

from sqlalchemy.ext.asyncio import AsyncSession

from canopy.auth import Actor
from canopy.config import settings
from canopy.exceptions import (
    DuplicateEntryError,
    EntityTooLargeError,
    RevisionConflictError,
    ValidationError,
)
from canopy.ledger import DedupGuard, HistoryEntry, HistoryStats, Ledger, LedgerChange, SizeGuard
from canopy.ledger.entry import format_iso
from canopy.services.project_directory import ProjectDirectory, project_directory
from canopy.services.subject_store import SubjectStore, Versioned, subject_store

logger = logging.getLogger(__name__)

T = TypeVar("T")

REJECTIONS = (DuplicateEntryError, EntityTooLargeError, RevisionConflictError, ValidationError)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class HistoryService:
    """
    Business logic for the observation history of one subject at a time.

    Responsibilities:
        - add_entry():     append an observation (201)
        - list_history():  per-bucket paginated listing
        - edit_entry():    partial update, may move the entry to another year
        - delete_entry():  remove an entry, dropping an emptied year
        - get_stats():     aggregate statistics, optionally for one year

    Every method returns the subject's revision after the call alongside the
    result, so routes can send it back as the ETag.
    """

    def __init__(
        self,
        store: Optional[SubjectStore] = None,
        projects: Optional[ProjectDirectory] = None,
        size_guard: Optional[SizeGuard] = None,
        dedup_guard: Optional[DedupGuard] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store or subject_store
        self.projects = projects or project_directory
        self.size_guard = size_guard or SizeGuard(settings.history_max_document_bytes)
        self.dedup_guard = dedup_guard or DedupGuard(settings.history_dedup_window_ms)
        self.clock = clock

    # ── Reads ─────────────────────────────────────────────────────────────

    async def list_history(
        self,
        db: AsyncSession,
        subject_id: str,
        actor: Actor,
        year: Optional[str] = None,
        offset: int = 0,
        limit: Optional[int] = None,
    ) -> Tuple[Dict[str, List[HistoryEntry]], str]:
        """
        Return {year: entries} with offset/limit applied inside each bucket.

        A year naming no bucket gives {}. limit defaults to the configured
        page size.
        """
        current = await self._load(db, subject_id, actor)
        ledger = self._ledger(current)
        if limit is None:
            limit = settings.history_page_limit
        return ledger.query(year=year, offset=offset, limit=limit), current.revision

    async def get_stats(
        self,
        db: AsyncSession,
        subject_id: str,
        actor: Actor,
        year: Optional[str] = None,
    ) -> Tuple[HistoryStats, str]:
        current = await self._load(db, subject_id, actor)
        return self._ledger(current).stats(year), current.revision

    # ── Mutations ─────────────────────────────────────────────────────────

    async def add_entry(
        self,
        db: AsyncSession,
        subject_id: str,
        actor: Actor,
        payload: Mapping[str, Any],
        expected_revision: Optional[str] = None,
    ) -> Tuple[LedgerChange, str]:
        """
        Append an observation to the subject's history.

        Args:
            payload:            date (required), height, diameter, health, notes
            expected_revision:  If-Match token from the client, if any

        Raises:
            ValidationError:       bad or missing field (400)
            AuthorizationError:    not a project member (403)
            NotFoundError:         unknown subject (404)
            DuplicateEntryError:   collides within the dedup window (409)
            RevisionConflictError: stale revision (409)
            EntityTooLargeError:   document would exceed the ceiling (413)
        """
        def apply(ledger: Ledger, now: datetime) -> LedgerChange:
            return ledger.add_entry(
                date=payload.get("date"),
                height=payload.get("height"),
                diameter=payload.get("diameter"),
                health=payload.get("health"),
                notes=payload.get("notes"),
                actor=actor.user_id,
                now=now,
            )

        change, revision = await self._mutate(db, subject_id, actor, expected_revision, "add", apply)
        logger.info(
            "History entry %s/%s added to %s by %s",
            change.year, change.entry.timestamp, subject_id, actor.user_id,
        )
        return change, revision

    async def edit_entry(
        self,
        db: AsyncSession,
        subject_id: str,
        actor: Actor,
        year: str,
        timestamp: Union[int, str],
        patch: Mapping[str, Any],
        expected_revision: Optional[str] = None,
    ) -> Tuple[LedgerChange, str]:
        """
        Apply a partial update to the entry at (year, timestamp).

        Only the keys present in `patch` change. If the date moves to another
        year the returned LedgerChange names the new bucket.
        """
        def apply(ledger: Ledger, now: datetime) -> LedgerChange:
            return ledger.edit_entry(year, timestamp, patch, actor=actor.user_id, now=now)

        change, revision = await self._mutate(db, subject_id, actor, expected_revision, "edit", apply)
        if change.year != year:
            logger.info(
                "History entry %s moved from %s to %s on %s by %s",
                timestamp, year, change.year, subject_id, actor.user_id,
            )
        else:
            logger.info(
                "History entry %s/%s edited on %s by %s",
                year, timestamp, subject_id, actor.user_id,
            )
        return change, revision

    async def delete_entry(
        self,
        db: AsyncSession,
        subject_id: str,
        actor: Actor,
        year: str,
        timestamp: Union[int, str],
        expected_revision: Optional[str] = None,
    ) -> Tuple[HistoryEntry, str]:
        def apply(ledger: Ledger, now: datetime) -> HistoryEntry:
            return ledger.delete_entry(year, timestamp)

        removed, revision = await self._mutate(db, subject_id, actor, expected_revision, "delete", apply)
        logger.info(
            "History entry %s/%s deleted from %s by %s",
            year, timestamp, subject_id, actor.user_id,
        )
        return removed, revision

    # ── Internals ─────────────────────────────────────────────────────────

    async def _load(self, db: AsyncSession, subject_id: str, actor: Actor) -> Versioned:
        current = await self.store.get(db, subject_id)
        await self.projects.require_member(db, current.project_id, actor)
        return current

    def _ledger(self, current: Versioned) -> Ledger:
        return Ledger.from_document(
            current.document.get("history"),
            dedup_guard=self.dedup_guard,
            health_max_length=settings.history_health_max_length,
        )

    async def _mutate(
        self,
        db: AsyncSession,
        subject_id: str,
        actor: Actor,
        expected_revision: Optional[str],
        operation: str,
        apply: Callable[[Ledger, datetime], T],
    ) -> Tuple[T, str]:
        """
        Shared read-modify-write for add, edit and delete.

        The ledger works on a fresh copy built from the loaded document, so a
        rejected operation has nothing to undo.
        """
        current = await self._load(db, subject_id, actor)
        try:
            if expected_revision and expected_revision != current.revision:
                raise RevisionConflictError(
                    subject_id=subject_id, expected_revision=expected_revision
                )

            ledger = self._ledger(current)
            now = self.clock()
            result = apply(ledger, now)

            document = dict(current.document)
            document["history"] = ledger.to_document()
            document["updatedAt"] = format_iso(now)
            document["updatedBy"] = actor.user_id
            self.size_guard.check(document)

            saved = await self.store.replace(db, current, document, expected_revision)
        except REJECTIONS as e:
            logger.warning(
                "History %s on %s rejected (%s): %s",
                operation, subject_id, type(e).__name__, e.message,
            )
            raise

        return result, saved.revision


# ── Singleton Instance ────────────────────────────────────────────────────
history_service = HistoryService()
