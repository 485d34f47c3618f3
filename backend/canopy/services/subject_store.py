"""
Canopy Backend - Subject Store (Persistence Boundary)
=======================================================

What:  Reads and writes subject documents as (document, revision) pairs.
Why:   The ledger is embedded in the subject, so two concurrent history writes
       would otherwise silently overwrite each other (last write wins).
How:   Every write is a compare-and-swap on the `revision` column:

           UPDATE subjects SET document = :doc, revision = :new
            WHERE id = :id AND revision = :expected

       Zero affected rows means someone else wrote first → RevisionConflictError.
       There is no retry here; the caller reloads and reapplies its change.

Revision tokens:
    "<generation>-<md5 of the compact JSON document>". The generation
    increases by one on every write; the digest makes tokens from different
    histories distinguishable even at equal generations.

Error Handling:
    SQLAlchemyError is logged with full detail and re-raised as InternalError
    (generic client message). Application exceptions pass through untouched.
"""

import hashlib
import json
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional

from sqlalchemy import delete, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from canopy.exceptions import InternalError, NotFoundError, RevisionConflictError
from canopy.models.subject import Subject

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Versioned:
    """A subject document together with the revision it was read at."""

    id: str
    project_id: str
    document: Dict[str, Any]
    revision: str


def new_subject_id() -> str:
    return f"subject:{uuid.uuid4().hex}"


def next_revision(previous: Optional[str], document: Mapping[str, Any]) -> str:
    """Compute the token a document gets when written over `previous`."""
    generation = 1
    if previous:
        head = previous.split("-", 1)[0]
        generation = int(head) + 1 if head.isdigit() else 1
    encoded = json.dumps(document, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    digest = hashlib.md5(encoded.encode("utf-8"), usedforsecurity=False).hexdigest()
    return f"{generation}-{digest}"


class SubjectStore:
    """
    Versioned subject persistence on top of the request's AsyncSession.

    The store never commits. get_db_session() commits once the route
    returns, so a write that is followed by a failure is rolled back.
    """

    async def get(self, db: AsyncSession, subject_id: str) -> Versioned:
        """
        Load a subject and the revision it is currently at.

        populate_existing makes a re-read inside the same session reflect a
        compare-and-swap that bypassed the identity map.

        Raises:
            NotFoundError: no subject with this id (→ 404)
            InternalError: the query failed (→ 500)
        """
        try:
            result = await db.execute(
                select(Subject)
                .where(Subject.id == subject_id)
                .execution_options(populate_existing=True)
            )
            row = result.scalar_one_or_none()
        except SQLAlchemyError as e:
            logger.error("Database error loading subject %s: %s", subject_id, e, exc_info=True)
            raise InternalError(context={"error_type": type(e).__name__})

        if row is None:
            raise NotFoundError(resource="subject", resource_id=subject_id)

        return Versioned(
            id=row.id,
            project_id=row.project_id,
            document=dict(row.document or {}),
            revision=row.revision,
        )

    async def create(
        self,
        db: AsyncSession,
        project_id: str,
        document: Dict[str, Any],
        subject_id: Optional[str] = None,
    ) -> Versioned:
        subject_id = subject_id or new_subject_id()
        revision = next_revision(None, document)
        try:
            db.add(
                Subject(
                    id=subject_id,
                    project_id=project_id,
                    document=document,
                    revision=revision,
                )
            )
            await db.flush()
        except SQLAlchemyError as e:
            logger.error("Database error creating subject %s: %s", subject_id, e, exc_info=True)
            raise InternalError(context={"error_type": type(e).__name__})

        return Versioned(id=subject_id, project_id=project_id, document=document, revision=revision)

    async def replace(
        self,
        db: AsyncSession,
        current: Versioned,
        document: Dict[str, Any],
        expected_revision: Optional[str] = None,
    ) -> Versioned:
        """
        Compare-and-swap the whole document.

        Args:
            current:            The Versioned the change was computed from
            document:           Full replacement document
            expected_revision:  Token to compare against; defaults to
                                current.revision (a client If-Match wins)

        Raises:
            RevisionConflictError: the stored revision is not the expected one
            InternalError:         the statement failed
        """
        expected = expected_revision or current.revision
        revision = next_revision(expected, document)
        try:
            result = await db.execute(
                update(Subject)
                .where(Subject.id == current.id, Subject.revision == expected)
                .values(
                    document=document,
                    revision=revision,
                    updated_at=datetime.now(timezone.utc),
                )
                .execution_options(synchronize_session=False)
            )
        except SQLAlchemyError as e:
            logger.error("Database error writing subject %s: %s", current.id, e, exc_info=True)
            raise InternalError(context={"error_type": type(e).__name__})

        if result.rowcount == 0:
            raise RevisionConflictError(subject_id=current.id, expected_revision=expected)

        return Versioned(
            id=current.id,
            project_id=current.project_id,
            document=document,
            revision=revision,
        )

    async def delete(
        self,
        db: AsyncSession,
        current: Versioned,
        expected_revision: Optional[str] = None,
    ) -> None:
        """Delete the subject (and with it the ledger) if still at the expected revision."""
        expected = expected_revision or current.revision
        try:
            result = await db.execute(
                delete(Subject)
                .where(Subject.id == current.id, Subject.revision == expected)
                .execution_options(synchronize_session=False)
            )
        except SQLAlchemyError as e:
            logger.error("Database error deleting subject %s: %s", current.id, e, exc_info=True)
            raise InternalError(context={"error_type": type(e).__name__})

        if result.rowcount == 0:
            raise RevisionConflictError(subject_id=current.id, expected_revision=expected)


# ── Singleton Instance ────────────────────────────────────────────────────
subject_store = SubjectStore()
