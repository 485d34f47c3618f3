"""
Canopy Backend - Subject SQLAlchemy Model
===========================================

What:  ORM model for the `subjects` table: one row per tracked object.
Why:   The subject is stored as a single JSON document (history included) so
       that the whole aggregate is read and replaced atomically.

Table Design Rationale:
    - id: "subject:<hex>" string key, stable across environments
    - project_id: Indexed; the owning project decides who may access the row
    - document: The camelCase subject document, including `history`
      (year → [entries]). JSONB on PostgreSQL, JSON elsewhere.
    - revision: Opaque "<generation>-<md5>" token. Every write must present
      the revision it read; SubjectStore compares-and-swaps on this column.
    - created_at / updated_at: Row bookkeeping in UTC

    Deleting the row deletes the ledger with it; history has no lifecycle of
    its own.
"""

from datetime import datetime, timezone
from typing import Any, Dict

from sqlalchemy import JSON, DateTime, ForeignKey, String
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from canopy.database import Base


class Subject(Base):
    __tablename__ = "subjects"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)

    project_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    document: Mapped[Dict[str, Any]] = mapped_column(
        JSON().with_variant(JSONB(), "postgresql"),
        nullable=False,
        comment="Subject document in its API shape, history embedded",
    )

    revision: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        comment="Optimistic concurrency token; changes on every write",
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    def __repr__(self) -> str:
        return f"<Subject(id={self.id}, project='{self.project_id}', rev='{self.revision}')>"
