"""
Canopy Backend - Project SQLAlchemy Model
===========================================

What:  ORM model for the `projects` table.
Who:   Read by ProjectDirectory for membership checks. Project CRUD belongs
       to another service; this backend never writes projects.

`members` is a JSON list of user ids and always includes the owner.
"""

from datetime import datetime, timezone
from typing import List

from sqlalchemy import JSON, DateTime, String
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from canopy.database import Base


class Project(Base):
    __tablename__ = "projects"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    owner_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    members: Mapped[List[str]] = mapped_column(
        JSON().with_variant(JSONB(), "postgresql"),
        nullable=False,
        default=list,
        comment="User ids allowed to read and write the project's subjects",
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    def is_member(self, user_id: str) -> bool:
        return user_id == self.owner_id or user_id in (self.members or [])

    def __repr__(self) -> str:
        return f"<Project(id={self.id}, owner='{self.owner_id}')>"
