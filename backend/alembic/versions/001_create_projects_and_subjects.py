"""Create projects and subjects tables

Revision ID: 001
Revises: None
Create Date: 2024-03-01 00:00:00.000000+00:00

What:  Creates `projects` (read-only here, owned by the project service) and
       `subjects` (one JSON document per tracked object, history embedded).
How:   JSONB columns on PostgreSQL; `revision` backs the compare-and-swap.

Rollback: downgrade() drops both tables (destructive, all history lost).
"""

from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

JSON_TYPE = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")


def upgrade() -> None:
    """Create both tables with their indexes."""
    op.create_table(
        "projects",
        sa.Column("id", sa.String(64), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("owner_id", sa.String(64), nullable=False),
        sa.Column(
            "members",
            JSON_TYPE,
            nullable=False,
            comment="User ids allowed to read and write the project's subjects",
        ),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("CURRENT_TIMESTAMP"),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_projects_owner_id", "projects", ["owner_id"])

    op.create_table(
        "subjects",
        sa.Column("id", sa.String(64), nullable=False),
        sa.Column("project_id", sa.String(64), nullable=False),
        sa.Column(
            "document",
            JSON_TYPE,
            nullable=False,
            comment="Subject document in its API shape, history embedded",
        ),
        sa.Column(
            "revision",
            sa.String(64),
            nullable=False,
            comment="Optimistic concurrency token; changes on every write",
        ),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("CURRENT_TIMESTAMP"),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("CURRENT_TIMESTAMP"),
            nullable=False,
        ),
        sa.ForeignKeyConstraint(["project_id"], ["projects.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_subjects_project_id", "subjects", ["project_id"])


def downgrade() -> None:
    """Drop both tables. Subject documents carry their history, so it goes too."""
    op.drop_index("ix_subjects_project_id", table_name="subjects")
    op.drop_table("subjects")
    op.drop_index("ix_projects_owner_id", table_name="projects")
    op.drop_table("projects")
