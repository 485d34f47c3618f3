"""
Canopy Backend - Project Directory
====================================

What:  Read-only project lookups and the membership check guarding every
       subject and history operation.
Who:   HistoryService and SubjectService, right after loading a subject.

Projects are created and edited by another service; this one only reads them.
"""

import logging

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from canopy.auth import Actor
from canopy.exceptions import AuthorizationError, InternalError, NotFoundError
from canopy.models.project import Project

logger = logging.getLogger(__name__)


class ProjectDirectory:

    async def get(self, db: AsyncSession, project_id: str) -> Project:
        """
        Raises:
            NotFoundError: unknown project (→ 404)
            InternalError: the query failed (→ 500)
        """
        try:
            result = await db.execute(select(Project).where(Project.id == project_id))
            project = result.scalar_one_or_none()
        except SQLAlchemyError as e:
            logger.error("Database error loading project %s: %s", project_id, e, exc_info=True)
            raise InternalError(context={"error_type": type(e).__name__})

        if project is None:
            raise NotFoundError(resource="project", resource_id=project_id)
        return project

    async def require_member(self, db: AsyncSession, project_id: str, actor: Actor) -> Project:
        """Return the project, or raise AuthorizationError (→ 403) for non-members."""
        project = await self.get(db, project_id)
        if not project.is_member(actor.user_id):
            logger.warning("User %s denied access to project %s", actor.user_id, project_id)
            raise AuthorizationError(context={"project_id": project_id})
        return project


project_directory = ProjectDirectory()
