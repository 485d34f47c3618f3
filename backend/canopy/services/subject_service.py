"""
Canopy Backend - Subject Service
==================================

What:  Lifecycle of the subjects that carry a history ledger: create with an
       empty ledger, read (optionally without or with a filtered ledger),
       update descriptive fields, delete together with the ledger.
Who:   Called by routes/subjects.py.

Rules:
    - Creating requires an existing project the actor is a member of, and a
      location with latitude and longitude.
    - Updating never touches `history`; the ledger only changes through
      HistoryService. The size ceiling still applies because the
      descriptive fields share the document with the ledger.
    - Deleting is restricted to the project owner or the subject's creator.
"""

import logging
from typing import Any, Dict, Mapping, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from canopy.auth import Actor
from canopy.config import settings
from canopy.exceptions import AuthorizationError, ValidationError
from canopy.ledger import SizeGuard
from canopy.ledger.entry import format_iso, normalize_measurement, parse_year_label, year_label
from canopy.schemas.subject import SubjectCreate
from canopy.services.history_service import utcnow
from canopy.services.project_directory import ProjectDirectory, project_directory
from canopy.services.subject_store import SubjectStore, Versioned, subject_store

logger = logging.getLogger(__name__)

DEFAULT_NAME = "Unnamed subject"
DEFAULT_SPECIES = "Unknown species"
DEFAULT_HEALTH = "unknown"
DEFAULT_LOCATION_NAME = "Marked position"

UPDATABLE_FIELDS = ("name", "species", "description", "height", "diameter", "health", "location")


class SubjectService:

    def __init__(
        self,
        store: Optional[SubjectStore] = None,
        projects: Optional[ProjectDirectory] = None,
        size_guard: Optional[SizeGuard] = None,
        clock=utcnow,
    ):
        self.store = store or subject_store
        self.projects = projects or project_directory
        self.size_guard = size_guard or SizeGuard(settings.history_max_document_bytes)
        self.clock = clock

    async def create(self, db: AsyncSession, actor: Actor, payload: SubjectCreate) -> Versioned:
        """
        Create a subject with an empty history.

        Raises:
            ValidationError:    projectId or location missing, bad measurement (400)
            NotFoundError:      unknown project (404)
            AuthorizationError: actor is not a project member (403)
        """
        if not payload.project_id:
            raise ValidationError(message="The project id is required", field="projectId")
        if payload.location is None:
            raise ValidationError(message="The subject location is required", field="location")

        await self.projects.require_member(db, payload.project_id, actor)

        now = format_iso(self.clock())
        document: Dict[str, Any] = {
            "projectId": payload.project_id,
            "name": payload.name or DEFAULT_NAME,
            "species": payload.species or DEFAULT_SPECIES,
            "description": payload.description or "",
            "height": normalize_measurement("height", payload.height),
            "diameter": normalize_measurement("diameter", payload.diameter),
            "health": payload.health or DEFAULT_HEALTH,
            "location": {
                "latitude": payload.location.latitude,
                "longitude": payload.location.longitude,
                "name": payload.location.name or DEFAULT_LOCATION_NAME,
            },
            "history": {},
            "createdBy": actor.user_id,
            "createdAt": now,
            "updatedAt": now,
        }
        self.size_guard.check(document)

        created = await self.store.create(db, payload.project_id, document)
        logger.info(
            "Subject %s created in project %s by %s",
            created.id, payload.project_id, actor.user_id,
        )
        return created

    async def get(
        self,
        db: AsyncSession,
        actor: Actor,
        subject_id: str,
        include_history: bool = True,
        year: Optional[str] = None,
    ) -> Versioned:
        """
        Read a subject.

        include_history=False drops the `history` key entirely; a year keeps
        only that bucket (or {} when the subject has none for that year).
        """
        current = await self.store.get(db, subject_id)
        await self.projects.require_member(db, current.project_id, actor)

        document = dict(current.document)
        if not include_history:
            document.pop("history", None)
        elif year is not None:
            history = document.get("history") or {}
            key = parse_year_label(year)
            label = year_label(key) if key is not None else year
            document["history"] = {label: history[label]} if label in history else {}
        else:
            document.setdefault("history", {})

        return Versioned(
            id=current.id,
            project_id=current.project_id,
            document=document,
            revision=current.revision,
        )

    async def update(
        self,
        db: AsyncSession,
        actor: Actor,
        subject_id: str,
        changes: Mapping[str, Any],
        expected_revision: Optional[str] = None,
    ) -> Versioned:
        """
        Update descriptive fields. `changes` holds camelCase document keys.

        Raises:
            ValidationError:       unknown field, history in the body, bad value (400)
            RevisionConflictError: stale revision (409)
            EntityTooLargeError:   document would exceed the ceiling (413)
        """
        if "history" in changes:
            raise ValidationError(
                message="History cannot be replaced; use the history endpoints",
                field="history",
            )
        unknown = sorted(set(changes) - set(UPDATABLE_FIELDS))
        if unknown:
            raise ValidationError(message=f"Unknown subject field(s): {', '.join(unknown)}", field=unknown[0])
        if "location" in changes and changes["location"] is None:
            raise ValidationError(message="The subject location is required", field="location")

        current = await self.store.get(db, subject_id)
        await self.projects.require_member(db, current.project_id, actor)

        document = dict(current.document)
        for field, value in changes.items():
            if field in ("height", "diameter"):
                value = normalize_measurement(field, value)
            document[field] = value
        document["updatedAt"] = format_iso(self.clock())
        document["updatedBy"] = actor.user_id
        self.size_guard.check(document)

        saved = await self.store.replace(db, current, document, expected_revision)
        logger.info("Subject %s updated by %s (%s)", subject_id, actor.user_id, ", ".join(sorted(changes)))
        return saved

    async def delete(
        self,
        db: AsyncSession,
        actor: Actor,
        subject_id: str,
        expected_revision: Optional[str] = None,
    ) -> None:
        """Delete a subject and its history. Project owner or creator only."""
        current = await self.store.get(db, subject_id)
        project = await self.projects.require_member(db, current.project_id, actor)

        if actor.user_id not in (project.owner_id, current.document.get("createdBy")):
            raise AuthorizationError(
                message="Only the project owner or the subject's creator can delete it",
                context={"subject_id": subject_id},
            )

        await self.store.delete(db, current, expected_revision)
        logger.info("Subject %s deleted by %s", subject_id, actor.user_id)


subject_service = SubjectService()
