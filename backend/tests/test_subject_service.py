"""
Canopy Backend - Subject Service Tests
========================================

What we test:
    ✅ History cannot be replaced through a subject update
    ✅ Unknown fields are rejected
    ✅ Updates respect the size ceiling
    ✅ Created documents carry an empty history and the creator
"""

import pytest

from canopy.exceptions import EntityTooLargeError, ValidationError
from canopy.ledger import SizeGuard, serialized_size
from canopy.schemas.subject import Location, SubjectCreate
from canopy.services.subject_service import SubjectService
from canopy.services.subject_store import subject_store

from conftest import MEMBER, PROJECT_ID


class TestSubjectService:

    @pytest.mark.asyncio
    async def test_create_starts_with_empty_history(self, db_session, project, clock, member):
        service = SubjectService(clock=clock)
        payload = SubjectCreate(
            project_id=PROJECT_ID, location=Location(latitude=1.5, longitude=2.5, name="Gate")
        )

        created = await service.create(db_session, member, payload)

        assert created.document["history"] == {}
        assert created.document["createdBy"] == MEMBER
        assert created.document["createdAt"] == "2024-06-01T12:00:00.000Z"
        assert created.document["location"] == {"latitude": 1.5, "longitude": 2.5, "name": "Gate"}

    @pytest.mark.asyncio
    async def test_history_cannot_be_replaced(self, db_session, subject, member):
        with pytest.raises(ValidationError) as exc_info:
            await SubjectService().update(db_session, member, subject.id, {"history": {}})
        assert exc_info.value.field == "history"

    @pytest.mark.asyncio
    async def test_unknown_field_rejected(self, db_session, subject, member):
        with pytest.raises(ValidationError):
            await SubjectService().update(db_session, member, subject.id, {"projectId": "project:other"})

    @pytest.mark.asyncio
    async def test_update_over_ceiling_is_not_stored(self, db_session, subject, member):
        service = SubjectService(size_guard=SizeGuard(max_bytes=serialized_size(subject.document) + 100))

        with pytest.raises(EntityTooLargeError):
            await service.update(db_session, member, subject.id, {"description": "d" * 500})

        stored = await subject_store.get(db_session, subject.id)
        assert stored.revision == subject.revision
        assert stored.document["description"] == ""
