"""
Canopy Backend - History Service Tests
========================================

What:  HistoryService end to end against a temporary SQLite database.

What we test:
    ✅ Adds are persisted and stamp the subject's updatedAt/updatedBy
    ✅ Only project members can read or write the history
    ✅ A write over the size ceiling is rejected and nothing is stored
    ✅ Two writes from the same revision: one success, one conflict
    ✅ Edits that move an entry across years are persisted
    ✅ Listing and stats read the stored ledger
"""

import pytest

from canopy.exceptions import (
    AuthorizationError,
    DuplicateEntryError,
    EntityTooLargeError,
    NotFoundError,
    RevisionConflictError,
)
from canopy.ledger import SizeGuard, serialized_size
from canopy.services.history_service import HistoryService
from canopy.services.subject_store import SubjectStore, subject_store

from conftest import MEMBER


class SnapshotStore(SubjectStore):
    """Always 'reads' the same snapshot, like a writer that loaded before a concurrent write."""

    def __init__(self, snapshot):
        self.snapshot = snapshot

    async def get(self, db, subject_id):
        return self.snapshot


class TestAddEntry:

    @pytest.mark.asyncio
    async def test_add_is_persisted(self, db_session, subject, service, member):
        change, revision = await service.add_entry(
            db_session, subject.id, member, {"date": "2024-05-01", "height": 4.2}
        )

        stored = await subject_store.get(db_session, subject.id)
        assert stored.revision == revision
        assert revision.startswith("2-")
        assert stored.document["history"] == {"2024": [change.entry.to_document()]}
        assert stored.document["updatedBy"] == MEMBER
        assert stored.document["updatedAt"] == "2024-06-01T12:00:00.000Z"
        assert stored.document["name"] == subject.document["name"]

    @pytest.mark.asyncio
    async def test_duplicate_is_rejected_and_not_stored(self, db_session, subject, service, member):
        await service.add_entry(db_session, subject.id, member, {"date": "2024-05-01T10:00:00Z"})

        with pytest.raises(DuplicateEntryError):
            await service.add_entry(db_session, subject.id, member, {"date": "2024-05-01T10:00:20Z"})

        stored = await subject_store.get(db_session, subject.id)
        assert len(stored.document["history"]["2024"]) == 1

    @pytest.mark.asyncio
    async def test_outsider_is_forbidden(self, db_session, subject, service, outsider):
        with pytest.raises(AuthorizationError):
            await service.add_entry(db_session, subject.id, outsider, {"date": "2024-05-01"})

    @pytest.mark.asyncio
    async def test_owner_is_allowed_even_if_not_listed(self, db_session, project, subject, service, owner):
        project.members = [MEMBER]
        await db_session.commit()

        change, _ = await service.add_entry(db_session, subject.id, owner, {"date": "2024-05-01"})
        assert change.year == "2024"

    @pytest.mark.asyncio
    async def test_unknown_subject(self, db_session, project, service, member):
        with pytest.raises(NotFoundError):
            await service.add_entry(db_session, "subject:missing", member, {"date": "2024-05-01"})

    @pytest.mark.asyncio
    async def test_size_ceiling_leaves_document_unchanged(self, db_session, subject, clock, member):
        """Over the ceiling: 413 error and the stored document is the one from before."""
        service = HistoryService(
            clock=clock, size_guard=SizeGuard(max_bytes=serialized_size(subject.document) + 50)
        )

        with pytest.raises(EntityTooLargeError):
            await service.add_entry(
                db_session, subject.id, member, {"date": "2024-05-01", "notes": "n" * 200}
            )

        stored = await subject_store.get(db_session, subject.id)
        assert stored.revision == subject.revision
        assert stored.document == subject.document


class TestConcurrency:

    @pytest.mark.asyncio
    async def test_same_if_match_twice(self, db_session, subject, service, member):
        """The second add presenting the already-used revision is a conflict."""
        await service.add_entry(
            db_session, subject.id, member, {"date": "2024-05-01"}, expected_revision=subject.revision
        )

        with pytest.raises(RevisionConflictError):
            await service.add_entry(
                db_session, subject.id, member, {"date": "2024-08-01"}, expected_revision=subject.revision
            )

        stored = await subject_store.get(db_session, subject.id)
        assert len(stored.document["history"]["2024"]) == 1

    @pytest.mark.asyncio
    async def test_concurrent_writer_between_read_and_write(self, db_session, subject, clock, member):
        """Both requests read the same revision; the compare-and-swap lets only one through."""
        first = HistoryService(store=SnapshotStore(subject), clock=clock)
        second = HistoryService(store=SnapshotStore(subject), clock=clock)

        await first.add_entry(db_session, subject.id, member, {"date": "2024-05-01"})
        with pytest.raises(RevisionConflictError):
            await second.add_entry(db_session, subject.id, member, {"date": "2024-08-01"})

        stored = await subject_store.get(db_session, subject.id)
        assert [e["date"] for e in stored.document["history"]["2024"]] == ["2024-05-01T00:00:00.000Z"]


class TestEditAndDelete:

    @pytest.mark.asyncio
    async def test_edit_across_years_is_persisted(self, db_session, subject, service, member):
        added, _ = await service.add_entry(db_session, subject.id, member, {"date": "2023-05-01"})

        change, _ = await service.edit_entry(
            db_session, subject.id, member, "2023", added.entry.timestamp, {"date": "2024-05-01"}
        )

        stored = await subject_store.get(db_session, subject.id)
        assert change.year == "2024"
        assert list(stored.document["history"]) == ["2024"]
        assert stored.document["history"]["2024"][0]["updatedBy"] == MEMBER

    @pytest.mark.asyncio
    async def test_delete_last_entry_leaves_empty_history(self, db_session, subject, service, member):
        added, _ = await service.add_entry(db_session, subject.id, member, {"date": "2023-05-01"})

        await service.delete_entry(db_session, subject.id, member, "2023", added.entry.timestamp)

        stored = await subject_store.get(db_session, subject.id)
        assert stored.document["history"] == {}

    @pytest.mark.asyncio
    async def test_delete_unknown_entry(self, db_session, subject, service, member):
        with pytest.raises(NotFoundError):
            await service.delete_entry(db_session, subject.id, member, "2023", 1)


class TestReads:

    @pytest.mark.asyncio
    async def test_list_and_stats(self, db_session, subject, service, member):
        for day, height in (("2023-03-01", 5), ("2023-06-01", 7), ("2024-01-01", 9)):
            await service.add_entry(db_session, subject.id, member, {"date": day, "height": height})

        page, revision = await service.list_history(db_session, subject.id, member, limit=1)
        stats, _ = await service.get_stats(db_session, subject.id, member)

        assert revision.startswith("4-")
        assert {year: len(entries) for year, entries in page.items()} == {"2023": 1, "2024": 1}
        assert page["2023"][0].height == 7
        assert stats.total_entries == 3
        assert stats.by_year["2023"].avg_height == 6

    @pytest.mark.asyncio
    async def test_outsider_cannot_read(self, db_session, subject, service, outsider):
        with pytest.raises(AuthorizationError):
            await service.list_history(db_session, subject.id, outsider)
        with pytest.raises(AuthorizationError):
            await service.get_stats(db_session, subject.id, outsider)
