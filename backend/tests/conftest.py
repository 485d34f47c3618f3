"""
Canopy Backend - Test Configuration (conftest.py)
===================================================

What:  Shared pytest fixtures for the whole suite.
How:   A temporary SQLite database (aiosqlite) stands in for PostgreSQL;
       tables are created before and dropped after every test that uses it.

Fixture Hierarchy:
    Function-scoped:
    ├── database:     create_all / drop_all on the application engine
    ├── db_session:   an AsyncSession on that engine
    ├── project:      a project owned by OWNER with MEMBER as member
    ├── subject:      a subject in that project with an empty history
    ├── clock:        FakeClock; each call is one second after the previous
    ├── service:      HistoryService wired to the fake clock
    └── test_client:  HTTPX AsyncClient on the app (fake clock installed)
"""

import os
import tempfile
from datetime import datetime, timedelta, timezone

# Override settings BEFORE any canopy import: the engine is built at import
_test_dir = tempfile.mkdtemp(prefix="canopy_test_")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{os.path.join(_test_dir, 'test.db')}"
os.environ["JWT_SECRET"] = "test-secret-not-for-production-use-only-0123456789"
os.environ["LOG_LEVEL"] = "WARNING"

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from canopy.auth import Actor, issue_token
from canopy.database import Base, async_session_factory, engine
from canopy.models import Project
from canopy.services.history_service import HistoryService
from canopy.services.subject_store import subject_store

OWNER = "user:owner"
MEMBER = "user:member"
OUTSIDER = "user:outsider"
PROJECT_ID = "project:oaks"


# ══════════════════════════════════════════════════════════════════════════
# Helpers
# ══════════════════════════════════════════════════════════════════════════

class FakeClock:
    """Deterministic clock: returns `start`, then advances one second per call."""

    def __init__(self, start: datetime, step: timedelta = timedelta(seconds=1)):
        self.current = start
        self.step = step

    def __call__(self) -> datetime:
        now = self.current
        self.current = now + self.step
        return now


def auth_headers(user_id: str) -> dict:
    return {"Authorization": f"Bearer {issue_token(user_id)}"}


def subject_document(**overrides) -> dict:
    document = {
        "projectId": PROJECT_ID,
        "name": "Old oak",
        "species": "Quercus robur",
        "description": "",
        "height": 12.5,
        "diameter": 0.8,
        "health": "good",
        "location": {"latitude": 48.85, "longitude": 2.35, "name": "Park gate"},
        "history": {},
        "createdBy": MEMBER,
        "createdAt": "2023-01-01T00:00:00.000Z",
        "updatedAt": "2023-01-01T00:00:00.000Z",
    }
    document.update(overrides)
    return document


# ══════════════════════════════════════════════════════════════════════════
# Database Fixtures
# ══════════════════════════════════════════════════════════════════════════

@pytest_asyncio.fixture
async def database():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    # Pooled connections must not outlive this test's event loop
    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(database):
    async with async_session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def project(db_session):
    project = Project(id=PROJECT_ID, name="Oak survey", owner_id=OWNER, members=[OWNER, MEMBER])
    db_session.add(project)
    await db_session.commit()
    return project


@pytest_asyncio.fixture
async def subject(db_session, project):
    """A committed subject with an empty history, as a Versioned."""
    created = await subject_store.create(db_session, PROJECT_ID, subject_document())
    await db_session.commit()
    return created


# ══════════════════════════════════════════════════════════════════════════
# Domain Fixtures
# ══════════════════════════════════════════════════════════════════════════

@pytest.fixture
def clock():
    return FakeClock(datetime(2024, 6, 1, 12, 0, 0, tzinfo=timezone.utc))


@pytest.fixture
def service(clock):
    return HistoryService(clock=clock)


@pytest.fixture
def member():
    return Actor(user_id=MEMBER)


@pytest.fixture
def owner():
    return Actor(user_id=OWNER)


@pytest.fixture
def outsider():
    return Actor(user_id=OUTSIDER)


# ══════════════════════════════════════════════════════════════════════════
# HTTP Client
# ══════════════════════════════════════════════════════════════════════════

@pytest_asyncio.fixture
async def test_client(database, project, clock, monkeypatch):
    """
    HTTPX AsyncClient routed straight into the app (no server, no lifespan).

    The route-level service singletons get the fake clock so entry
    timestamps are predictable.
    """
    from canopy.main import app
    from canopy.services.history_service import history_service
    from canopy.services.subject_service import subject_service

    monkeypatch.setattr(history_service, "clock", clock)
    monkeypatch.setattr(subject_service, "clock", clock)

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
