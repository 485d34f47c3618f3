"""
Canopy Backend - Application Package
=====================================

What: Field-data API for project-owned observation subjects (trees, plots,
      stations) and the year-bucketed history ledger embedded in each one.
Who:  Imported by uvicorn (canopy.main:app), Alembic, and pytest.

Architecture Note:
    ┌─────────────────────────────────────┐
    │           Routes (API Layer)        │  ← HTTP concerns only
    ├─────────────────────────────────────┤
    │         Services (Orchestration)    │  ← load, authorize, write back
    ├─────────────────────────────────────┤
    │      Ledger (Pure Domain Logic)     │  ← buckets, dedup, stats, size
    ├─────────────────────────────────────┤
    │       Models & Schemas (Data)       │  ← SQLAlchemy ORM + Pydantic
    ├─────────────────────────────────────┤
    │        Database (Persistence)       │  ← Async SQLAlchemy sessions
    └─────────────────────────────────────┘

    The ledger package never touches the database or HTTP. Services feed it a
    copy of the stored document and persist whatever it hands back.
"""

__version__ = "1.0.0"
