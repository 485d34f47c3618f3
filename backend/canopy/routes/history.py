"""
Canopy Backend - History Route Handlers
=========================================

What:  The /api/subjects/{subject_id}/history endpoints.
How:   Thin handlers: parse the request, call HistoryService, shape the
       response and set the ETag header to the subject's current revision.

Route Inventory:
    POST    /api/subjects/{id}/history                    add an entry (201)
    GET     /api/subjects/{id}/history                    list (year, offset, limit)
    GET     /api/subjects/{id}/history/stats              statistics (year)
    PUT     /api/subjects/{id}/history/{year}/{timestamp} edit an entry
    DELETE  /api/subjects/{id}/history/{year}/{timestamp} delete an entry

Optimistic concurrency:
    Mutations accept an optional `If-Match` header carrying the revision the
    client last saw. Without it the revision read at the start of the
    request is used. Either way a concurrent write answers 409.

Pagination:
    offset/limit apply inside EACH year bucket, not across years.
"""

import logging
from dataclasses import asdict
from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, Header, Query, Response
from sqlalchemy.ext.asyncio import AsyncSession

from canopy.auth import Actor, get_current_actor
from canopy.config import settings
from canopy.database import get_db_session
from canopy.schemas.common import ErrorResponse
from canopy.schemas.history import (
    HistoryEntryCreate,
    HistoryEntryMutationResponse,
    HistoryEntryOut,
    HistoryEntryPatch,
    HistoryStatsResponse,
    MessageResponse,
    history_page,
)
from canopy.services.history_service import history_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/subjects/{subject_id}/history", tags=["History"])

COMMON_ERRORS = {
    401: {"description": "Missing or invalid bearer token", "model": ErrorResponse},
    403: {"description": "Not a member of the subject's project", "model": ErrorResponse},
    404: {"description": "Subject or entry not found", "model": ErrorResponse},
}
WRITE_ERRORS = {
    **COMMON_ERRORS,
    400: {"description": "Invalid field value", "model": ErrorResponse},
    409: {"description": "Duplicate entry or stale revision", "model": ErrorResponse},
    413: {"description": "Subject document would exceed the size ceiling", "model": ErrorResponse},
}


@router.post(
    "",
    status_code=201,
    response_model=HistoryEntryMutationResponse,
    response_model_exclude_unset=True,
    responses=WRITE_ERRORS,
    summary="Add a history entry",
    description=(
        "Appends an observation to the subject's history. The entry lands in the "
        "bucket of its date's year. An entry whose date is within 60 seconds of "
        "another entry of that year is rejected with 409."
    ),
)
async def add_history_entry(
    subject_id: str,
    body: HistoryEntryCreate,
    response: Response,
    if_match: Optional[str] = Header(default=None),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db_session),
) -> HistoryEntryMutationResponse:
    change, revision = await history_service.add_entry(
        db=db,
        subject_id=subject_id,
        actor=actor,
        payload=body.model_dump(),
        expected_revision=if_match,
    )
    response.headers["ETag"] = revision
    return HistoryEntryMutationResponse(
        message="History entry added",
        entry=HistoryEntryOut.from_entry(change.entry),
        year=change.year,
    )


@router.get(
    "",
    response_model=Dict[str, List[HistoryEntryOut]],
    response_model_exclude_unset=True,
    responses=COMMON_ERRORS,
    summary="List history entries by year",
    description=(
        "Returns {year: [entries]} with entries newest first. offset and limit "
        "are applied inside each year bucket independently."
    ),
)
async def list_history(
    subject_id: str,
    response: Response,
    year: Optional[str] = Query(default=None, description="Only this year bucket"),
    offset: int = Query(default=0, ge=0, description="Entries to skip in each bucket"),
    limit: int = Query(
        default=settings.history_page_limit,
        ge=1,
        le=settings.history_page_limit_max,
        description="Max entries returned from each bucket",
    ),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db_session),
) -> Dict[str, List[HistoryEntryOut]]:
    buckets, revision = await history_service.list_history(
        db=db,
        subject_id=subject_id,
        actor=actor,
        year=year,
        offset=offset,
        limit=limit,
    )
    response.headers["ETag"] = revision
    return history_page(buckets)


# Declared before /{year}/{timestamp} so "stats" is never taken for a year
@router.get(
    "/stats",
    response_model=HistoryStatsResponse,
    response_model_exclude_none=True,
    responses=COMMON_ERRORS,
    summary="History statistics",
    description=(
        "Count, date range, min/max/avg of height and diameter, health label "
        "distribution and, without a year filter, a per-year breakdown."
    ),
)
async def history_stats(
    subject_id: str,
    response: Response,
    year: Optional[str] = Query(default=None, description="Restrict to this year"),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db_session),
) -> HistoryStatsResponse:
    stats, revision = await history_service.get_stats(
        db=db, subject_id=subject_id, actor=actor, year=year
    )
    response.headers["ETag"] = revision
    return HistoryStatsResponse.model_validate(asdict(stats))


@router.put(
    "/{year}/{timestamp}",
    response_model=HistoryEntryMutationResponse,
    response_model_exclude_unset=True,
    responses=WRITE_ERRORS,
    summary="Edit a history entry",
    description=(
        "Partial update of the entry addressed by year and timestamp. Fields "
        "sent as null are cleared (except date). Changing the date to another "
        "year moves the entry to that year's bucket; the response names it."
    ),
)
async def edit_history_entry(
    subject_id: str,
    year: str,
    timestamp: str,
    body: HistoryEntryPatch,
    response: Response,
    if_match: Optional[str] = Header(default=None),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db_session),
) -> HistoryEntryMutationResponse:
    change, revision = await history_service.edit_entry(
        db=db,
        subject_id=subject_id,
        actor=actor,
        year=year,
        timestamp=timestamp,
        patch=body.model_dump(exclude_unset=True),
        expected_revision=if_match,
    )
    response.headers["ETag"] = revision
    return HistoryEntryMutationResponse(
        message="History entry updated",
        entry=HistoryEntryOut.from_entry(change.entry),
        year=change.year,
    )


@router.delete(
    "/{year}/{timestamp}",
    response_model=MessageResponse,
    responses={**COMMON_ERRORS, 409: WRITE_ERRORS[409]},
    summary="Delete a history entry",
)
async def delete_history_entry(
    subject_id: str,
    year: str,
    timestamp: str,
    response: Response,
    if_match: Optional[str] = Header(default=None),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db_session),
) -> MessageResponse:
    _, revision = await history_service.delete_entry(
        db=db,
        subject_id=subject_id,
        actor=actor,
        year=year,
        timestamp=timestamp,
        expected_revision=if_match,
    )
    response.headers["ETag"] = revision
    return MessageResponse(message="History entry deleted")
