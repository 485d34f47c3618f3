"""
Canopy Backend - Subject Route Handlers
=========================================

What:  Create, read, update and delete the subjects that own a history.
How:   Thin handlers over SubjectService. Every response that carries the
       subject also carries its revision in the ETag header.

Route Inventory:
    POST    /api/subjects        create with an empty history (201)
    GET     /api/subjects/{id}   read (includeHistory, year)
    PUT     /api/subjects/{id}   update descriptive fields
    DELETE  /api/subjects/{id}   delete with its history (204)
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, Query, Response
from sqlalchemy.ext.asyncio import AsyncSession

from canopy.auth import Actor, get_current_actor
from canopy.database import get_db_session
from canopy.schemas.common import ErrorResponse
from canopy.schemas.subject import SubjectCreate, SubjectResponse, SubjectUpdate
from canopy.services.subject_service import subject_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/subjects", tags=["Subjects"])

ERRORS = {
    400: {"description": "Invalid field value", "model": ErrorResponse},
    401: {"description": "Missing or invalid bearer token", "model": ErrorResponse},
    403: {"description": "Not allowed on this project or subject", "model": ErrorResponse},
    404: {"description": "Subject or project not found", "model": ErrorResponse},
}


@router.post(
    "",
    status_code=201,
    response_model=SubjectResponse,
    response_model_exclude_unset=True,
    responses=ERRORS,
    summary="Create a subject",
)
async def create_subject(
    body: SubjectCreate,
    response: Response,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db_session),
) -> SubjectResponse:
    created = await subject_service.create(db=db, actor=actor, payload=body)
    response.headers["ETag"] = created.revision
    return SubjectResponse.from_document(created.id, created.revision, created.document)


@router.get(
    "/{subject_id}",
    response_model=SubjectResponse,
    response_model_exclude_unset=True,
    responses=ERRORS,
    summary="Get a subject",
    description=(
        "Returns the subject document. includeHistory=false omits the history; "
        "year keeps only that year's bucket."
    ),
)
async def get_subject(
    subject_id: str,
    response: Response,
    include_history: bool = Query(default=True, alias="includeHistory"),
    year: Optional[str] = Query(default=None),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db_session),
) -> SubjectResponse:
    subject = await subject_service.get(
        db=db,
        actor=actor,
        subject_id=subject_id,
        include_history=include_history,
        year=year,
    )
    response.headers["ETag"] = subject.revision
    return SubjectResponse.from_document(subject.id, subject.revision, subject.document)


@router.put(
    "/{subject_id}",
    response_model=SubjectResponse,
    response_model_exclude_unset=True,
    responses={
        **ERRORS,
        409: {"description": "Stale revision", "model": ErrorResponse},
        413: {"description": "Subject document would exceed the size ceiling", "model": ErrorResponse},
    },
    summary="Update a subject's descriptive fields",
)
async def update_subject(
    subject_id: str,
    body: SubjectUpdate,
    response: Response,
    if_match: Optional[str] = Header(default=None),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db_session),
) -> SubjectResponse:
    saved = await subject_service.update(
        db=db,
        actor=actor,
        subject_id=subject_id,
        changes=body.model_dump(by_alias=True, exclude_unset=True),
        expected_revision=if_match,
    )
    response.headers["ETag"] = saved.revision
    return SubjectResponse.from_document(saved.id, saved.revision, saved.document)


@router.delete(
    "/{subject_id}",
    status_code=204,
    responses={**ERRORS, 409: {"description": "Stale revision", "model": ErrorResponse}},
    summary="Delete a subject and its history",
)
async def delete_subject(
    subject_id: str,
    if_match: Optional[str] = Header(default=None),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db_session),
) -> Response:
    await subject_service.delete(
        db=db, actor=actor, subject_id=subject_id, expected_revision=if_match
    )
    return Response(status_code=204)
