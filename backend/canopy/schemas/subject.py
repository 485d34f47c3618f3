"""
Canopy Backend - Subject Request/Response Schemas
===================================================

What:  Pydantic models for the /api/subjects endpoints.
How:   SubjectResponse is validated straight from the stored document plus
       the id and revision columns; routes serialize it with
       response_model_exclude_unset so a document without `history`
       (includeHistory=false) comes back without the key.
"""

from typing import Any, Dict, List, Optional

from pydantic import Field

from canopy.schemas.common import CamelModel
from canopy.schemas.history import HistoryEntryOut


class Location(CamelModel):
    latitude: float
    longitude: float
    name: Optional[str] = None


class SubjectCreate(CamelModel):
    """
    Body of POST /api/subjects.

    projectId and location are optional here and enforced by SubjectService,
    so their absence is a 400 validation_error like every other business rule.
    """
    project_id: Optional[str] = Field(default=None, description="Owning project id")
    name: Optional[str] = None
    species: Optional[str] = None
    description: Optional[str] = None
    height: Optional[float] = None
    diameter: Optional[float] = None
    health: Optional[str] = None
    location: Optional[Location] = None


class SubjectUpdate(CamelModel):
    """
    Body of PUT /api/subjects/{id}. Descriptive fields only.

    There is no `history` field: the ledger is changed through
    the history endpoints, never by replacing the subject.
    """
    name: Optional[str] = None
    species: Optional[str] = None
    description: Optional[str] = None
    height: Optional[float] = None
    diameter: Optional[float] = None
    health: Optional[str] = None
    location: Optional[Location] = None


class SubjectResponse(CamelModel):
    id: str
    revision: str = Field(description="Current revision token (also sent as ETag)")
    project_id: str
    name: Optional[str] = None
    species: Optional[str] = None
    description: Optional[str] = None
    height: Optional[float] = None
    diameter: Optional[float] = None
    health: Optional[str] = None
    location: Optional[Location] = None
    history: Optional[Dict[str, List[HistoryEntryOut]]] = None
    created_by: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    updated_by: Optional[str] = None

    @classmethod
    def from_document(
        cls, subject_id: str, revision: str, document: Dict[str, Any]
    ) -> "SubjectResponse":
        return cls.model_validate({**document, "id": subject_id, "revision": revision})
