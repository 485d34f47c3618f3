"""
Canopy Backend - Shared Schemas
=================================

What:  The camelCase base model plus the error and health response bodies
       used by every router.
Why:   Stored documents are camelCase; the API mirrors them so a client sees
       the same keys in a response that it would find in the store.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """
    Base for request/response models exchanged in camelCase.

    populate_by_name lets services build models with snake_case keywords
    while clients keep sending and receiving camelCase.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


class ErrorResponse(BaseModel):
    """
    What:  Error body returned by every exception handler.

    Example:
        {
            "error": "duplicate_entry",
            "message": "A similar history entry already exists for this date",
            "details": {"year": "2024", "existing_timestamp": 1714557600000},
            "request_id": "550e8400-e29b-41d4-a716-446655440000"
        }
    """
    error: str = Field(description="Machine-readable error code")
    message: str = Field(description="Human-readable error description")
    details: Optional[dict] = Field(default=None, description="Additional error context")
    request_id: Optional[str] = Field(default=None, description="Request correlation ID")


class HealthResponse(BaseModel):
    """Returned by GET /health for container probes and load balancers."""
    status: str = Field(description="Overall service status: healthy or unhealthy")
    version: str = Field(description="Application version")
    database: str = Field(description="Database connectivity: connected, disconnected")
    uptime_seconds: float = Field(description="Seconds since service started")
