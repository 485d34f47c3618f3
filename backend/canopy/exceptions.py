"""
Canopy Backend - Custom Exception Hierarchy
=============================================

What:  Application-specific exceptions for every failure the API reports.
How:   Each exception carries a message and optional context dict.
       Global exception handlers (registered in main.py) map each class to
       exactly one HTTP status and a structured JSON error body.
Who:   Raised by the ledger, services and auth dependency; caught by handlers.

Exception Hierarchy:
    CanopyError (base)
    ├── ValidationError          → 400 Bad Request
    ├── AuthenticationError      → 401 Unauthorized
    ├── AuthorizationError       → 403 Forbidden
    ├── NotFoundError            → 404 Not Found
    ├── DuplicateEntryError      → 409 Conflict (dedup window hit)
    ├── RevisionConflictError    → 409 Conflict (stale revision token)
    ├── EntityTooLargeError      → 413 Payload Too Large
    └── InternalError            → 500 Internal Server Error

None of these are retried inside the application. A RevisionConflictError in
particular means the caller must reload the subject and reapply its change.
"""

from typing import Any, Dict, Optional


class CanopyError(Exception):
    """
    Base exception for all Canopy application errors.

    Attributes:
        message:  User-facing error description (safe to return in API response)
        context:  Additional structured detail
    """

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        context: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.context = context or {}
        super().__init__(self.message)


class ValidationError(CanopyError):
    """
    Raised when a field is missing, malformed or out of range.

    Example: a negative height, an unparseable date, an over-long health label.
    Schema-level problems (wrong JSON types, unknown keys) are raised by
    FastAPI as RequestValidationError and answered with the same 400
    validation_error body; this class covers the business rules.
    """

    def __init__(
        self,
        message: str = "Validation failed",
        field: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        if field:
            ctx["field"] = field
        super().__init__(message=message, context=ctx)
        self.field = field


class AuthenticationError(CanopyError):
    """Raised when the bearer token is missing, malformed or expired."""

    def __init__(
        self,
        message: str = "Authentication required",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class AuthorizationError(CanopyError):
    """Raised when the actor is not allowed to touch the subject or project."""

    def __init__(
        self,
        message: str = "You are not a member of this project",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class NotFoundError(CanopyError):
    """
    Raised when a requested resource does not exist.

    Covers missing subjects, missing projects, and history entries addressed
    by a (year, timestamp) pair that matches nothing.
    """

    def __init__(
        self,
        resource: str = "resource",
        resource_id: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        message = f"The requested {resource} was not found"
        if resource_id:
            message = f"{resource} with ID '{resource_id}' was not found"
        ctx = context or {}
        ctx["resource"] = resource
        if resource_id:
            ctx["resource_id"] = resource_id
        super().__init__(message=message, context=ctx)


class DuplicateEntryError(CanopyError):
    """
    Raised when a history entry collides with an existing one in its year.

    Collision means the dates are closer than the dedup window, or the
    creation timestamps are identical. Nothing is merged or written.
    """

    def __init__(
        self,
        year: str,
        existing_timestamp: Optional[int] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        ctx["year"] = year
        if existing_timestamp is not None:
            ctx["existing_timestamp"] = existing_timestamp
        super().__init__(
            message="A similar history entry already exists for this date",
            context=ctx,
        )
        self.year = year
        self.existing_timestamp = existing_timestamp


class RevisionConflictError(CanopyError):
    """
    Raised when the subject changed between read and write.

    The compare-and-swap in SubjectStore found a different revision than the
    one the caller read. The whole read-modify-write must be repeated.
    """

    def __init__(
        self,
        subject_id: str,
        expected_revision: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        ctx["subject_id"] = subject_id
        if expected_revision:
            ctx["expected_revision"] = expected_revision
        super().__init__(
            message=(
                "The subject was modified by another request. "
                "Reload it and apply your change again."
            ),
            context=ctx,
        )
        self.subject_id = subject_id
        self.expected_revision = expected_revision


class EntityTooLargeError(CanopyError):
    """
    Raised when the serialized subject document would exceed the ceiling.

    The in-memory change is discarded. There is no automatic archival; the
    caller has to delete older entries before adding more.
    """

    def __init__(
        self,
        size: int,
        limit: int,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        ctx["size_bytes"] = size
        ctx["limit_bytes"] = limit
        super().__init__(
            message=(
                "The history of this subject is too large. "
                "Please archive or delete older entries."
            ),
            context=ctx,
        )
        self.size = size
        self.limit = limit


class InternalError(CanopyError):
    """
    Raised when the store or other infrastructure fails.

    Security Note:
        The message returned to the client is always generic. The context
        (driver error type, statement) is logged server-side only.
    """

    def __init__(
        self,
        message: str = "An internal error occurred. Please try again later.",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)
