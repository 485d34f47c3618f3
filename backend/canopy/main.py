"""
Canopy Backend - FastAPI Application Factory
==============================================

What:  Builds the FastAPI application: logging, lifespan, middleware,
       exception handlers and routers.
Who:   uvicorn (`uvicorn canopy.main:app`) and the test client.

Application Architecture:
    ┌──────────────────────────────────────────────────────────┐
    │                      FastAPI App                         │
    │                                                          │
    │  Middleware:   Request ID → Access Log → GZip → CORS     │
    │                                                          │
    │  Routes:       /api/subjects          (subjects.py)      │
    │                /api/subjects/{id}/history  (history.py)  │
    │                /health                (health.py)        │
    │                                                          │
    │  Exception Handlers:                                     │
    │    Validation→400  Auth→401  Forbidden→403  NotFound→404 │
    │    Duplicate/Revision→409  TooLarge→413  Internal→500    │
    └──────────────────────────────────────────────────────────┘

Lifecycle:
    Startup:  logging, configuration warnings, wait for the database
    Shutdown: dispose the engine
"""

import logging
import sys
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Dict

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse

from canopy import __version__
from canopy.config import settings
from canopy.database import dispose_engine, wait_for_database
from canopy.exceptions import (
    AuthenticationError,
    AuthorizationError,
    CanopyError,
    DuplicateEntryError,
    EntityTooLargeError,
    InternalError,
    NotFoundError,
    RevisionConflictError,
    ValidationError,
)
from canopy.middleware.logging import RequestLoggingMiddleware
from canopy.middleware.request_id import RequestIDMiddleware, request_id_var
from canopy.routes import health, history, subjects

logger = logging.getLogger(__name__)


# ══════════════════════════════════════════════════════════════════════════
# Logging Configuration
# ══════════════════════════════════════════════════════════════════════════

def setup_logging() -> None:
    """Configure the root logger once, to stdout, at the configured level."""
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
        handlers=[logging.StreamHandler(sys.stdout)],
        force=True,
    )

    # canopy.access already logs every request
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)


# ══════════════════════════════════════════════════════════════════════════
# Application Lifespan
# ══════════════════════════════════════════════════════════════════════════

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Startup:
        1. Setup logging
        2. Warn about unsafe configuration (default JWT secret)
        3. Wait for the database (tenacity backoff, raises when exhausted)
    Shutdown:
        1. Dispose the engine's pooled connections
    """
    setup_logging()
    logger.info("Canopy Backend %s starting up...", __version__)

    try:
        settings.validate_required_for_production()
    except ValueError as e:
        logger.warning("Configuration warning: %s", str(e))

    await wait_for_database()

    logger.info(
        "History policy: max document %d bytes, dedup window %d ms",
        settings.history_max_document_bytes,
        settings.history_dedup_window_ms,
    )
    logger.info("Server ready at http://%s:%d", settings.backend_host, settings.backend_port)

    yield

    logger.info("Canopy Backend shutting down...")
    await dispose_engine()
    logger.info("Shutdown complete.")


# ══════════════════════════════════════════════════════════════════════════
# Exception Handlers
# ══════════════════════════════════════════════════════════════════════════

def _error_response(status_code: int, error: str, exc: CanopyError, details: bool = True) -> JSONResponse:
    content = {
        "error": error,
        "message": exc.message,
        "request_id": request_id_var.get(""),
    }
    if details and exc.context:
        content["details"] = exc.context
    return JSONResponse(status_code=status_code, content=content)


def _schema_error(err: Dict[str, Any]) -> Dict[str, str]:
    """Flatten one pydantic error; the location prefix (body, query, path) is dropped."""
    loc = [str(part) for part in err.get("loc", ())]
    if loc and loc[0] in ("body", "query", "path", "header"):
        loc = loc[1:]
    return {"field": ".".join(loc), "message": err.get("msg", ""), "type": err.get("type", "")}


def register_exception_handlers(app: FastAPI) -> None:
    """
    Map each application exception to one status and error code.

        ValidationError        → 400 validation_error
        RequestValidationError → 400 validation_error (body, query or path schema)
        AuthenticationError    → 401 unauthenticated
        AuthorizationError     → 403 forbidden
        NotFoundError          → 404 not_found
        DuplicateEntryError    → 409 duplicate_entry
        RevisionConflictError  → 409 revision_conflict
        EntityTooLargeError    → 413 entity_too_large
        InternalError          → 500 server_error (generic message)
        Exception (fallback)   → 500 server_error (generic message)

    Store and unexpected errors are logged with their context server-side;
    their details never reach the client.
    """

    @app.exception_handler(ValidationError)
    async def handle_validation_error(request: Request, exc: ValidationError):
        logger.warning("[%s] Validation error: %s", request_id_var.get(""), exc.message)
        return _error_response(400, "validation_error", exc)

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation_error(request: Request, exc: RequestValidationError):
        errors = [_schema_error(err) for err in exc.errors()]
        rid = request_id_var.get("")
        logger.warning("[%s] Request validation error: %s", rid, errors)
        return JSONResponse(
            status_code=400,
            content={
                "error": "validation_error",
                "message": f"Invalid request: {errors[0]['message']}" if errors else "Invalid request",
                "details": {"field": errors[0]["field"] if errors else None, "errors": errors},
                "request_id": rid,
            },
        )

    @app.exception_handler(AuthenticationError)
    async def handle_authentication_error(request: Request, exc: AuthenticationError):
        response = _error_response(401, "unauthenticated", exc)
        response.headers["WWW-Authenticate"] = "Bearer"
        return response

    @app.exception_handler(AuthorizationError)
    async def handle_authorization_error(request: Request, exc: AuthorizationError):
        return _error_response(403, "forbidden", exc)

    @app.exception_handler(NotFoundError)
    async def handle_not_found(request: Request, exc: NotFoundError):
        return _error_response(404, "not_found", exc)

    @app.exception_handler(DuplicateEntryError)
    async def handle_duplicate_entry(request: Request, exc: DuplicateEntryError):
        return _error_response(409, "duplicate_entry", exc)

    @app.exception_handler(RevisionConflictError)
    async def handle_revision_conflict(request: Request, exc: RevisionConflictError):
        return _error_response(409, "revision_conflict", exc)

    @app.exception_handler(EntityTooLargeError)
    async def handle_entity_too_large(request: Request, exc: EntityTooLargeError):
        return _error_response(413, "entity_too_large", exc)

    @app.exception_handler(InternalError)
    async def handle_internal_error(request: Request, exc: InternalError):
        rid = request_id_var.get("")
        logger.error("[%s] Internal error: %s | Context: %s", rid, exc.message, exc.context)
        return _error_response(500, "server_error", exc, details=False)

    @app.exception_handler(CanopyError)
    async def handle_canopy_error(request: Request, exc: CanopyError):
        rid = request_id_var.get("")
        logger.error("[%s] Unmapped application error %s: %s", rid, type(exc).__name__, exc.message)
        return JSONResponse(
            status_code=500,
            content={
                "error": "server_error",
                "message": "An internal error occurred. Please try again later.",
                "request_id": rid,
            },
        )

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception):
        rid = request_id_var.get("")
        logger.error("[%s] Unexpected error: %s", rid, str(exc), exc_info=True)
        return JSONResponse(
            status_code=500,
            content={
                "error": "server_error",
                "message": "An unexpected error occurred. Please try again or contact support.",
                "request_id": rid,
            },
        )


# ══════════════════════════════════════════════════════════════════════════
# Application Factory
# ══════════════════════════════════════════════════════════════════════════

def create_app() -> FastAPI:
    app = FastAPI(
        title="Canopy API",
        description=(
            "Observation history ledger for field-data subjects: year-bucketed "
            "measurements with duplicate suppression, optimistic concurrency "
            "and on-demand statistics."
        ),
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    # Executed in reverse order of addition: RequestID → Logging → GZip → CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID", "ETag"],
    )
    app.add_middleware(GZipMiddleware, minimum_size=500)
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(RequestIDMiddleware)

    register_exception_handlers(app)

    app.include_router(subjects.router)
    app.include_router(history.router)
    app.include_router(health.router)

    return app


app = create_app()
