"""
Canopy Backend - Access Logging Middleware
============================================

What:  One log line per HTTP request on the `canopy.access` logger.
How:   Times the handler, then logs method, path, status, duration and the
       request id. Writes that produced a new subject revision also log it
       (taken from the ETag header), so a 409 can be traced back to the
       write that won. /health is skipped.

Level by status class:
    5xx → ERROR, 4xx → WARNING (409 conflicts and 413 rejections show up
    here), everything else → INFO.

Request bodies are never logged: history notes are free text written by
field crews.
"""

import logging
import time

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from canopy.middleware.request_id import request_id_var

logger = logging.getLogger("canopy.access")

SKIPPED_PATHS = frozenset({"/health"})
WRITE_METHODS = frozenset({"POST", "PUT", "DELETE"})


def level_for(status: int) -> int:
    if status >= 500:
        return logging.ERROR
    if status >= 400:
        return logging.WARNING
    return logging.INFO


class RequestLoggingMiddleware(BaseHTTPMiddleware):

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        if request.url.path in SKIPPED_PATHS:
            return await call_next(request)

        started = time.perf_counter()
        response = await call_next(request)
        elapsed_ms = (time.perf_counter() - started) * 1000

        rid = request_id_var.get("")
        revision = response.headers.get("ETag") if request.method in WRITE_METHODS else None
        line = f"{request.method} {request.url.path} {response.status_code} {elapsed_ms:.1f}ms [{rid}]"
        if revision:
            line += f" rev={revision}"

        logger.log(
            level_for(response.status_code),
            line,
            extra={
                "request_id": rid,
                "method": request.method,
                "path": request.url.path,
                "status": response.status_code,
                "duration_ms": round(elapsed_ms, 2),
                "revision": revision,
            },
        )
        return response
