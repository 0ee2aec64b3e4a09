"""
Shared API Middleware
======================

Common middleware and exception handlers for the FastAPI application.
"""

import time
import uuid
from datetime import datetime, timezone
from typing import Callable

from fastapi import Request, Response, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from grievance.core import (
    ApplicationException,
    ValidationException,
    IllegalTransitionException,
    NotReopenableException,
    ReopenWindowExpiredException,
    VersionConflictException,
    ResourceNotFoundException,
    LookupDegradedException,
)
from grievance.shared.infrastructure.logging import get_logger, set_correlation_id

logger = get_logger(__name__)

# Most specific classes first
_STATUS_BY_EXCEPTION = (
    (ResourceNotFoundException, status.HTTP_404_NOT_FOUND),
    (ValidationException, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (IllegalTransitionException, status.HTTP_409_CONFLICT),
    (NotReopenableException, status.HTTP_409_CONFLICT),
    (ReopenWindowExpiredException, status.HTTP_409_CONFLICT),
    (VersionConflictException, status.HTTP_409_CONFLICT),
    (LookupDegradedException, status.HTTP_503_SERVICE_UNAVAILABLE),
)


class CorrelationIDMiddleware(BaseHTTPMiddleware):
    """
    Adds a correlation ID to each request and binds it to the logging context.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        correlation_id = request.headers.get("X-Correlation-ID", str(uuid.uuid4()))
        request.state.correlation_id = correlation_id
        set_correlation_id(correlation_id)

        response = await call_next(request)
        response.headers["X-Correlation-ID"] = correlation_id
        return response


class LoggingMiddleware(BaseHTTPMiddleware):
    """Logs every request with method, path, status and latency."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        start_time = time.perf_counter()

        try:
            response = await call_next(request)
        except Exception as e:
            logger.error(
                "Request failed",
                extra={
                    "method": request.method,
                    "path": request.url.path,
                    "error": str(e),
                    "response_time_ms": int((time.perf_counter() - start_time) * 1000)
                }
            )
            raise

        logger.info(
            "Request completed",
            extra={
                "method": request.method,
                "path": request.url.path,
                "status_code": response.status_code,
                "response_time_ms": int((time.perf_counter() - start_time) * 1000)
            }
        )
        return response


def status_code_for(exc: ApplicationException) -> int:
    """HTTP status for a typed application failure."""
    for exc_type, code in _STATUS_BY_EXCEPTION:
        if isinstance(exc, exc_type):
            return code
    return status.HTTP_400_BAD_REQUEST


async def application_exception_handler(request: Request, exc: ApplicationException) -> JSONResponse:
    """
    Turns typed lifecycle failures into structured, user-facing responses.
    """
    correlation_id = getattr(request.state, "correlation_id", None)
    code = status_code_for(exc)

    logger.info(
        "Request rejected",
        extra={
            "path": request.url.path,
            "error_code": exc.error_code,
            "status_code": code,
        }
    )

    body = exc.to_dict()
    body["correlation_id"] = correlation_id
    return JSONResponse(status_code=code, content=body)


async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """
    Global exception handler for unhandled exceptions.

    Returns consistent error responses for all exceptions.
    """
    correlation_id = getattr(request.state, "correlation_id", "unknown")

    logger.error(
        "Unhandled exception",
        extra={
            "path": request.url.path,
            "method": request.method,
            "error_type": type(exc).__name__,
            "error_message": str(exc)
        }
    )

    is_dev = getattr(getattr(request.app.state, "settings", None), "environment", None) == "development"

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": "internal_error",
            "message": "Internal server error",
            "correlation_id": correlation_id,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "debug_info": str(exc) if is_dev else None
        }
    )
