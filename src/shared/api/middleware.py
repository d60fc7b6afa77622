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

from src.core import (
    ApplicationException,
    PermissionDeniedException,
    ResourceNotFoundException,
    ValidationException,
    ConflictException,
    AccountLockedException,
    AuthenticationException,
    AppendOnlyViolationException,
    PersistenceException,
)
from src.shared.infrastructure.logging import get_context_logger, get_logger

logger = get_logger(__name__)


# Most specific first; the first isinstance match wins
EXCEPTION_STATUS_CODES = (
    (PermissionDeniedException, status.HTTP_403_FORBIDDEN),
    (AccountLockedException, status.HTTP_423_LOCKED),
    (AuthenticationException, status.HTTP_401_UNAUTHORIZED),
    (ResourceNotFoundException, status.HTTP_404_NOT_FOUND),
    (ValidationException, status.HTTP_400_BAD_REQUEST),
    (ConflictException, status.HTTP_409_CONFLICT),
    (AppendOnlyViolationException, status.HTTP_409_CONFLICT),
    (PersistenceException, status.HTTP_500_INTERNAL_SERVER_ERROR),
)


def status_code_for(exc: ApplicationException) -> int:
    for exc_type, code in EXCEPTION_STATUS_CODES:
        if isinstance(exc, exc_type):
            return code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


class CorrelationIDMiddleware(BaseHTTPMiddleware):
    """
    Adds correlation ID to requests for tracing.

    Correlation IDs are essential for tracing requests through
    distributed systems and linking logs.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        # Get existing correlation ID or generate new one
        correlation_id = request.headers.get("X-Correlation-ID", str(uuid.uuid4()))

        # Store in request state for access in endpoints
        request.state.correlation_id = correlation_id

        # Add to response header
        response = await call_next(request)
        response.headers["X-Correlation-ID"] = correlation_id
        return response


class LoggingMiddleware(BaseHTTPMiddleware):
    """
    Logs all requests and responses.

    Request bodies are never logged; they may carry passwords or codes.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_logger = get_context_logger(__name__, getattr(request.state, "correlation_id", None))
        start_time = time.perf_counter()

        request_logger.info(
            "Request started",
            extra={
                "method": request.method,
                "path": request.url.path,
                "client": request.client.host if request.client else None
            }
        )

        try:
            response = await call_next(request)
        except Exception as e:
            request_logger.error(
                "Request failed",
                extra={
                    "method": request.method,
                    "path": request.url.path,
                    "error": str(e),
                    "response_time_ms": int((time.perf_counter() - start_time) * 1000)
                }
            )
            raise

        request_logger.info(
            "Request completed",
            extra={
                "method": request.method,
                "path": request.url.path,
                "status_code": response.status_code,
                "response_time_ms": int((time.perf_counter() - start_time) * 1000)
            }
        )
        return response


async def application_exception_handler(request: Request, exc: ApplicationException) -> JSONResponse:
    """
    Map the application exception taxonomy to HTTP responses.

    Persistence failures are opaque: the body carries only the operation
    name and the correlation id.
    """
    correlation_id = getattr(request.state, "correlation_id", "unknown")
    status_code = status_code_for(exc)

    log_extra = {
        "correlation_id": correlation_id,
        "path": request.url.path,
        "method": request.method,
        "error_type": type(exc).__name__,
        "status_code": status_code,
    }
    if status_code >= 500:
        logger.error("Request failed with application error", extra={**log_extra, "error_message": exc.message})
        content = {"detail": exc.message, "correlation_id": correlation_id}
    else:
        logger.info("Request rejected", extra=log_extra)
        content = {"detail": exc.message, "details": exc.details, "correlation_id": correlation_id}

    return JSONResponse(status_code=status_code, content=content)


async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """
    Global exception handler for unhandled exceptions.

    Returns consistent error responses for all exceptions.
    """
    correlation_id = getattr(request.state, "correlation_id", "unknown")

    logger.error(
        "Unhandled exception",
        extra={
            "correlation_id": correlation_id,
            "path": request.url.path,
            "method": request.method,
            "error_type": type(exc).__name__,
            "error_message": str(exc)
        }
    )

    # Don't expose internal details in production
    is_dev = getattr(getattr(request.app.state, "settings", None), "environment", None) == "development"

    return JSONResponse(
        status_code=500,
        content={
            "detail": "Internal server error",
            "correlation_id": correlation_id,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "debug_info": str(exc) if is_dev else None
        }
    )
