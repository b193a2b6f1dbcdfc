"""
FastAPI Middleware for the Training Tracker API

Provides CORS configuration, request logging, cache headers and global
error handling.
"""

import os
import time
import logging
from datetime import datetime, timezone
from typing import Callable, List, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.base import BaseHTTPMiddleware

from access_policy import AccessDenied, Unauthenticated
from config_manager import ConfigurationError
from database.repositories import DuplicateEntityError, EntityNotFoundError, RepositoryError
from database.training_service import InputValidationError
from security_logger import get_security_logger
from text_utils import sanitize_for_logging

logger = logging.getLogger(__name__)

# Default allowed origins for localhost development
DEFAULT_CORS_ORIGINS = [
    "http://localhost:3000",
    "http://localhost:5173",
    "http://localhost:8080",
    "http://127.0.0.1:3000",
    "http://127.0.0.1:5173",
    "http://127.0.0.1:8080",
]

CORS_METHODS = ["GET", "POST", "PUT", "DELETE", "OPTIONS"]
CORS_EXPOSE_HEADERS = ["X-Request-ID", "X-Processing-Time-MS", "Content-Disposition"]


def resolve_cors_origins(configured: Optional[List[str]] = None) -> List[str]:
    """Pick allowed origins: CORS_ORIGINS env, then config, then localhost defaults"""
    cors_origins_env = os.getenv("CORS_ORIGINS", "")
    if cors_origins_env:
        return [origin.strip() for origin in cors_origins_env.split(",") if origin.strip()]
    if configured:
        return list(configured)
    return list(DEFAULT_CORS_ORIGINS)


def setup_cors(app: FastAPI, configured_origins: Optional[List[str]] = None) -> None:
    """Configure CORS middleware for the application.

    Credentials are allowed because the session lives in a cookie, so
    origins are always an explicit list.
    """
    app.add_middleware(
        CORSMiddleware,
        allow_origins=resolve_cors_origins(configured_origins),
        allow_credentials=True,
        allow_methods=CORS_METHODS,
        allow_headers=["*"],
        expose_headers=CORS_EXPOSE_HEADERS,
    )


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Middleware for logging all requests with sanitized inputs."""

    async def dispatch(self, request: Request, call_next: Callable):
        """Process request and log details."""
        start_time = time.time()
        request_id = request.headers.get("X-Request-ID", str(time.time_ns()))

        request.state.request_id = request_id
        request.state.start_time = start_time

        source_ip = request.client.host if request.client else ""
        security = get_security_logger()
        security.clear_request_context()
        security.set_request_context(request_id=request_id, source_ip=source_ip)

        sanitized_path = sanitize_for_logging(str(request.url.path))
        logger.info(
            "Request: method=%s path=%s request_id=%s",
            request.method,
            sanitized_path,
            request_id,
        )

        try:
            response = await call_next(request)

            processing_time_ms = int((time.time() - start_time) * 1000)

            response.headers["X-Request-ID"] = request_id
            response.headers["X-Processing-Time-MS"] = str(processing_time_ms)

            logger.info(
                "Response: status=%d processing_time_ms=%d request_id=%s",
                response.status_code,
                processing_time_ms,
                request_id,
            )
            return response

        except Exception as exc:
            processing_time_ms = int((time.time() - start_time) * 1000)
            logger.error(
                "Request failed: error=%s processing_time_ms=%d request_id=%s",
                sanitize_for_logging(str(exc)),
                processing_time_ms,
                request_id,
            )
            raise


class NoStoreMiddleware(BaseHTTPMiddleware):
    """Mark every /api/ response as uncacheable (data is per-session)."""

    async def dispatch(self, request: Request, call_next: Callable):
        response = await call_next(request)
        if request.url.path.startswith("/api/"):
            response.headers["Cache-Control"] = "no-store"
        return response


def create_error_response(
    code: str,
    message: str,
    status_code: int = 500,
    field: str = None,
    suggestion: str = None,
    detail: str = None,
) -> JSONResponse:
    """Create a standardized error response.

    Args:
        code: Error code for programmatic handling
        message: Human-readable message
        status_code: HTTP status code
        field: Field that caused the error (optional)
        suggestion: How to fix the error (optional)
        detail: Underlying error message for 500s (optional)

    Returns:
        JSONResponse with standardized error format
    """
    error_detail = {
        "code": code,
        "message": message,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }

    if field:
        error_detail["field"] = field
    if suggestion:
        error_detail["suggestion"] = suggestion
    if detail:
        error_detail["detail"] = detail

    return JSONResponse(status_code=status_code, content={"error": error_detail})


def _validation_field(exc: RequestValidationError) -> Optional[str]:
    errors = exc.errors()
    if not errors:
        return None
    loc = [str(part) for part in errors[0].get("loc", ()) if part not in ("body", "query", "path", "form")]
    return ".".join(loc) or None


def _loggable_input(field: Optional[str], value) -> str:
    """Scalar input values only; passwords and whole bodies are never logged"""
    if value is None or isinstance(value, (dict, list)):
        return ""
    if field and "password" in field.lower():
        return ""
    return str(value)


def error_response_for(request: Request, exc: Exception) -> JSONResponse:
    """Map an exception to the standardized error response.

    Args:
        request: FastAPI request object
        exc: Exception that was raised

    Returns:
        Standardized error response
    """
    request_id = getattr(request.state, "request_id", "unknown")

    if isinstance(exc, AccessDenied):
        code = "UNAUTHENTICATED" if isinstance(exc, Unauthenticated) else "FORBIDDEN"
        logger.warning(
            "Access denied: code=%s capability=%s request_id=%s",
            code,
            exc.capability.value if exc.capability else "-",
            request_id,
        )
        return create_error_response(code=code, message=exc.message, status_code=exc.status_code)

    if isinstance(exc, InputValidationError):
        get_security_logger().log_validation_failure(
            field=exc.field or "",
            error_code="VALIDATION_ERROR",
            input_value="",
            source=request.url.path,
            additional_context={'message': exc.message},
        )
        return create_error_response(
            code="VALIDATION_ERROR",
            message=exc.message,
            status_code=400,
            field=exc.field,
            suggestion=exc.suggestion,
        )

    if isinstance(exc, RequestValidationError):
        first = exc.errors()[0] if exc.errors() else {}
        field = _validation_field(exc)
        get_security_logger().log_validation_failure(
            field=field or "",
            error_code="VALIDATION_ERROR",
            input_value=_loggable_input(field, first.get("input")),
            source=request.url.path,
            additional_context={'message': str(first.get("msg", ""))},
        )
        return create_error_response(
            code="VALIDATION_ERROR",
            message=str(first.get("msg", "Invalid request")),
            status_code=400,
            field=field,
        )

    if isinstance(exc, EntityNotFoundError):
        return create_error_response(code="NOT_FOUND", message=str(exc), status_code=404)

    if isinstance(exc, DuplicateEntityError):
        return create_error_response(code="CONFLICT", message=str(exc), status_code=409)

    if isinstance(exc, ConfigurationError):
        return create_error_response(
            code="CONFIGURATION_ERROR",
            message="Service configuration is invalid. Please contact administrator.",
            status_code=503,
        )

    if isinstance(exc, StarletteHTTPException):
        return create_error_response(
            code=f"HTTP_{exc.status_code}",
            message=exc.detail if isinstance(exc.detail, str) else str(exc.detail),
            status_code=exc.status_code,
        )

    if isinstance(exc, RepositoryError):
        logger.error(
            "Repository error: message=%s request_id=%s",
            sanitize_for_logging(str(exc)),
            request_id,
        )

    # Internal admin tool: surface the (sanitized) message to the caller
    return create_error_response(
        code="INTERNAL_ERROR",
        message="Server error",
        status_code=500,
        detail=sanitize_for_logging(str(exc)),
    )


async def domain_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handler for the application's own exception types."""
    return error_response_for(request, exc)


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Handler for HTTP exceptions."""
    request_id = getattr(request.state, "request_id", "unknown")

    logger.warning(
        "HTTP exception: status=%d detail=%s request_id=%s",
        exc.status_code,
        sanitize_for_logging(str(exc.detail)),
        request_id,
    )
    return error_response_for(request, exc)


async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Global exception handler for unhandled errors."""
    request_id = getattr(request.state, "request_id", "unknown")

    logger.error(
        "Unhandled exception: type=%s message=%s request_id=%s",
        type(exc).__name__,
        sanitize_for_logging(str(exc)),
        request_id,
    )
    return error_response_for(request, exc)


def setup_exception_handlers(app: FastAPI) -> None:
    """Configure exception handlers for the application."""
    for exc_class in (
        AccessDenied,
        InputValidationError,
        RequestValidationError,
        RepositoryError,
        ConfigurationError,
    ):
        app.add_exception_handler(exc_class, domain_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(Exception, global_exception_handler)
