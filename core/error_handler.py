"""
Error handler — maps exceptions to structured, sanitized JSON responses.

Every error body carries a stable ``code`` distinct from the human
``error`` message. In production the message is replaced by a generic,
type-specific text so internals never leak to clients; the full
exception is always logged server-side together with the request id.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException
from starlette.responses import JSONResponse

from config.settings import get_settings
from core.exceptions import (
    ConfigurationError,
    NotFoundError,
    PlatformError,
    RateLimitExceededError,
    SecurityError,
    UpstreamServiceError,
    ValidationError,
    DatabaseError,
)

logger = logging.getLogger(__name__)


class ErrorType(str, Enum):
    """Coarse error classification used for status codes and safe messages."""

    VALIDATION = "VALIDATION"
    AUTHENTICATION = "AUTHENTICATION"
    AUTHORIZATION = "AUTHORIZATION"
    NOT_FOUND = "NOT_FOUND"
    RATE_LIMIT = "RATE_LIMIT"
    CONFIGURATION = "CONFIGURATION"
    DATABASE = "DATABASE"
    EXTERNAL_SERVICE = "EXTERNAL_SERVICE"
    INTERNAL = "INTERNAL"


STATUS_CODES: dict[ErrorType, int] = {
    ErrorType.VALIDATION: 400,
    ErrorType.AUTHENTICATION: 401,
    ErrorType.AUTHORIZATION: 403,
    ErrorType.NOT_FOUND: 404,
    ErrorType.RATE_LIMIT: 429,
    ErrorType.CONFIGURATION: 500,
    ErrorType.DATABASE: 500,
    ErrorType.EXTERNAL_SERVICE: 503,
    ErrorType.INTERNAL: 500,
}

SAFE_MESSAGES: dict[ErrorType, str] = {
    ErrorType.VALIDATION: "Invalid input provided",
    ErrorType.AUTHENTICATION: "Authentication required",
    ErrorType.AUTHORIZATION: "Access denied",
    ErrorType.NOT_FOUND: "Resource not found",
    ErrorType.RATE_LIMIT: "Too many requests",
    ErrorType.CONFIGURATION: "Service misconfigured",
    ErrorType.DATABASE: "Database operation failed",
    ErrorType.EXTERNAL_SERVICE: "External service unavailable",
    ErrorType.INTERNAL: "Internal server error",
}

_HTTP_STATUS_TYPES: dict[int, ErrorType] = {
    400: ErrorType.VALIDATION,
    401: ErrorType.AUTHENTICATION,
    403: ErrorType.AUTHORIZATION,
    404: ErrorType.NOT_FOUND,
    422: ErrorType.VALIDATION,
    429: ErrorType.RATE_LIMIT,
    503: ErrorType.EXTERNAL_SERVICE,
}


def classify(exc: BaseException) -> ErrorType:
    """Return the ``ErrorType`` for an exception."""
    if isinstance(exc, ValidationError):
        return ErrorType.VALIDATION
    if isinstance(exc, SecurityError):
        return ErrorType.AUTHENTICATION
    if isinstance(exc, NotFoundError):
        return ErrorType.NOT_FOUND
    if isinstance(exc, RateLimitExceededError):
        return ErrorType.RATE_LIMIT
    if isinstance(exc, ConfigurationError):
        return ErrorType.CONFIGURATION
    if isinstance(exc, DatabaseError):
        return ErrorType.DATABASE
    if isinstance(exc, UpstreamServiceError):
        return ErrorType.EXTERNAL_SERVICE
    return ErrorType.INTERNAL


def sanitize_error(
    exc: BaseException,
    *,
    request_id: str | None = None,
    production: bool | None = None,
) -> tuple[int, dict[str, Any]]:
    """Build ``(status_code, body)`` for an exception.

    Development responses include the exception message and details;
    production responses only include the safe message for the type.
    """
    if production is None:
        production = get_settings().is_production

    error_type = classify(exc)
    code = exc.code if isinstance(exc, PlatformError) else "INTERNAL_ERROR"

    if production:
        message = SAFE_MESSAGES[error_type]
    elif isinstance(exc, PlatformError):
        message = exc.message
    else:
        message = str(exc) or SAFE_MESSAGES[error_type]

    body: dict[str, Any] = {
        "error": message,
        "code": code,
        "type": error_type.value,
        "request_id": request_id,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
    if not production and isinstance(exc, PlatformError) and exc.details:
        body["details"] = exc.details

    return STATUS_CODES[error_type], body


def _request_id(request: Request) -> str | None:
    return getattr(request.state, "request_id", None)


def _is_production(request: Request) -> bool:
    settings = getattr(request.app.state, "settings", None) or get_settings()
    return settings.is_production


async def _platform_error_handler(request: Request, exc: PlatformError) -> JSONResponse:
    request_id = _request_id(request)
    status_code, body = sanitize_error(
        exc, request_id=request_id, production=_is_production(request)
    )
    if status_code >= 500:
        logger.error(
            "[%s] %s %s failed: %s (%s)",
            request_id, request.method, request.url.path, exc.message, exc.code,
        )
    else:
        logger.warning(
            "[%s] %s %s rejected: %s (%s)",
            request_id, request.method, request.url.path, exc.message, exc.code,
        )
    return JSONResponse(status_code=status_code, content=body)


async def _http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    error_type = _HTTP_STATUS_TYPES.get(exc.status_code, ErrorType.INTERNAL)
    body = {
        "error": exc.detail,
        "code": f"HTTP_{exc.status_code}",
        "type": error_type.value,
        "request_id": _request_id(request),
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
    return JSONResponse(
        status_code=exc.status_code,
        content=body,
        headers=getattr(exc, "headers", None),
    )


async def _request_validation_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    production = _is_production(request)
    body: dict[str, Any] = {
        "error": SAFE_MESSAGES[ErrorType.VALIDATION],
        "code": "VALIDATION_ERROR",
        "type": ErrorType.VALIDATION.value,
        "request_id": _request_id(request),
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
    if not production:
        body["details"] = {"errors": jsonable_encoder(exc.errors())}
    return JSONResponse(status_code=422, content=body)


async def _unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    request_id = _request_id(request)
    logger.exception(
        "[%s] Unhandled error on %s %s", request_id, request.method, request.url.path
    )
    status_code, body = sanitize_error(
        exc, request_id=request_id, production=_is_production(request)
    )
    return JSONResponse(status_code=status_code, content=body)


def register_exception_handlers(app: FastAPI) -> None:
    """Install the structured error handlers on a FastAPI application."""
    app.add_exception_handler(PlatformError, _platform_error_handler)
    app.add_exception_handler(HTTPException, _http_exception_handler)
    app.add_exception_handler(RequestValidationError, _request_validation_handler)
    app.add_exception_handler(Exception, _unhandled_exception_handler)
