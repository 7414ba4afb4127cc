"""
Centralised error handling — exception hierarchy + FastAPI handlers.

Provides:
    • Domain-specific exception classes
    • Flat JSON error bodies: {"error": <message>, ...}
    • Rate-limit metadata (retryAfterSeconds + Retry-After header)
    • Automatic logging of unhandled errors

Usage:
    from backend.app.core.errors import NotFoundError, RateLimitError

    raise NotFoundError("Location")
    raise RateLimitError("Tomorrow.io request failed (429)", retry_after_seconds=120)
"""

from __future__ import annotations

import logging
import traceback
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from backend.app.core.config import settings

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
# Exception Hierarchy
# ═══════════════════════════════════════════════════════════════════════════

class PoolCareError(Exception):
    """Base exception for all application errors."""

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        *,
        status_code: int = 500,
        error_code: str = "INTERNAL_ERROR",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.error_code = error_code
        self.details = details or {}


class NotFoundError(PoolCareError):
    """Resource not found (404). Not retried."""

    def __init__(self, resource: str, **identifiers: Any):
        super().__init__(
            message=f"{resource} not found",
            status_code=404,
            error_code="NOT_FOUND",
            details={"resource": resource, **identifiers},
        )


class AuthenticationError(PoolCareError):
    """No caller identity on the request (401)."""

    def __init__(self, message: str = "Unauthorized"):
        super().__init__(message=message, status_code=401, error_code="UNAUTHORIZED")


class ForbiddenError(PoolCareError):
    """Caller may not access the resource (403)."""

    def __init__(self, message: str = "Forbidden"):
        super().__init__(message=message, status_code=403, error_code="FORBIDDEN")


class ValidationError(PoolCareError):
    """Input or resource state rejected (400)."""

    def __init__(self, message: str, *, field: Optional[str] = None, **details: Any):
        d = {**details}
        if field:
            d["field"] = field
        super().__init__(
            message=message,
            status_code=400,
            error_code="VALIDATION_ERROR",
            details=d,
        )


class UpstreamError(PoolCareError):
    """Non-transient or unclassified upstream failure (502). Never falls back."""

    def __init__(self, message: str, *, status: Optional[int] = None, **details: Any):
        d = {**details}
        if status is not None:
            d["upstream_status"] = status
        super().__init__(
            message=message,
            status_code=502,
            error_code="UPSTREAM_ERROR",
            details=d,
        )
        self.upstream_status = status


class RateLimitError(PoolCareError):
    """Upstream-imposed rate limit (429). Carries the retry-after hint."""

    def __init__(self, message: str = "Rate limit exceeded", retry_after_seconds: int = 60):
        super().__init__(
            message=message,
            status_code=429,
            error_code="RATE_LIMITED",
            details={"retry_after_seconds": retry_after_seconds},
        )
        self.retry_after_seconds = retry_after_seconds


class ProviderNotConfiguredError(PoolCareError):
    """External provider has no credentials configured (503)."""

    def __init__(self, message: str = "Weather provider not configured"):
        super().__init__(
            message=message,
            status_code=503,
            error_code="PROVIDER_NOT_CONFIGURED",
        )


# ═══════════════════════════════════════════════════════════════════════════
# Error Response Builder
# ═══════════════════════════════════════════════════════════════════════════

def error_body(exc: PoolCareError) -> Dict[str, Any]:
    """JSON body for a domain error."""
    body: Dict[str, Any] = {"error": exc.message}
    if isinstance(exc, RateLimitError):
        body["retryAfterSeconds"] = exc.retry_after_seconds
    return body


def _build_error_response(exc: PoolCareError) -> JSONResponse:
    headers = None
    if isinstance(exc, RateLimitError):
        headers = {"Retry-After": str(exc.retry_after_seconds)}
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(exc),
        headers=headers,
    )


# ═══════════════════════════════════════════════════════════════════════════
# FastAPI Exception Handlers
# ═══════════════════════════════════════════════════════════════════════════

def register_error_handlers(app: FastAPI) -> None:
    """Register all exception handlers on the FastAPI app."""

    @app.exception_handler(PoolCareError)
    async def handle_domain_error(request: Request, exc: PoolCareError):
        level = logging.ERROR if exc.status_code >= 500 else logging.WARNING
        logger.log(
            level,
            "API Error [%s] %s %s: %s | details=%s",
            exc.error_code, request.method, request.url.path,
            exc.message, exc.details,
        )
        return _build_error_response(exc)

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(request: Request, exc: RequestValidationError):
        logger.info("Request validation failed: %s", request.url.path)
        return JSONResponse(
            status_code=400,
            content={"error": "ValidationError", "details": jsonable_encoder(exc.errors())},
        )

    @app.exception_handler(Exception)
    async def handle_unhandled(request: Request, exc: Exception):
        logger.critical(
            "Unhandled exception: %s\n%s",
            exc, traceback.format_exc(),
        )
        message = str(exc) if settings.DEBUG else "Internal server error"
        return JSONResponse(status_code=500, content={"error": message})
