"""Application error taxonomy and the JSON error envelope.

Every error raised by the auth pipeline derives from :class:`AppError` and
carries an HTTP status plus a message that is safe to show to clients. The
handlers registered by :func:`register_exception_handlers` turn them into
``{"success": false, "error": ...}`` responses.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)

GENERIC_ERROR_MESSAGE = "Something went wrong. Please try again."


class AppError(Exception):
    """Base class for errors that map onto an HTTP response."""

    status_code: int = status.HTTP_400_BAD_REQUEST
    default_message: str = "Bad request"

    def __init__(self, message: str | None = None, *, status_code: int | None = None) -> None:
        self.message = message or self.default_message
        if status_code is not None:
            self.status_code = status_code
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        return {"success": False, "error": self.message}

    def headers(self) -> dict[str, str] | None:
        return None


class PayloadValidationError(AppError):
    """Malformed, oversized or disallowed request payload."""

    default_message = "Invalid request"


class AuthenticationError(AppError):
    """Missing, invalid or expired token, or wrong credentials."""

    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "Authentication required"


class NotFoundError(AppError):
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "Not found"


class ConflictError(AppError):
    """Unique value already taken. Reported as 400 for client compatibility."""

    default_message = "Resource already exists"


@dataclass(frozen=True)
class RateLimitInfo:
    """Numbers reported to clients in ``X-RateLimit-*`` headers."""

    limit: int
    remaining: int
    reset_ms: int
    retry_after: int = 0

    def as_headers(self) -> dict[str, str]:
        return {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(self.reset_ms),
        }


class RateLimitExceededError(AppError):
    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    default_message = "Too many attempts. Please try again later."

    def __init__(self, info: RateLimitInfo, message: str | None = None) -> None:
        super().__init__(message)
        self.info = info

    @property
    def retry_after(self) -> int:
        return self.info.retry_after

    def to_dict(self) -> dict[str, Any]:
        payload = super().to_dict()
        payload["retryAfter"] = self.retry_after
        return payload

    def headers(self) -> dict[str, str]:
        return {"Retry-After": str(self.retry_after), **self.info.as_headers()}


def error_response(message: str, status_code: int) -> JSONResponse:
    """Build the standard error envelope."""
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "error": message},
    )


async def _app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    if exc.status_code >= status.HTTP_500_INTERNAL_SERVER_ERROR:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    headers = exc.headers()
    if headers is None:
        info = getattr(request.state, "rate_limit_info", None)
        if isinstance(info, RateLimitInfo):
            headers = info.as_headers()
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_dict(),
        headers=headers,
    )


async def _request_validation_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    errors = exc.errors()
    message = "Invalid request"
    if errors:
        first = errors[0]
        location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
        message = f"{location}: {first.get('msg')}" if location else str(first.get("msg"))
    return error_response(message, status.HTTP_400_BAD_REQUEST)


async def _unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error(
        "Unhandled error on %s %s", request.method, request.url.path, exc_info=exc
    )
    return error_response(GENERIC_ERROR_MESSAGE, status.HTTP_500_INTERNAL_SERVER_ERROR)


def register_exception_handlers(app: FastAPI) -> None:
    """Install the JSON envelope handlers on ``app``."""
    app.add_exception_handler(AppError, _app_error_handler)
    app.add_exception_handler(RequestValidationError, _request_validation_handler)
    app.add_exception_handler(Exception, _unhandled_error_handler)
