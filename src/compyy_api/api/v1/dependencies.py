"""Shared API dependencies for authentication, rate limiting and payload checks."""

from __future__ import annotations

import json
import logging
from collections.abc import Awaitable, Callable, Iterable
from typing import Annotated, Any

from fastapi import Depends, Request, Response
from sqlalchemy.orm import Session

from compyy_api.core.errors import (
    AuthenticationError,
    PayloadValidationError,
    RateLimitExceededError,
)
from compyy_api.core.settings import settings
from compyy_api.db.session import get_db
from compyy_api.models import User
from compyy_api.services.auth_service import AuthService
from compyy_api.services.email import EmailSender, get_email_sender
from compyy_api.services.rate_limiter import (
    RateLimiter,
    get_auth_rate_limiter,
    get_client_identifier,
    get_password_change_rate_limiter,
)
from compyy_api.services.validation import validate_json_payload

logger = logging.getLogger(__name__)

# Type alias for database session dependency
SessionDep = Annotated[Session, Depends(get_db)]
EmailSenderDep = Annotated[EmailSender, Depends(get_email_sender)]


def get_auth_service(db: SessionDep, email_sender: EmailSenderDep) -> AuthService:
    return AuthService(db, email_sender)


AuthServiceDep = Annotated[AuthService, Depends(get_auth_service)]


def get_session_token(request: Request) -> str | None:
    """Return the session token from the cookie, or from a bearer header."""
    token = request.cookies.get(settings.session_cookie_name)
    if token:
        return token
    authorization = request.headers.get("authorization", "")
    scheme, _, credentials = authorization.partition(" ")
    if scheme.lower() == "bearer" and credentials.strip():
        return credentials.strip()
    return None


def get_current_user(request: Request, service: AuthServiceDep) -> User:
    """Get the user behind the request's session token.

    Raises:
        AuthenticationError: If no token is present, it fails verification, or
            the account it names no longer exists.
    """
    token = get_session_token(request)
    if token is None:
        raise AuthenticationError("No authentication token found")
    user = service.get_user_by_token(token)
    if user is None:
        logger.warning("Rejected invalid session token for %s", request.url.path)
        raise AuthenticationError("Invalid or expired token")
    return user


# Type alias for current user dependency
CurrentUserDep = Annotated[User, Depends(get_current_user)]


def _enforce(limiter: RateLimiter, request: Request, response: Response) -> None:
    decision = limiter.hit(get_client_identifier(request))
    if not decision.allowed:
        raise RateLimitExceededError(decision.info)
    # Error responses raised later in the request pick the headers up from request.state.
    request.state.rate_limit_info = decision.info
    response.headers.update(decision.info.as_headers())


def auth_rate_limit(
    request: Request,
    response: Response,
    limiter: Annotated[RateLimiter, Depends(get_auth_rate_limiter)],
) -> None:
    """Apply the shared login/register/password-reset policy."""
    _enforce(limiter, request, response)


def password_change_rate_limit(
    request: Request,
    response: Response,
    limiter: Annotated[RateLimiter, Depends(get_password_change_rate_limiter)],
) -> None:
    """Apply the stricter password change policy."""
    _enforce(limiter, request, response)


def json_payload(
    max_size: int,
    allowed_fields: Iterable[str] = (),
    skip_scan_fields: Iterable[str] = (),
    *,
    scan: bool = True,
) -> Callable[[Request], Awaitable[dict[str, Any]]]:
    """Build a dependency that decodes and screens a JSON object body."""
    allowed = tuple(allowed_fields)
    skipped = tuple(skip_scan_fields)

    async def _dependency(request: Request) -> dict[str, Any]:
        raw = await request.body()
        # Whitespace is not counted against max_size; only refuse to parse absurd bodies.
        if len(raw) > max_size * 4:
            raise PayloadValidationError("Request payload too large")
        try:
            body = json.loads(raw or b"null")
        except (UnicodeDecodeError, json.JSONDecodeError) as err:
            raise PayloadValidationError("Invalid JSON format") from err
        validate_json_payload(body, max_size, allowed, skipped, scan=scan)
        return body

    return _dependency
