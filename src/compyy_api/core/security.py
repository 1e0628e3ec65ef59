"""Password hashing and signed token helpers."""

from __future__ import annotations

import hashlib
import logging
import secrets
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any

import bcrypt
from jose import JWTError, jwt

from compyy_api.core.settings import settings

logger = logging.getLogger(__name__)

EMAIL_CONFIRM_PURPOSE = "email-confirm"

# bcrypt only looks at the first 72 bytes of its input.
_BCRYPT_MAX_BYTES = 72


@dataclass(frozen=True)
class SessionClaims:
    """Identity extracted from a verified session token."""

    user_id: str
    email: str


def hash_password(password: str) -> str:
    """Return a bcrypt hash of ``password``."""
    salt = bcrypt.gensalt(rounds=settings.bcrypt_rounds)
    return bcrypt.hashpw(password.encode("utf-8")[:_BCRYPT_MAX_BYTES], salt).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    """Return True if ``password`` matches the stored bcrypt hash."""
    try:
        return bcrypt.checkpw(
            password.encode("utf-8")[:_BCRYPT_MAX_BYTES],
            password_hash.encode("utf-8"),
        )
    except ValueError:
        logger.warning("Stored password hash is not a valid bcrypt hash")
        return False


def _encode(claims: dict[str, Any], lifetime: timedelta) -> str:
    issued_at = datetime.now(UTC)
    to_encode = dict(claims)
    to_encode["iat"] = int(issued_at.timestamp())
    to_encode["exp"] = int((issued_at + lifetime).timestamp())
    encoded: str = jwt.encode(to_encode, settings.secret_key, algorithm=settings.jwt_algorithm)
    return encoded


def _decode(token: str) -> dict[str, Any] | None:
    try:
        payload: dict[str, Any] = jwt.decode(
            token,
            settings.secret_key,
            algorithms=[settings.jwt_algorithm],
        )
    except JWTError:
        return None
    except Exception:  # fail closed on anything the JWT library did not anticipate
        logger.warning("Unexpected error while decoding token", exc_info=True)
        return None
    return payload


def create_session_token(user_id: str, email: str) -> str:
    """Mint a session token valid for the configured session lifetime."""
    return _encode(
        {"sub": user_id, "email": email},
        timedelta(seconds=settings.session_token_expire_seconds),
    )


def verify_session_token(token: str | None) -> SessionClaims | None:
    """Check signature and expiry of a session token.

    Returns None for every kind of failure so callers can never mistake a
    broken token for an authenticated one.
    """
    if not token:
        return None
    payload = _decode(token)
    if payload is None or "purpose" in payload:
        return None
    subject = payload.get("sub")
    email = payload.get("email")
    if not isinstance(subject, str) or not subject or not isinstance(email, str):
        return None
    return SessionClaims(user_id=subject, email=email)


def create_email_confirm_token(user_id: str, email: str) -> str:
    """Mint the token embedded in the email verification link."""
    return _encode(
        {"sub": user_id, "email": email, "purpose": EMAIL_CONFIRM_PURPOSE},
        timedelta(hours=settings.email_confirm_token_expire_hours),
    )


def verify_email_confirm_token(token: str | None) -> SessionClaims | None:
    if not token:
        return None
    payload = _decode(token)
    if payload is None or payload.get("purpose") != EMAIL_CONFIRM_PURPOSE:
        return None
    subject = payload.get("sub")
    email = payload.get("email")
    if not isinstance(subject, str) or not isinstance(email, str):
        return None
    return SessionClaims(user_id=subject, email=email)


def generate_reset_token() -> str:
    """Return a fresh URL-safe password reset token."""
    return secrets.token_urlsafe(32)


def hash_token(raw_token: str) -> str:
    """Return the SHA-256 hex digest stored in place of a raw token."""
    return hashlib.sha256(raw_token.encode("utf-8")).hexdigest()
