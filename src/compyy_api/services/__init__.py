# src/compyy_api/services/__init__.py
"""Business logic services for the Compyy API."""

from .auth_service import AuthService, ConfirmOutcome
from .email import EmailSender
from .rate_limiter import LimitsRateLimitStore, RateLimiter

__all__ = [
    "AuthService",
    "ConfirmOutcome",
    "EmailSender",
    "RateLimiter",
    "LimitsRateLimitStore",
]
