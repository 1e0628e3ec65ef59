"""Fixed-window rate limiting for the authentication endpoints.

Counters are keyed by a policy prefix plus the client identifier and kept in a
``limits`` storage backend: ``memory://`` for a single instance, or the
configured Redis URL to share counters between instances. Both backends drop a
counter once its window has elapsed.
"""

from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass
from functools import lru_cache
from threading import Lock
from typing import Final, Protocol

from fastapi import Request
from limits import RateLimitItem, RateLimitItemPerSecond
from limits.storage import Storage, storage_from_string
from limits.strategies import FixedWindowRateLimiter

from compyy_api.core.errors import RateLimitInfo
from compyy_api.core.settings import settings

logger = logging.getLogger(__name__)

UNKNOWN_CLIENT: Final[str] = "unknown"
MEMORY_STORAGE_URI: Final[str] = "memory://"

# Upper bound of the counting item; the counter is recovered as ceiling - remaining.
_COUNTER_CEILING: Final[int] = 2**31 - 1


@dataclass
class RateLimitEntry:
    """Counter state for one key inside its current window."""

    count: int
    reset_time: float  # epoch seconds


class RateLimitStore(Protocol):
    def increment(self, key: str, window_seconds: int) -> RateLimitEntry:
        """Count one hit for ``key`` and return the updated entry."""
        ...

    def clear(self) -> None:
        ...


@lru_cache(maxsize=None)
def _window_item(window_seconds: int) -> RateLimitItem:
    return RateLimitItemPerSecond(_COUNTER_CEILING, window_seconds)


class LimitsRateLimitStore:
    """Fixed-window counters on top of a ``limits`` storage backend."""

    def __init__(self, storage: Storage) -> None:
        self.storage = storage
        self._strategy = FixedWindowRateLimiter(storage)

    @classmethod
    def from_uri(cls, uri: str) -> LimitsRateLimitStore:
        return cls(storage_from_string(uri))

    def increment(self, key: str, window_seconds: int) -> RateLimitEntry:
        item = _window_item(window_seconds)
        self._strategy.hit(item, key)
        stats = self._strategy.get_window_stats(item, key)
        return RateLimitEntry(
            count=item.amount - stats.remaining,
            reset_time=float(stats.reset_time),
        )

    def clear(self) -> None:
        self.storage.reset()


@dataclass(frozen=True)
class RateLimitPolicy:
    """Attempts allowed per fixed window for one route purpose."""

    name: str
    key_prefix: str
    max_attempts: int
    window_seconds: int


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    info: RateLimitInfo

    @property
    def retry_after(self) -> int:
        return self.info.retry_after


def get_client_identifier(request: Request) -> str:
    """Return the client IP as reported by the proxy headers.

    Requests without ``X-Forwarded-For`` or ``X-Real-IP`` share the
    ``"unknown"`` bucket.
    """
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    real_ip = request.headers.get("x-real-ip")
    if real_ip and real_ip.strip():
        return real_ip.strip()
    return UNKNOWN_CLIENT


class RateLimiter:
    """Applies one :class:`RateLimitPolicy` against a :class:`RateLimitStore`."""

    def __init__(self, policy: RateLimitPolicy, store: RateLimitStore) -> None:
        self.policy = policy
        self.store = store

    def key_for(self, client_id: str) -> str:
        return f"{self.policy.key_prefix}{client_id}"

    def hit(self, client_id: str) -> RateLimitDecision:
        """Count a request from ``client_id`` and decide whether it may proceed.

        Store failures are logged and the request is let through.
        """
        limit = self.policy.max_attempts
        try:
            entry = self.store.increment(self.key_for(client_id), self.policy.window_seconds)
        except Exception:
            logger.error(
                "Rate limit store failed for policy %s; allowing request",
                self.policy.name,
                exc_info=True,
            )
            reset_ms = int((time.time() + self.policy.window_seconds) * 1000)
            return RateLimitDecision(True, RateLimitInfo(limit, limit, reset_ms))

        remaining = max(0, limit - entry.count)
        reset_ms = int(entry.reset_time * 1000)
        if entry.count > limit:
            retry_after = max(1, math.ceil(entry.reset_time - time.time()))
            logger.warning(
                "Rate limit exceeded for policy %s (client=%s, count=%d)",
                self.policy.name,
                client_id,
                entry.count,
            )
            return RateLimitDecision(False, RateLimitInfo(limit, remaining, reset_ms, retry_after))
        return RateLimitDecision(True, RateLimitInfo(limit, remaining, reset_ms))

    def check(self, request: Request) -> RateLimitDecision | None:
        """Return a rejection for ``request`` or None when it may proceed."""
        decision = self.hit(get_client_identifier(request))
        return None if decision.allowed else decision


def storage_uri() -> str:
    """Return the ``limits`` storage URI selected by ``RATE_LIMIT_BACKEND``."""
    backend = settings.rate_limit_backend.lower()
    if backend == "redis":
        return settings.redis_url
    if backend != "memory":
        logger.warning("Unknown RATE_LIMIT_BACKEND %r; falling back to memory", backend)
    return MEMORY_STORAGE_URI


AUTH_POLICY: Final[RateLimitPolicy] = RateLimitPolicy(
    name="auth",
    key_prefix="auth-",
    max_attempts=settings.auth_rate_limit_attempts,
    window_seconds=settings.auth_rate_limit_window_seconds,
)
PASSWORD_CHANGE_POLICY: Final[RateLimitPolicy] = RateLimitPolicy(
    name="password-change",
    key_prefix="password-change-",
    max_attempts=settings.password_change_rate_limit_attempts,
    window_seconds=settings.password_change_rate_limit_window_seconds,
)

_STORE: RateLimitStore | None = None
_STORE_LOCK = Lock()


def get_rate_limit_store() -> RateLimitStore:
    """Return the process-wide rate limit store, creating it on first use."""
    global _STORE
    with _STORE_LOCK:
        if _STORE is None:
            uri = storage_uri()
            logger.info("Using %s rate limit storage", uri.split("://", 1)[0])
            _STORE = LimitsRateLimitStore.from_uri(uri)
        return _STORE


def get_auth_rate_limiter() -> RateLimiter:
    return RateLimiter(AUTH_POLICY, get_rate_limit_store())


def get_password_change_rate_limiter() -> RateLimiter:
    return RateLimiter(PASSWORD_CHANGE_POLICY, get_rate_limit_store())
