"""Request payload validation and input sanitization.

These checks are defense in depth. Pattern-based injection detection has
false negatives and false positives; the real SQL injection defense is the
parameterized queries issued by SQLAlchemy.
"""

from __future__ import annotations

import json
import re
from collections.abc import Iterable, Mapping
from typing import Any, Final

from compyy_api.core.errors import PayloadValidationError

MAX_SANITIZED_LENGTH: Final[int] = 1000
MAX_EMAIL_LENGTH: Final[int] = 320

_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0B\x0C\x0E-\x1F\x7F]")

_EMAIL_PATTERN = re.compile(
    r"^[a-zA-Z0-9.!#$%&'*+/=?^_`{|}~-]+"
    r"@[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?"
    r"(?:\.[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?)*$"
)

_SQL_PATTERNS: Final[tuple[re.Pattern[str], ...]] = (
    re.compile(r"\b(SELECT|INSERT|UPDATE|DELETE|DROP|CREATE|ALTER|EXEC|UNION|SCRIPT)\b", re.I),
    re.compile(r"(--|#|/\*|\*/)"),
    re.compile(r"\b(OR|AND)\s+\w+\s*=\s*\w+", re.I),
    re.compile(r"('|(\\x27)|(\\x2D\\x2D))", re.I),
)


def sanitize_input(value: str) -> str:
    """Strip control characters, trim whitespace and cap the length."""
    return _CONTROL_CHARS.sub("", value).strip()[:MAX_SANITIZED_LENGTH]


def validate_email(email: str) -> bool:
    """Return True if ``email`` matches a conservative address grammar."""
    return len(email) <= MAX_EMAIL_LENGTH and _EMAIL_PATTERN.match(email) is not None


def contains_sql_injection(text: str) -> bool:
    """Return True if ``text`` contains a common SQL injection marker."""
    return any(pattern.search(text) for pattern in _SQL_PATTERNS)


def _serialize(body: Any) -> str:
    return json.dumps(body, separators=(",", ":"), ensure_ascii=False)


def validate_json_payload(
    body: Any,
    max_size: int = 1024,
    allowed_fields: Iterable[str] = (),
    skip_scan_fields: Iterable[str] = (),
    *,
    scan: bool = True,
) -> None:
    """Check size, suspicious content and field names of a decoded JSON body.

    With ``scan=False`` only size, shape and field names are checked. Routes that
    take free-form names or passwords (register, login, change-password) use that, since the patterns reject
    ordinary values such as "O'Brien".

    Raises:
        PayloadValidationError: on the first failing check.
    """
    try:
        serialized = _serialize(body)
    except (TypeError, ValueError) as err:
        raise PayloadValidationError("Invalid JSON format") from err

    if len(serialized) > max_size:
        raise PayloadValidationError("Request payload too large")

    if scan:
        skipped = set(skip_scan_fields)
        scanned = body
        if skipped and isinstance(body, Mapping):
            scanned = {key: value for key, value in body.items() if key not in skipped}
        if contains_sql_injection(_serialize(scanned)):
            raise PayloadValidationError("Invalid request content")

    if not isinstance(body, Mapping):
        raise PayloadValidationError("Invalid JSON format")

    allowed = set(allowed_fields)
    if allowed and any(field not in allowed for field in body):
        raise PayloadValidationError("Unexpected fields in request")


def require_fields(body: Mapping[str, Any], fields: Mapping[str, tuple[str, int]]) -> None:
    """Enforce presence, string type and maximum length for ``fields``.

    ``fields`` maps a body key to ``(label, max_length)``; the label is used in
    the "is required" message.
    """
    for name, (label, _) in fields.items():
        if not body.get(name):
            raise PayloadValidationError(f"{label} is required")
    for name in fields:
        if not isinstance(body[name], str):
            raise PayloadValidationError("Invalid field types")
    for name, (_, max_length) in fields.items():
        if len(body[name]) > max_length:
            raise PayloadValidationError("Field length exceeds maximum allowed")


def optional_string(body: Mapping[str, Any], name: str, max_length: int) -> str | None:
    """Return a sanitized optional string field, or None when absent or blank."""
    value = body.get(name)
    if value is None:
        return None
    if not isinstance(value, str):
        raise PayloadValidationError("Invalid field types")
    if len(value) > max_length:
        raise PayloadValidationError("Field length exceeds maximum allowed")
    return sanitize_input(value) or None


def normalize_email(raw: str) -> str:
    """Lowercase, sanitize and validate an email address."""
    email = sanitize_input(raw.lower())
    if not validate_email(email):
        raise PayloadValidationError("Please enter a valid email address")
    return email
