"""Authentication request and response schemas."""
from __future__ import annotations

from datetime import datetime

from pydantic import Field

from .common import CamelModel


class RegisterRequest(CamelModel):
    """Validated registration input."""

    email: str
    password: str
    first_name: str | None = None
    last_name: str | None = None
    username: str | None = None
    school: str | None = None
    grade: str | None = None
    subject: str | None = None


class LoginRequest(CamelModel):
    email: str
    password: str


class ChangePasswordRequest(CamelModel):
    current_password: str
    new_password: str


class ForgotPasswordRequest(CamelModel):
    email: str


class ResetPasswordRequest(CamelModel):
    token: str
    password: str


class UserResponse(CamelModel):
    """Public view of an account; never includes the password hash."""

    id: str
    email: str
    first_name: str | None = None
    last_name: str | None = None
    username: str | None = None
    school: str | None = None
    grade: str | None = None
    subject: str | None = None
    is_verified: bool
    created_at: datetime
    updated_at: datetime


class UserData(CamelModel):
    user: UserResponse


class UserEnvelope(CamelModel):
    """Envelope returned by register, login and me."""

    success: bool = True
    data: UserData
    message: str | None = Field(None, description="Human-readable outcome")


class ResetTokenData(CamelModel):
    email: str
    first_name: str | None = None


class ResetTokenEnvelope(CamelModel):
    success: bool = True
    data: ResetTokenData
