"""
Pydantic schemas for API request/response models.

Wire field names are camelCase to match the web client.
"""

from .auth import (
    ChangePasswordRequest,
    ForgotPasswordRequest,
    LoginRequest,
    RegisterRequest,
    ResetPasswordRequest,
    ResetTokenEnvelope,
    UserEnvelope,
    UserResponse,
)
from .common import ErrorResponse, MessageResponse

__all__ = [
    "ChangePasswordRequest", "ForgotPasswordRequest", "LoginRequest",
    "RegisterRequest", "ResetPasswordRequest",
    "ResetTokenEnvelope", "UserEnvelope", "UserResponse",
    "ErrorResponse", "MessageResponse",
]
