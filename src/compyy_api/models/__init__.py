"""SQLAlchemy models for the Compyy API."""

from .password_reset import PasswordResetToken
from .user import User

__all__ = ["PasswordResetToken", "User"]
