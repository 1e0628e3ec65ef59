"""Account registration, login and credential recovery."""

from __future__ import annotations

import enum
import logging
from datetime import timedelta
from functools import lru_cache
from urllib.parse import urlencode

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from compyy_api.core import security
from compyy_api.core.errors import (
    AuthenticationError,
    ConflictError,
    NotFoundError,
    PayloadValidationError,
)
from compyy_api.core.logging_config import mask_email
from compyy_api.core.settings import settings
from compyy_api.db.time import utcnow
from compyy_api.models import PasswordResetToken, User
from compyy_api.schemas.auth import RegisterRequest
from compyy_api.services.email import (
    EmailSender,
    build_password_reset_email,
    build_verification_email,
    get_email_sender,
)

logger = logging.getLogger(__name__)

INVALID_CREDENTIALS = "Invalid email or password"
INVALID_RESET_TOKEN = "Invalid or expired reset token"
EMAIL_TAKEN = "User with this email already exists"
USERNAME_TAKEN = "Username already taken"


class ConfirmOutcome(str, enum.Enum):
    """Result of following an email confirmation link."""

    EMAIL_VERIFIED = "email-verified"
    ALREADY_VERIFIED = "already-verified"
    MISSING_TOKEN = "missing-token"
    INVALID_TOKEN = "invalid-token"

    @property
    def is_error(self) -> bool:
        return self in (ConfirmOutcome.MISSING_TOKEN, ConfirmOutcome.INVALID_TOKEN)


@lru_cache(maxsize=1)
def _dummy_password_hash() -> str:
    # Compared against when the email is unknown so both login failures cost a bcrypt check.
    return security.hash_password("compyy-dummy-password")


class AuthService:
    """Orchestrates credential state changes on :class:`User` records."""

    def __init__(self, db: Session, email_sender: EmailSender | None = None) -> None:
        self.db = db
        self.email_sender = email_sender or get_email_sender()

    # --- lookups -------------------------------------------------------------------
    def get_user_by_email(self, email: str) -> User | None:
        return self.db.execute(select(User).where(User.email == email)).scalar_one_or_none()

    def username_taken(self, username: str) -> bool:
        taken = self.db.execute(select(User.id).where(User.username == username)).first()
        return taken is not None

    def get_user_by_token(self, token: str | None) -> User | None:
        """Resolve a session token to a live user, or None."""
        claims = security.verify_session_token(token)
        if claims is None:
            return None
        return self.db.get(User, claims.user_id)

    # --- registration and login ------------------------------------------------------
    def register(self, data: RegisterRequest) -> tuple[User, str]:
        """Create an unverified account and mint its first session token."""
        if self.get_user_by_email(data.email) is not None:
            raise ConflictError(EMAIL_TAKEN)
        if data.username and self.username_taken(data.username):
            raise ConflictError(USERNAME_TAKEN)
        _check_password_length(data.password, "Password")

        user = User(
            email=data.email,
            password_hash=security.hash_password(data.password),
            is_verified=False,
            first_name=data.first_name,
            last_name=data.last_name,
            username=data.username,
            school=data.school,
            grade=data.grade,
            subject=data.subject,
        )
        self.db.add(user)
        try:
            self.db.commit()
        except IntegrityError as err:
            self.db.rollback()
            # Lost a race with a concurrent registration; report the constraint that fired.
            message = USERNAME_TAKEN if "username" in str(err.orig).lower() else EMAIL_TAKEN
            raise ConflictError(message) from err
        self.db.refresh(user)

        logger.info("Registered user %s (%s)", user.id, mask_email(user.email))
        return user, security.create_session_token(user.id, user.email)

    def login(self, email: str, password: str) -> tuple[User, str]:
        """Check credentials; unknown email and wrong password fail identically."""
        user = self.get_user_by_email(email)
        if user is None:
            security.verify_password(password, _dummy_password_hash())
            logger.warning("Failed login for unknown account %s", mask_email(email))
            raise AuthenticationError(INVALID_CREDENTIALS)
        if not security.verify_password(password, user.password_hash):
            logger.warning("Failed login for user %s", user.id)
            raise AuthenticationError(INVALID_CREDENTIALS)
        return user, security.create_session_token(user.id, user.email)

    # --- password changes ------------------------------------------------------------
    def change_password(self, user: User, current_password: str, new_password: str) -> None:
        if current_password == new_password:
            raise PayloadValidationError("New password must be different from current password")
        if not security.verify_password(current_password, user.password_hash):
            logger.warning("Password change with wrong current password for user %s", user.id)
            raise PayloadValidationError("Current password is incorrect")
        _check_password_length(new_password, "New password")

        user.password_hash = security.hash_password(new_password)
        self.db.commit()
        logger.info("Password changed for user %s", user.id)

    def initiate_password_reset(self, email: str) -> tuple[User, str] | None:
        """Issue a single-use reset token for ``email``.

        Returns None when no such account exists; callers must not reveal that.
        Any earlier unused tokens of the account are invalidated.
        """
        user = self.get_user_by_email(email)
        if user is None:
            logger.info("Password reset requested for unknown account %s", mask_email(email))
            return None

        now = utcnow()
        self.db.execute(
            update(PasswordResetToken)
            .where(
                PasswordResetToken.user_id == user.id,
                PasswordResetToken.used_at.is_(None),
            )
            .values(used_at=now)
        )
        raw_token = security.generate_reset_token()
        self.db.add(
            PasswordResetToken(
                user_id=user.id,
                token_hash=security.hash_token(raw_token),
                expires_at=now + timedelta(minutes=settings.password_reset_token_expire_minutes),
            )
        )
        self.db.commit()
        logger.info("Password reset token issued for user %s", user.id)
        return user, raw_token

    def _find_usable_reset_token(self, raw_token: str) -> PasswordResetToken:
        if not raw_token:
            raise NotFoundError(INVALID_RESET_TOKEN, status_code=400)
        record = self.db.execute(
            select(PasswordResetToken).where(
                PasswordResetToken.token_hash == security.hash_token(raw_token)
            )
        ).scalar_one_or_none()
        if record is None or not record.is_usable():
            raise NotFoundError(INVALID_RESET_TOKEN, status_code=400)
        return record

    def validate_password_reset_token(self, raw_token: str) -> User:
        """Return the account a still-valid reset token belongs to."""
        record = self._find_usable_reset_token(raw_token)
        user = self.db.get(User, record.user_id)
        if user is None:
            raise NotFoundError(INVALID_RESET_TOKEN, status_code=400)
        return user

    def reset_password(self, raw_token: str, new_password: str) -> User:
        """Consume a reset token and set a new password."""
        record = self._find_usable_reset_token(raw_token)
        _check_password_length(new_password, "Password")
        user = self.db.get(User, record.user_id)
        if user is None:
            raise NotFoundError(INVALID_RESET_TOKEN, status_code=400)

        consumed = self.db.execute(
            update(PasswordResetToken)
            .where(
                PasswordResetToken.id == record.id,
                PasswordResetToken.used_at.is_(None),
            )
            .values(used_at=utcnow())
        )
        if consumed.rowcount != 1:
            self.db.rollback()
            raise NotFoundError(INVALID_RESET_TOKEN, status_code=400)

        user.password_hash = security.hash_password(new_password)
        self.db.commit()
        logger.info("Password reset completed for user %s", user.id)
        return user

    # --- email verification ----------------------------------------------------------
    def confirm_email(self, token: str | None) -> ConfirmOutcome:
        if not token:
            return ConfirmOutcome.MISSING_TOKEN
        claims = security.verify_email_confirm_token(token)
        if claims is None:
            return ConfirmOutcome.INVALID_TOKEN
        user = self.db.get(User, claims.user_id)
        if user is None or user.email != claims.email:
            return ConfirmOutcome.INVALID_TOKEN
        if user.is_verified:
            return ConfirmOutcome.ALREADY_VERIFIED
        user.is_verified = True
        self.db.commit()
        logger.info("Email verified for user %s", user.id)
        return ConfirmOutcome.EMAIL_VERIFIED

    # --- outbound email --------------------------------------------------------------
    async def send_verification_email(self, user_id: str, email: str, first_name: str | None) -> None:
        """Send the confirmation link. Failures are logged, never raised."""
        token = security.create_email_confirm_token(user_id, email)
        confirm_url = f"{settings.api_url.rstrip('/')}/api/v1/auth/confirm?{urlencode({'token': token})}"
        try:
            await self.email_sender.send(build_verification_email(email, first_name, confirm_url))
        except Exception:
            logger.error(
                "Verification email to %s failed", mask_email(email), exc_info=True
            )

    async def send_password_reset_email(
        self, email: str, first_name: str | None, raw_token: str
    ) -> None:
        """Send the reset link. Failures are logged, never raised."""
        reset_url = f"{settings.app_url.rstrip('/')}/reset-password?{urlencode({'token': raw_token})}"
        message = build_password_reset_email(
            email, first_name, reset_url, settings.password_reset_token_expire_minutes
        )
        try:
            await self.email_sender.send(message)
        except Exception:
            logger.error("Password reset email to %s failed", mask_email(email), exc_info=True)


def _check_password_length(password: str, label: str) -> None:
    minimum = settings.password_min_length
    if len(password) < minimum:
        raise PayloadValidationError(f"{label} must be at least {minimum} characters long")
