"""Password reset token model for account recovery."""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from compyy_api.db.session import Base
from compyy_api.db.time import as_utc, utcnow

if TYPE_CHECKING:
    from .user import User


class PasswordResetToken(Base):
    """Stores hashed, single-use password reset tokens with expiration."""

    __tablename__ = "password_reset_tokens"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    token_hash: Mapped[str] = mapped_column(String(64), unique=True, nullable=False, index=True)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    used_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )

    user: Mapped[User] = relationship("User", back_populates="password_reset_tokens")

    def is_usable(self, now: datetime | None = None) -> bool:
        """Return True if the token has not been consumed and has not expired."""
        now = now or utcnow()
        return self.used_at is None and as_utc(self.expires_at) > now
