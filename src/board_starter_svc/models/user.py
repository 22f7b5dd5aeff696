from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import relationship

from board_starter_svc.models.base import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    # SQLite hands timezone-aware columns back as naive values
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class User(Base):
    """
    SQLAlchemy model representing an account.
    Attributes:
        id (int): Unique identifier for the user.
        email (str): Normalized (stripped, lower-cased) unique email address.
        hashed_password (str): bcrypt hash of the user's password.
        email_confirmed (bool): Whether the address has been confirmed.
        access_failed_count (int): Consecutive failed logins since the last success.
        lockout_end (datetime): Logins are refused until this instant, if set.
        external_provider (str): Provider that created the account, or None for password accounts.
    """
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(320), unique=True, index=True, nullable=False)
    hashed_password = Column(String, nullable=False)
    email_confirmed = Column(Boolean, nullable=False, default=False)
    access_failed_count = Column(Integer, nullable=False, default=0)
    lockout_end = Column(DateTime(timezone=True), nullable=True)
    external_provider = Column(String(32), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    reset_codes = relationship("PasswordResetCode", back_populates="user",
                               cascade="all, delete-orphan")


class PasswordResetCode(Base):
    """
    Single-use password reset code. Only the SHA-256 digest of the code is stored.
    """
    __tablename__ = "password_reset_codes"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), index=True, nullable=False)
    code_hash = Column(String(64), nullable=False)
    used = Column(Boolean, nullable=False, default=False)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    user = relationship("User", back_populates="reset_codes")
