"""
ORM models for the ClickMemory API.

Tables (2):
    CsrfToken    – single-use anti-forgery token, stored as a SHA-256 hash
    UserApiKey   – long-lived key used by the browser extension

User accounts live with the identity provider; ``user_id`` columns hold the
provider's opaque user id and are not foreign keys.
"""

import uuid
from datetime import datetime, timezone


def _utcnow() -> datetime:
    """Return the current UTC time as a naive datetime (timezone info stripped).

    Replaces the deprecated datetime.utcnow() while keeping stored values
    consistent (naive UTC datetimes in SQLite).
    """
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _new_id() -> str:
    return str(uuid.uuid4())


from sqlalchemy import Boolean, DateTime, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from src.clickmemory.database import Base


class CsrfToken(Base):
    """One outstanding CSRF token. Deleted when consumed or once expired."""

    __tablename__ = "csrf_token"
    __table_args__ = (
        # Lookup on validate: WHERE user_id=? AND token_hash=?
        Index("ix_csrf_token_user_hash", "user_id", "token_hash"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    token_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=_utcnow
    )
    expires_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, index=True)


class UserApiKey(Base):
    """API key handed to the browser extension (``sk_live_`` + 64 chars)."""

    __tablename__ = "user_api_key"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    user_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    api_key: Mapped[str] = mapped_column(String(72), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(50), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    last_used_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=_utcnow
    )
    expires_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
