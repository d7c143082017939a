"""
API key routes for the browser extension.

API (JSON):
    GET    /api/keys           – list the caller's keys (secret omitted)
    POST   /api/keys/generate  – create a key              (bearer + CSRF)
    DELETE /api/keys/{key_id}  – revoke one of the caller's keys (bearer + CSRF)

Key rules:
    - Format: "sk_live_" followed by 64 alphanumeric characters.
    - Name: trimmed, 1–50 characters, defaults to "Chrome Extension".
    - Expiry: API_KEY_TTL_DAYS after creation.
    - At most 5 generations per user per minute (429 beyond that).
"""

import logging
import secrets
import string
from datetime import datetime, timedelta, timezone

from fastapi import APIRouter, Depends
from pydantic import BaseModel, field_validator
from sqlalchemy import select
from sqlalchemy.orm import Session

from src.clickmemory.auth import check_key_rate_limit, get_current_identity, require_csrf
from src.clickmemory.config import API_KEY_TTL_DAYS
from src.clickmemory.database import get_db
from src.clickmemory.errors import NotFound
from src.clickmemory.identity import Identity
from src.clickmemory.models import UserApiKey

router = APIRouter()
logger = logging.getLogger(__name__)

# ── Constants ──────────────────────────────────────────────────────────────────

API_KEY_PREFIX = "sk_live_"
_API_KEY_RANDOM_LENGTH = 64
_API_KEY_ALPHABET = string.ascii_letters + string.digits
_DEFAULT_KEY_NAME = "Chrome Extension"
_NAME_MAX = 50


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def generate_api_key() -> str:
    suffix = "".join(secrets.choice(_API_KEY_ALPHABET) for _ in range(_API_KEY_RANDOM_LENGTH))
    return f"{API_KEY_PREFIX}{suffix}"


# ── Pydantic schemas ───────────────────────────────────────────────────────────


class KeyCreateRequest(BaseModel):
    name: str = _DEFAULT_KEY_NAME

    @field_validator("name")
    @classmethod
    def _name_valid(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Name is required")
        if len(v) > _NAME_MAX:
            raise ValueError(f"Name must be {_NAME_MAX} characters or less")
        return v


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _key_summary(key: UserApiKey) -> dict:
    return {
        "id": key.id,
        "name": key.name,
        "is_active": key.is_active,
        "last_used_at": _iso(key.last_used_at),
        "created_at": _iso(key.created_at),
        "expires_at": _iso(key.expires_at),
    }


# ── API endpoints ──────────────────────────────────────────────────────────────


@router.get("/api/keys")
def list_keys(
    identity: Identity = Depends(get_current_identity),
    db: Session = Depends(get_db),
) -> dict:
    """Return the caller's API keys, newest first, without the key secret."""
    keys = db.scalars(
        select(UserApiKey)
        .where(UserApiKey.user_id == identity.id)
        .order_by(UserApiKey.created_at.desc())
    ).all()
    return {"api_keys": [_key_summary(k) for k in keys]}


@router.post("/api/keys/generate")
def generate_key(
    body: KeyCreateRequest | None = None,
    identity: Identity = Depends(require_csrf),
    db: Session = Depends(get_db),
) -> dict:
    """Create a new API key. The raw key is only ever returned here."""
    check_key_rate_limit(identity.id)

    name = body.name if body else _DEFAULT_KEY_NAME
    now = _utcnow()
    key = UserApiKey(
        user_id=identity.id,
        api_key=generate_api_key(),
        name=name,
        is_active=True,
        created_at=now,
        expires_at=now + timedelta(days=API_KEY_TTL_DAYS),
    )
    db.add(key)
    db.commit()
    db.refresh(key)

    logger.info("api_key_generated user_id=%s key_id=%s", identity.id, key.id)
    return {
        "apiKey": key.api_key,
        "name": key.name,
        "expiresAt": _iso(key.expires_at),
    }


@router.delete("/api/keys/{key_id}")
def delete_key(
    key_id: str,
    identity: Identity = Depends(require_csrf),
    db: Session = Depends(get_db),
) -> dict:
    """Revoke one of the caller's keys; another user's key is reported as 404."""
    key = db.scalars(
        select(UserApiKey).where(
            UserApiKey.id == key_id, UserApiKey.user_id == identity.id
        )
    ).first()
    if key is None:
        raise NotFound("API key not found")

    db.delete(key)
    db.commit()

    logger.info("api_key_deleted user_id=%s key_id=%s", identity.id, key_id)
    return {"message": "API key deleted successfully"}
