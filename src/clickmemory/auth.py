"""
Request guards for the ClickMemory API.

Provides:
- get_current_identity: bearer credential only (read routes, CSRF issuance)
- validate_request / require_csrf: bearer credential, then CSRF token
  (every state-changing route)
- get_csrf_service: the shared CsrfTokenService
- In-memory per-user API key generation rate limiter
"""

import logging
import threading
from collections import defaultdict
from datetime import datetime, timedelta, timezone

from fastapi import Depends, Header

from src.clickmemory.config import CSRF_TOKEN_TTL_SECONDS
from src.clickmemory.csrf import CsrfTokenService, SqlTokenStore
from src.clickmemory.database import SessionLocal
from src.clickmemory.errors import CsrfInvalid, CsrfMissing, RateLimited
from src.clickmemory.identity import Identity, IdentityVerifier, get_identity_verifier

logger = logging.getLogger(__name__)

CSRF_HEADER = "X-CSRF-Token"

# ── CSRF service ──────────────────────────────────────────────────────────────

_csrf_service: CsrfTokenService | None = None
_csrf_service_lock = threading.Lock()


def get_csrf_service() -> CsrfTokenService:
    """Return the process-wide CsrfTokenService (durable SQL store)."""
    global _csrf_service
    with _csrf_service_lock:
        if _csrf_service is None:
            _csrf_service = CsrfTokenService(
                SqlTokenStore(SessionLocal),
                ttl=timedelta(seconds=CSRF_TOKEN_TTL_SECONDS),
            )
        return _csrf_service


# ── Guards ────────────────────────────────────────────────────────────────────


def get_current_identity(
    authorization: str | None = Header(default=None),
    verifier: IdentityVerifier = Depends(get_identity_verifier),
) -> Identity:
    """Return the verified Identity or raise 401 (503 if the provider is down)."""
    return verifier.verify(authorization)


def validate_request(
    authorization: str | None,
    csrf_token: str | None,
    verifier: IdentityVerifier,
    csrf_service: CsrfTokenService,
) -> Identity:
    """
    Guard for state-changing routes. Steps run strictly in order:

    1. verify the bearer credential (401 / 503 on failure)
    2. require the CSRF header (403 CsrfMissing)
    3. validate and burn the token for this user (403 CsrfInvalid)

    The CSRF token is never looked at until the identity is known, since
    tokens are scoped to a user id. Callers must not mutate anything before
    this returns.
    """
    identity = verifier.verify(authorization)

    if not csrf_token or not csrf_token.strip():
        logger.warning("csrf_missing user_id=%s", identity.id)
        raise CsrfMissing()

    if not csrf_service.validate(identity.id, csrf_token.strip()):
        raise CsrfInvalid()

    return identity


def require_csrf(
    authorization: str | None = Header(default=None),
    csrf_token: str | None = Header(default=None, alias=CSRF_HEADER),
    verifier: IdentityVerifier = Depends(get_identity_verifier),
    csrf_service: CsrfTokenService = Depends(get_csrf_service),
) -> Identity:
    """
    FastAPI dependency for mutating API routes.

    Requires ``Authorization: Bearer <credential>`` and ``X-CSRF-Token``.
    Add as ``Depends(require_csrf)``; the verified Identity is returned.
    """
    return validate_request(authorization, csrf_token, verifier, csrf_service)


# ── Rate limiter ──────────────────────────────────────────────────────────────

_RATE_WINDOW = 60  # seconds
_RATE_MAX = 5  # max API keys generated per window per user

_key_generations: dict[str, list[float]] = defaultdict(list)
_rate_lock = threading.Lock()


def check_key_rate_limit(user_id: str) -> None:
    """Raise RateLimited (429) if the user has generated too many keys recently."""
    now = datetime.now(timezone.utc).timestamp()
    with _rate_lock:
        attempts = [t for t in _key_generations[user_id] if now - t < _RATE_WINDOW]
        _key_generations[user_id] = attempts
        if len(attempts) >= _RATE_MAX:
            logger.warning("api_key_rate_limited user_id=%s", user_id)
            raise RateLimited()
        attempts.append(now)


def _reset_rate_limits() -> None:
    """Clear all recorded key generations. Used only in tests."""
    with _rate_lock:
        _key_generations.clear()
