"""
CSRF protection for the ClickMemory API.

Strategy: server-issued, single-use tokens bound to a user id.
  - GET /api/csrf/generate (bearer-authenticated) issues a fresh random token.
  - Mutating routes require it back in the X-CSRF-Token header
    (see auth.validate_request).
  - A token is deleted the moment it validates, so it cannot be replayed.
  - Tokens expire CSRF_TOKEN_TTL_SECONDS after issue; an expired token is
    deleted when it is presented and by the periodic sweep otherwise.

Only a SHA-256 hash of each token is stored. The raw value exists only in the
response to the generate call.

A user may hold several outstanding tokens (one per open tab, for example);
issuing a new token never invalidates earlier ones.
"""

import asyncio
import hashlib
import hmac
import logging
import secrets
import threading
from collections import defaultdict
from datetime import datetime, timedelta, timezone
from typing import Callable, Protocol

from sqlalchemy import delete
from sqlalchemy.exc import SQLAlchemyError

from src.clickmemory.errors import StorageFailure
from src.clickmemory.models import CsrfToken

logger = logging.getLogger(__name__)

_TOKEN_BYTES = 32  # 256 bits of entropy, 64 hex chars


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode()).hexdigest()


# ── Storage ───────────────────────────────────────────────────────────────────


class TokenStore(Protocol):
    def add(self, user_id: str, token_hash: str, created_at: datetime, expires_at: datetime) -> None: ...

    def consume(self, user_id: str, token_hash: str, now: datetime) -> bool: ...

    def discard_expired(self, user_id: str, token_hash: str, now: datetime) -> int: ...

    def sweep(self, now: datetime) -> int: ...


class SqlTokenStore:
    """
    Durable token store backed by the ``csrf_token`` table.

    ``consume`` is a single conditional DELETE whose row count decides the
    outcome, so concurrent validations of the same token cannot both succeed.
    Every SQLAlchemy error is re-raised as StorageFailure.
    """

    def __init__(self, session_factory):
        self._session_factory = session_factory

    def add(self, user_id, token_hash, created_at, expires_at):
        try:
            with self._session_factory() as db:
                db.add(
                    CsrfToken(
                        user_id=user_id,
                        token_hash=token_hash,
                        created_at=created_at,
                        expires_at=expires_at,
                    )
                )
                db.commit()
        except SQLAlchemyError as exc:
            raise StorageFailure() from exc

    def consume(self, user_id, token_hash, now):
        stmt = delete(CsrfToken).where(
            CsrfToken.user_id == user_id,
            CsrfToken.token_hash == token_hash,
            CsrfToken.expires_at >= now,
        )
        return self._delete(stmt) > 0

    def discard_expired(self, user_id, token_hash, now):
        stmt = delete(CsrfToken).where(
            CsrfToken.user_id == user_id,
            CsrfToken.token_hash == token_hash,
            CsrfToken.expires_at < now,
        )
        return self._delete(stmt)

    def sweep(self, now):
        return self._delete(delete(CsrfToken).where(CsrfToken.expires_at < now))

    def _delete(self, stmt) -> int:
        try:
            with self._session_factory() as db:
                result = db.execute(stmt)
                db.commit()
                return result.rowcount or 0
        except SQLAlchemyError as exc:
            raise StorageFailure() from exc


class MemoryTokenStore:
    """Process-local token store; every access holds the lock."""

    def __init__(self):
        self._tokens: dict[str, list[tuple[str, datetime]]] = defaultdict(list)
        self._lock = threading.Lock()

    def add(self, user_id, token_hash, created_at, expires_at):
        with self._lock:
            self._tokens[user_id].append((token_hash, expires_at))

    def consume(self, user_id, token_hash, now):
        with self._lock:
            entries = self._tokens.get(user_id, [])
            for i, (stored, expires_at) in enumerate(entries):
                if hmac.compare_digest(stored, token_hash) and expires_at >= now:
                    del entries[i]
                    self._drop_if_empty(user_id)
                    return True
            return False

    def discard_expired(self, user_id, token_hash, now):
        with self._lock:
            entries = self._tokens.get(user_id, [])
            kept = [
                (stored, expires_at)
                for stored, expires_at in entries
                if not (hmac.compare_digest(stored, token_hash) and expires_at < now)
            ]
            removed = len(entries) - len(kept)
            if removed:
                self._tokens[user_id] = kept
                self._drop_if_empty(user_id)
            return removed

    def sweep(self, now):
        removed = 0
        with self._lock:
            for user_id in list(self._tokens):
                entries = self._tokens[user_id]
                kept = [(h, exp) for h, exp in entries if exp >= now]
                removed += len(entries) - len(kept)
                self._tokens[user_id] = kept
                self._drop_if_empty(user_id)
        return removed

    def _drop_if_empty(self, user_id: str) -> None:
        if user_id in self._tokens and not self._tokens[user_id]:
            del self._tokens[user_id]


# ── Service ───────────────────────────────────────────────────────────────────


class CsrfTokenService:
    """Issue, validate (and burn) and sweep CSRF tokens."""

    def __init__(
        self,
        store: TokenStore,
        ttl: timedelta,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self._store = store
        self._ttl = ttl
        self._clock = clock

    def issue(self, user_id: str) -> str:
        """
        Return a fresh raw token for *user_id* and store its hash.

        Raises StorageFailure if the record could not be written; in that
        case no token is handed out.
        """
        if not user_id:
            raise ValueError("user_id must be a non-empty string")
        token = secrets.token_hex(_TOKEN_BYTES)
        now = self._clock()
        self._store.add(user_id, hash_token(token), now, now + self._ttl)
        logger.info("csrf_issued user_id=%s", user_id)
        return token

    def validate(self, user_id: str, token: str) -> bool:
        """
        True exactly once for a token issued to *user_id* and not yet expired.

        Every failure (unknown, wrong user, expired, already used, storage
        unreachable) returns False. An expired token is deleted as a side
        effect.
        """
        if not user_id or not token:
            return False
        token_hash = hash_token(token)
        now = self._clock()
        try:
            if self._store.consume(user_id, token_hash, now):
                logger.info("csrf_consumed user_id=%s", user_id)
                return True
            if self._store.discard_expired(user_id, token_hash, now):
                logger.info("csrf_expired user_id=%s", user_id)
            else:
                logger.warning("csrf_rejected user_id=%s", user_id)
        except StorageFailure:
            logger.exception("csrf_validate_storage_failure user_id=%s", user_id)
        return False

    def sweep(self) -> int:
        """Delete every expired token; return how many were removed."""
        return self._store.sweep(self._clock())


class CsrfSweeper:
    """Background task that calls ``service.sweep()`` every *interval* seconds."""

    def __init__(self, service: CsrfTokenService, interval: float):
        self._service = service
        self._interval = interval
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if not self.running:
            self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            await self.run_once()

    async def run_once(self) -> int:
        try:
            removed = await asyncio.to_thread(self._service.sweep)
        except Exception:
            logger.exception("csrf_sweep_failed")
            return 0
        if removed:
            logger.info("csrf_sweep removed=%d", removed)
        return removed
