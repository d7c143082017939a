"""
Expired CSRF token cleanup: one-shot purge of the persisted token table.

Usage:
    alembic upgrade head                       # run migrations first
    python -m src.clickmemory.scripts.cleanup  # delete expired tokens

The running API already sweeps every CSRF_SWEEP_INTERVAL_SECONDS; this script
is for deployments that run several short-lived workers or want the purge on
an external schedule (cron, platform job). Safe to run at any time.
"""

import logging
from datetime import timedelta

from src.clickmemory.config import CSRF_TOKEN_TTL_SECONDS
from src.clickmemory.csrf import CsrfTokenService, SqlTokenStore
from src.clickmemory.database import SessionLocal

logger = logging.getLogger(__name__)


def run(session_factory=SessionLocal) -> int:
    """Delete every expired token reachable through *session_factory*; return the count."""
    service = CsrfTokenService(
        SqlTokenStore(session_factory),
        ttl=timedelta(seconds=CSRF_TOKEN_TTL_SECONDS),
    )
    removed = service.sweep()
    logger.info("csrf_cleanup removed=%d", removed)
    return removed


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    count = run()
    print(f"Removed {count} expired CSRF token(s).")
