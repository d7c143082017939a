"""
CSRF token issuance.

API (JSON):
    GET /api/csrf/generate – issue a single-use token for the bearer's user
"""

from fastapi import APIRouter, Depends

from src.clickmemory.auth import get_csrf_service, get_current_identity
from src.clickmemory.csrf import CsrfTokenService
from src.clickmemory.identity import Identity

router = APIRouter()


@router.get("/api/csrf/generate")
def generate_csrf(
    identity: Identity = Depends(get_current_identity),
    csrf_service: CsrfTokenService = Depends(get_csrf_service),
) -> dict:
    """Return a fresh CSRF token. 401 without a valid bearer, 503 if storage fails."""
    token = csrf_service.issue(identity.id)
    return {
        "csrfToken": token,
        "user": {"id": identity.id, "email": identity.email},
    }
