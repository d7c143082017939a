"""Constants and small helpers shared by the test modules."""

from datetime import datetime, timedelta

import httpx

# Bearer credentials understood by the mocked identity provider.
ALICE_TOKEN = "alice-access-token"
BOB_TOKEN = "bob-access-token"
SLOW_TOKEN = "slow-access-token"
UNREACHABLE_TOKEN = "unreachable-access-token"

ALICE = {"id": "2f6c1d1e-alice", "email": "alice@example.com"}
BOB = {"id": "7a9b3c4d-bob", "email": "bob@example.com"}

_USERS = {ALICE_TOKEN: ALICE, BOB_TOKEN: BOB}

CSRF_TTL = timedelta(minutes=30)


def auth_headers(token: str = ALICE_TOKEN, csrf: str | None = None) -> dict:
    headers = {"Authorization": f"Bearer {token}"}
    if csrf is not None:
        headers["X-CSRF-Token"] = csrf
    return headers


class FakeClock:
    """Callable clock returning a naive UTC datetime that only moves on advance()."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2026, 1, 15, 12, 0, 0)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


def supabase_handler(request: httpx.Request) -> httpx.Response:
    """Minimal stand-in for Supabase Auth's /auth/v1/user and /auth/v1/health."""
    if request.url.path == "/auth/v1/health":
        return httpx.Response(200, json={"name": "GoTrue"})

    credential = request.headers.get("Authorization", "").removeprefix("Bearer ")
    if credential == SLOW_TOKEN:
        raise httpx.ReadTimeout("timed out", request=request)
    if credential == UNREACHABLE_TOKEN:
        raise httpx.ConnectError("connection refused", request=request)

    user = _USERS.get(credential)
    if user is None:
        return httpx.Response(401, json={"code": 401, "msg": "invalid JWT"})
    return httpx.Response(200, json={**user, "aud": "authenticated", "role": "authenticated"})
