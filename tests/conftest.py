"""
Shared pytest fixtures for ClickMemory API tests.

Provides:
- db_engine       – in-memory SQLite engine with all tables created
- session_factory – sessionmaker bound to db_engine
- clock           – controllable clock for token expiry
- csrf_service    – CsrfTokenService over the SQL store, using `clock`
- verifier        – IdentityVerifier talking to a mocked Supabase Auth
- client          – FastAPI TestClient with db, verifier and CSRF service overridden
"""

import httpx
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import src.clickmemory.models  # registers all models with Base.metadata  # noqa: F401
from src.clickmemory.auth import _reset_rate_limits, get_csrf_service
from src.clickmemory.csrf import CsrfTokenService, SqlTokenStore
from src.clickmemory.database import Base, get_db
from src.clickmemory.identity import IdentityVerifier, SupabaseIdentityProvider, get_identity_verifier
from src.clickmemory.main import app

from helpers import CSRF_TTL, FakeClock, supabase_handler


@pytest.fixture(autouse=True)
def reset_rate_limiter():
    """Reset the in-memory key-generation counter before every test."""
    _reset_rate_limits()
    yield


@pytest.fixture()
def db_engine():
    # StaticPool ensures all connections from this engine share the SAME
    # in-memory database (critical for SQLite :memory:).
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture()
def session_factory(db_engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=db_engine)


@pytest.fixture()
def clock():
    return FakeClock()


@pytest.fixture()
def csrf_service(session_factory, clock):
    return CsrfTokenService(SqlTokenStore(session_factory), ttl=CSRF_TTL, clock=clock)


@pytest.fixture()
def provider():
    http = httpx.Client(
        base_url="https://project.supabase.co",
        transport=httpx.MockTransport(supabase_handler),
    )
    p = SupabaseIdentityProvider("https://project.supabase.co", "service-role-key", client=http)
    yield p
    p.close()


@pytest.fixture()
def verifier(provider):
    return IdentityVerifier(provider)


@pytest.fixture()
def client(session_factory, csrf_service, verifier):
    def _override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = _override_get_db
    app.dependency_overrides[get_identity_verifier] = lambda: verifier
    app.dependency_overrides[get_csrf_service] = lambda: csrf_service
    with TestClient(app, raise_server_exceptions=True) as c:
        yield c
    app.dependency_overrides.clear()
