import httpx
import pytest
from fastapi.testclient import TestClient
from sqlalchemy.exc import OperationalError

from src.clickmemory import config, identity
from src.clickmemory.database import get_db
from src.clickmemory.identity import IdentityVerifier, SupabaseIdentityProvider, get_identity_verifier
from src.clickmemory.main import app


def _configure_provider(monkeypatch):
    monkeypatch.setattr(config, "SUPABASE_URL", "https://project.supabase.co")
    monkeypatch.setattr(config, "SUPABASE_ANON_KEY", "anon")
    monkeypatch.setattr(config, "SUPABASE_SERVICE_ROLE_KEY", "service")


def test_health_returns_200_when_configured(client, monkeypatch):
    _configure_provider(monkeypatch)
    response = client.get("/health")
    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "healthy"
    assert body["services"] == {
        "environment": "healthy",
        "database": "healthy",
        "identity_provider": "healthy",
    }
    assert body["errors"] == []


def test_health_reports_missing_env_vars(client, monkeypatch):
    _configure_provider(monkeypatch)
    monkeypatch.setattr(config, "SUPABASE_SERVICE_ROLE_KEY", None)
    response = client.get("/health")
    assert response.status_code == 503
    body = response.json()
    assert body["services"]["environment"] == "unhealthy"
    assert "SUPABASE_SERVICE_ROLE_KEY" in body["errors"][0]


def test_health_reports_database_failure(client, monkeypatch):
    _configure_provider(monkeypatch)

    class _DeadSession:
        def execute(self, *args, **kwargs):
            raise OperationalError("SELECT 1", {}, Exception("could not connect to server"))

    app.dependency_overrides[get_db] = lambda: _DeadSession()
    response = client.get("/health")
    assert response.status_code == 503
    body = response.json()
    assert body["services"]["database"] == "unhealthy"
    assert "could not connect" not in response.text


def test_health_reports_unreachable_identity_provider(client, monkeypatch):
    _configure_provider(monkeypatch)

    def _refuse(request):
        raise httpx.ConnectError("connection refused", request=request)

    http = httpx.Client(base_url="https://project.supabase.co", transport=httpx.MockTransport(_refuse))
    down = IdentityVerifier(SupabaseIdentityProvider("https://project.supabase.co", "k", client=http))
    app.dependency_overrides[get_identity_verifier] = lambda: down
    response = client.get("/health")
    assert response.status_code == 503
    body = response.json()
    assert body["services"]["identity_provider"] == "unhealthy"
    assert body["services"]["database"] == "healthy"
    assert "Identity provider is unreachable" in body["errors"]
    down.provider.close()


def test_health_reports_unconfigured_identity_provider(client, monkeypatch):
    monkeypatch.setattr(config, "SUPABASE_URL", None)
    monkeypatch.setattr(identity, "_verifier", None)
    app.dependency_overrides.pop(get_identity_verifier)
    response = client.get("/health")
    assert response.status_code == 503
    assert response.json()["services"]["identity_provider"] == "unhealthy"


def test_production_refuses_to_start_without_provider_config(monkeypatch):
    monkeypatch.setattr(config, "IS_PROD", True)
    monkeypatch.setattr(config, "SUPABASE_URL", None)
    with pytest.raises(RuntimeError, match="SUPABASE_URL"):
        with TestClient(app):
            pass


def test_development_starts_without_provider_config(monkeypatch):
    monkeypatch.setattr(config, "IS_PROD", False)
    monkeypatch.setattr(config, "SUPABASE_URL", None)
    with TestClient(app) as c:
        assert c.app.state.csrf_sweeper.running
