import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from repairshop.routers import health
from repairshop.tenancy.verifier import VerificationReport


@pytest.fixture
def client_for(monkeypatch):
    def _client(report):
        class Verifier:
            def __init__(self, engine):
                pass

            def verify(self):
                return report

        monkeypatch.setattr(health, "InvariantVerifier", Verifier)
        app = FastAPI()
        app.include_router(health.router)
        app.dependency_overrides[health.get_engine] = lambda: object()
        return TestClient(app)

    return _client


def test_health(client_for):
    r = client_for(VerificationReport(True, True, True, [])).get("/health")
    assert r.status_code == 200
    assert r.json() == {"status": "healthy"}


def test_tenant_security_ok(client_for):
    report = VerificationReport(
        True, True, True, ["✅ ok"], constraint_count=3,
        constraints_present=["owner_must_have_shop", "employee_must_have_shop", "kiosk_must_have_shop"],
    )
    r = client_for(report).get("/health/tenant-security")
    assert r.status_code == 200
    body = r.json()
    assert body["secure"] is True
    assert body["constraints_missing"] == []


def test_tenant_security_partial_is_unavailable(client_for):
    report = VerificationReport(
        True, False, True, ["⚠️  INCOMPLETE"], constraint_count=2,
        constraints_present=["employee_must_have_shop", "kiosk_must_have_shop"],
    )
    r = client_for(report).get("/health/tenant-security")
    assert r.status_code == 503
    body = r.json()
    assert body["secure"] is False
    assert body["constraints_missing"] == ["owner_must_have_shop"]
