from fastapi.testclient import TestClient
from jose import jwt

from campus_escrow.core.config import get_settings
from campus_escrow.core.security import create_access_token
from campus_escrow.db.session import get_store
from campus_escrow.main import app, create_app

client = TestClient(app)


class UnreachableStore:
    def ping(self):
        return False


def _bearer(token):
    return {"Authorization": f"Bearer {token}"}


def test_health():
    r = client.get("/api/v1/health")
    assert r.status_code == 200
    assert r.json()["status"] == "ok"
    assert r.json()["database"] == "ok"


def test_health_reports_unreachable_database():
    degraded = create_app()
    degraded.dependency_overrides[get_store] = lambda: UnreachableStore()
    r = TestClient(degraded).get("/api/v1/health")
    assert r.status_code == 503
    assert r.json()["database"] == "unreachable"


def test_request_id_is_echoed():
    r = client.get("/api/v1/health", headers={"X-Request-Id": "req-123"})
    assert r.headers["X-Request-Id"] == "req-123"
    assert r.json()["request_id"] == "req-123"


def test_routes_require_a_bearer_token():
    r = client.get("/api/v1/projects")
    assert r.status_code in (401, 403)


def test_expired_token_is_rejected():
    token = create_access_token("u1", {"role": "client"}, expires_minutes=-1)
    r = client.get("/api/v1/projects", headers=_bearer(token))
    assert r.status_code == 401
    assert r.json()["detail"] == "Token expired."


def test_foreign_issuer_is_rejected():
    settings = get_settings()
    token = jwt.encode(
        {"sub": "u1", "role": "client", "iss": "someone-else"},
        settings.jwt_secret_key,
        algorithm=settings.jwt_algorithm,
    )
    assert client.get("/api/v1/projects", headers=_bearer(token)).status_code == 401


def test_unknown_role_is_rejected():
    token = create_access_token("u1", {"role": "landlord"})
    assert client.get("/api/v1/projects", headers=_bearer(token)).status_code == 401


def test_admin_only_endpoint_refuses_other_roles():
    token = create_access_token("u1", {"role": "student"})
    r = client.post("/api/v1/admin/outbox/dispatch", headers=_bearer(token))
    assert r.status_code == 403
