from __future__ import annotations

from collections.abc import Generator
from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import event
from sqlalchemy.exc import OperationalError
from sqlmodel import SQLModel, create_engine

from crm import main as app_main
from crm.domain.permissions import PERMISSION_CATALOG
from crm.infra import db
from crm.infra.auth import create_access_token
from crm.services.access_service import AccessEvaluator


@pytest.fixture()
def identity_client(
    monkeypatch: pytest.MonkeyPatch,
    tmp_path: Path,
) -> Generator[TestClient, None, None]:
    db_path = tmp_path / "identity_test.db"
    test_engine = create_engine(
        f"sqlite:///{db_path}",
        connect_args={"check_same_thread": False},
    )

    @event.listens_for(test_engine, "connect")
    def _enable_foreign_keys(dbapi_connection: object, _connection_record: object) -> None:
        cursor = dbapi_connection.cursor()  # type: ignore[attr-defined]
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    SQLModel.metadata.create_all(test_engine)
    monkeypatch.setattr(db, "engine", test_engine)
    client = TestClient(app_main.app)
    yield client
    client.close()


def _auth_header(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def _create_tenant(client: TestClient, name: str) -> str:
    response = client.post("/api/identity/tenants", json={"name": name})
    assert response.status_code == 201
    return response.json()["id"]


def _bootstrap_admin(client: TestClient, tenant_id: str, email: str, password: str) -> dict[str, object]:
    response = client.post(
        "/api/identity/bootstrap-admin",
        json={"tenant_id": tenant_id, "email": email, "password": password},
    )
    assert response.status_code == 201
    return response.json()


def _login(client: TestClient, tenant_id: str, email: str, password: str) -> str:
    response = client.post(
        "/api/auth/login",
        json={"tenant_id": tenant_id, "email": email, "password": password},
    )
    assert response.status_code == 200
    return response.json()["access_token"]


def test_bootstrap_admin_holds_full_catalog(identity_client: TestClient) -> None:
    tenant_id = _create_tenant(identity_client, "tenant-bootstrap")
    admin = _bootstrap_admin(identity_client, tenant_id, "admin@example.com", "admin-pass")
    assert admin["user_type"] == "ADMIN"
    assert len(admin["role_ids"]) == 1

    login = identity_client.post(
        "/api/auth/login",
        json={"tenant_id": tenant_id, "email": "admin@example.com", "password": "admin-pass"},
    )
    assert login.status_code == 200
    assert login.json()["permissions"] == sorted(PERMISSION_CATALOG)

    me = identity_client.get("/api/auth/me", headers=_auth_header(login.json()["access_token"]))
    assert me.status_code == 200
    assert me.json()["user"]["email"] == "admin@example.com"
    assert me.json()["permissions"] == sorted(PERMISSION_CATALOG)


def test_bootstrap_admin_runs_once_per_tenant(identity_client: TestClient) -> None:
    tenant_id = _create_tenant(identity_client, "tenant-once")
    _bootstrap_admin(identity_client, tenant_id, "admin@example.com", "admin-pass")

    again = identity_client.post(
        "/api/identity/bootstrap-admin",
        json={"tenant_id": tenant_id, "email": "second@example.com", "password": "pw"},
    )
    assert again.status_code == 409

    unknown = identity_client.post(
        "/api/identity/bootstrap-admin",
        json={"tenant_id": "no-such-tenant", "email": "x@example.com", "password": "pw"},
    )
    assert unknown.status_code == 404


def test_duplicate_tenant_name_conflicts(identity_client: TestClient) -> None:
    _create_tenant(identity_client, "tenant-dup")
    response = identity_client.post("/api/identity/tenants", json={"name": "tenant-dup"})
    assert response.status_code == 409


def test_login_rejects_bad_credentials(identity_client: TestClient) -> None:
    tenant_id = _create_tenant(identity_client, "tenant-login")
    other_tenant = _create_tenant(identity_client, "tenant-login-other")
    _bootstrap_admin(identity_client, tenant_id, "admin@example.com", "admin-pass")

    wrong_password = identity_client.post(
        "/api/auth/login",
        json={"tenant_id": tenant_id, "email": "admin@example.com", "password": "nope"},
    )
    assert wrong_password.status_code == 401

    wrong_tenant = identity_client.post(
        "/api/auth/login",
        json={"tenant_id": other_tenant, "email": "admin@example.com", "password": "admin-pass"},
    )
    assert wrong_tenant.status_code == 401


def test_login_rejects_suspended_user(identity_client: TestClient) -> None:
    tenant_id = _create_tenant(identity_client, "tenant-suspend")
    _bootstrap_admin(identity_client, tenant_id, "admin@example.com", "admin-pass")
    token = _login(identity_client, tenant_id, "admin@example.com", "admin-pass")

    created = identity_client.post(
        "/api/users",
        json={"email": "paused@example.com", "password": "pw", "name": "Paused", "status": "SUSPENDED"},
        headers=_auth_header(token),
    )
    assert created.status_code == 201

    response = identity_client.post(
        "/api/auth/login",
        json={"tenant_id": tenant_id, "email": "paused@example.com", "password": "pw"},
    )
    assert response.status_code == 401


def test_missing_or_invalid_token_is_unauthorized(identity_client: TestClient) -> None:
    assert identity_client.get("/api/users").status_code == 401
    assert identity_client.get("/api/auth/me").status_code == 401

    response = identity_client.get("/api/users", headers=_auth_header("not-a-jwt"))
    assert response.status_code == 401
    assert response.json()["detail"] == "Invalid token"


def test_user_without_grants_is_forbidden(identity_client: TestClient) -> None:
    tenant_id = _create_tenant(identity_client, "tenant-forbidden")
    _bootstrap_admin(identity_client, tenant_id, "admin@example.com", "admin-pass")
    admin_token = _login(identity_client, tenant_id, "admin@example.com", "admin-pass")
    created = identity_client.post(
        "/api/users",
        json={"email": "plain@example.com", "password": "pw", "name": "Plain"},
        headers=_auth_header(admin_token),
    )
    assert created.status_code == 201

    login = identity_client.post(
        "/api/auth/login",
        json={"tenant_id": tenant_id, "email": "plain@example.com", "password": "pw"},
    )
    assert login.status_code == 200
    assert login.json()["permissions"] == []

    response = identity_client.get("/api/users", headers=_auth_header(login.json()["access_token"]))
    assert response.status_code == 403
    assert "user.read" in response.json()["detail"]


def test_identity_tenant_isolation(identity_client: TestClient) -> None:
    tenant_a = _create_tenant(identity_client, "tenant-a")
    tenant_b = _create_tenant(identity_client, "tenant-b")
    _bootstrap_admin(identity_client, tenant_a, "admin@example.com", "pass-a")
    _bootstrap_admin(identity_client, tenant_b, "admin@example.com", "pass-b")
    token_a = _login(identity_client, tenant_a, "admin@example.com", "pass-a")
    token_b = _login(identity_client, tenant_b, "admin@example.com", "pass-b")

    created = identity_client.post(
        "/api/users",
        json={"email": "a-only@example.com", "password": "pw", "name": "A"},
        headers=_auth_header(token_a),
    )
    assert created.status_code == 201
    user_a = created.json()["id"]

    assert identity_client.get(f"/api/users/{user_a}", headers=_auth_header(token_a)).status_code == 200
    assert identity_client.get(f"/api/users/{user_a}", headers=_auth_header(token_b)).status_code == 404

    listed_b = identity_client.get("/api/users", headers=_auth_header(token_b))
    assert listed_b.status_code == 200
    assert user_a not in {item["id"] for item in listed_b.json()}

    assert identity_client.get(f"/api/identity/tenants/{tenant_a}", headers=_auth_header(token_a)).status_code == 200
    assert identity_client.get(f"/api/identity/tenants/{tenant_a}", headers=_auth_header(token_b)).status_code == 404


def test_token_for_foreign_tenant_grants_nothing(identity_client: TestClient) -> None:
    tenant_a = _create_tenant(identity_client, "tenant-a")
    tenant_b = _create_tenant(identity_client, "tenant-b")
    admin = _bootstrap_admin(identity_client, tenant_a, "admin@example.com", "pass-a")

    forged = create_access_token(user_id=str(admin["id"]), tenant_id=tenant_b)
    response = identity_client.get("/api/users", headers=_auth_header(forged))
    assert response.status_code == 403


def test_deleted_tenant_locks_out_its_users(identity_client: TestClient) -> None:
    tenant_id = _create_tenant(identity_client, "tenant-closing")
    _bootstrap_admin(identity_client, tenant_id, "admin@example.com", "admin-pass")
    token = _login(identity_client, tenant_id, "admin@example.com", "admin-pass")

    renamed = identity_client.patch(
        f"/api/identity/tenants/{tenant_id}",
        json={"name": "tenant-closed"},
        headers=_auth_header(token),
    )
    assert renamed.status_code == 200
    assert renamed.json()["name"] == "tenant-closed"

    deleted = identity_client.delete(f"/api/identity/tenants/{tenant_id}", headers=_auth_header(token))
    assert deleted.status_code == 204

    assert identity_client.get("/api/users", headers=_auth_header(token)).status_code == 403
    login = identity_client.post(
        "/api/auth/login",
        json={"tenant_id": tenant_id, "email": "admin@example.com", "password": "admin-pass"},
    )
    assert login.status_code == 401


def test_store_failure_is_not_a_denial(
    identity_client: TestClient,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    tenant_id = _create_tenant(identity_client, "tenant-outage")
    _bootstrap_admin(identity_client, tenant_id, "admin@example.com", "admin-pass")
    token = _login(identity_client, tenant_id, "admin@example.com", "admin-pass")

    def _unavailable(self: AccessEvaluator, principal: object) -> set[str]:
        raise OperationalError("SELECT 1", {}, Exception("connection refused"))

    monkeypatch.setattr(AccessEvaluator, "effective_codes", _unavailable)
    response = identity_client.get("/api/users", headers=_auth_header(token))
    assert response.status_code == 503
    assert response.json() == {"detail": "data store unavailable"}
