from __future__ import annotations

from collections.abc import Generator
from pathlib import Path

import pytest
from sqlalchemy import event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import OperationalError
from sqlmodel import SQLModel, create_engine

from crm.domain.models import (
    GroupCreate,
    Principal,
    RoleCreate,
    TenantCreate,
    UserCreate,
)
from crm.infra import db
from crm.services.access_service import AccessEvaluator
from crm.services.catalog_service import CatalogService
from crm.services.group_service import GroupService
from crm.services.identity_service import IdentityService
from crm.services.role_service import RoleService
from crm.services.user_service import UserService


@pytest.fixture()
def access_engine(
    monkeypatch: pytest.MonkeyPatch,
    tmp_path: Path,
) -> Generator[Engine, None, None]:
    db_path = tmp_path / "access_test.db"
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
    CatalogService().seed()
    yield test_engine
    test_engine.dispose()


def _tenant(name: str) -> str:
    return IdentityService().create_tenant(TenantCreate(name=name)).id


def _user(tenant_id: str, email: str) -> str:
    payload = UserCreate(email=email, password="pw", name=email.split("@")[0])
    return UserService().create_user(tenant_id, payload).id


def _role(tenant_id: str, name: str, codes: list[str]) -> str:
    return RoleService().create_role(tenant_id, RoleCreate(name=name, permission_codes=codes)).id


def _group(tenant_id: str, name: str) -> str:
    return GroupService().create_group(tenant_id, GroupCreate(name=name)).id


def test_empty_requirement_is_allowed_without_store_access(
    access_engine: Engine,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    def _boom(self: AccessEvaluator, principal: Principal) -> set[str]:
        raise AssertionError("store must not be consulted")

    monkeypatch.setattr(AccessEvaluator, "effective_codes", _boom)
    evaluator = AccessEvaluator()
    assert evaluator.has_permissions(Principal(user_id="ghost", tenant_id="nowhere"), []) is True
    assert evaluator.has_permissions(Principal(user_id="ghost", tenant_id="nowhere"), set()) is True


def test_user_without_roles_or_groups_is_denied(access_engine: Engine) -> None:
    tenant_id = _tenant("t-empty")
    user_id = _user(tenant_id, "nobody@example.com")
    principal = Principal(user_id=user_id, tenant_id=tenant_id)

    evaluator = AccessEvaluator()
    assert evaluator.effective_codes(principal) == set()
    assert evaluator.has_permissions(principal, ["customer.read"]) is False


def test_direct_viewer_role_requires_every_code(access_engine: Engine) -> None:
    tenant_id = _tenant("T1")
    user_id = _user(tenant_id, "u1@example.com")
    viewer_id = _role(tenant_id, "Viewer", ["customer.read"])
    UserService().set_user_roles(tenant_id, user_id, [viewer_id])

    principal = Principal(user_id=user_id, tenant_id=tenant_id)
    evaluator = AccessEvaluator()
    assert evaluator.has_permissions(principal, {"customer.read"}) is True
    assert evaluator.has_permissions(principal, {"customer.read", "customer.delete"}) is False


def test_group_role_grants_access_without_direct_role(access_engine: Engine) -> None:
    tenant_id = _tenant("T1")
    u2 = _user(tenant_id, "u2@example.com")
    editor_id = _role(tenant_id, "Editor", ["customer.update"])
    sales_id = _group(tenant_id, "Sales")
    groups = GroupService()
    groups.set_roles(tenant_id, sales_id, [editor_id])
    groups.set_members(tenant_id, sales_id, [u2])

    principal = Principal(user_id=u2, tenant_id=tenant_id)
    evaluator = AccessEvaluator()
    assert evaluator.has_permissions(principal, {"customer.update"}) is True

    groups.set_members(tenant_id, sales_id, [])
    assert evaluator.has_permissions(principal, {"customer.update"}) is False


def test_soft_deleted_role_stops_granting(access_engine: Engine) -> None:
    tenant_id = _tenant("T1")
    user_id = _user(tenant_id, "admin@example.com")
    admin_role = _role(tenant_id, "Admin", ["customer.read", "customer.delete"])
    UserService().set_user_roles(tenant_id, user_id, [admin_role])
    principal = Principal(user_id=user_id, tenant_id=tenant_id)

    evaluator = AccessEvaluator()
    assert evaluator.has_permissions(principal, {"customer.delete"}) is True

    RoleService().delete_role(tenant_id, admin_role)
    assert evaluator.has_permissions(principal, {"customer.delete"}) is False
    assert evaluator.has_permissions(principal, {"customer.read"}) is False


def test_group_granting_deleted_role_contributes_nothing(access_engine: Engine) -> None:
    tenant_id = _tenant("t-group-role")
    user_id = _user(tenant_id, "member@example.com")
    live_role = _role(tenant_id, "Reader", ["customer.read"])
    dead_role = _role(tenant_id, "Writer", ["customer.create"])
    group_id = _group(tenant_id, "Ops")
    groups = GroupService()
    groups.set_roles(tenant_id, group_id, [live_role, dead_role])
    groups.set_members(tenant_id, group_id, [user_id])
    RoleService().delete_role(tenant_id, dead_role)

    codes = AccessEvaluator().effective_codes(Principal(user_id=user_id, tenant_id=tenant_id))
    assert codes == {"customer.read"}


def test_soft_deleted_group_grants_nothing(access_engine: Engine) -> None:
    tenant_id = _tenant("t-group-deleted")
    user_id = _user(tenant_id, "member@example.com")
    role_id = _role(tenant_id, "Reader", ["interaction.read"])
    group_id = _group(tenant_id, "Support")
    groups = GroupService()
    groups.set_roles(tenant_id, group_id, [role_id])
    groups.set_members(tenant_id, group_id, [user_id])
    principal = Principal(user_id=user_id, tenant_id=tenant_id)

    evaluator = AccessEvaluator()
    assert evaluator.has_permissions(principal, ["interaction.read"]) is True
    groups.delete_group(tenant_id, group_id)
    assert evaluator.has_permissions(principal, ["interaction.read"]) is False


def test_soft_deleted_user_holds_no_access(access_engine: Engine) -> None:
    tenant_id = _tenant("t-user-deleted")
    user_id = _user(tenant_id, "leaver@example.com")
    role_id = _role(tenant_id, "Reader", ["customer.read"])
    users = UserService()
    users.set_user_roles(tenant_id, user_id, [role_id])
    principal = Principal(user_id=user_id, tenant_id=tenant_id)

    evaluator = AccessEvaluator()
    assert evaluator.has_permissions(principal, ["customer.read"]) is True
    users.delete_user(tenant_id, user_id)
    assert evaluator.effective_codes(principal) == set()


def test_soft_deleted_tenant_holds_no_access(access_engine: Engine) -> None:
    tenant_id = _tenant("t-closing")
    user_id = _user(tenant_id, "owner@example.com")
    role_id = _role(tenant_id, "Reader", ["customer.read"])
    UserService().set_user_roles(tenant_id, user_id, [role_id])
    principal = Principal(user_id=user_id, tenant_id=tenant_id)

    IdentityService().delete_tenant(tenant_id)
    assert AccessEvaluator().has_permissions(principal, ["customer.read"]) is False


def test_role_reached_directly_and_via_group_counts_once(access_engine: Engine) -> None:
    tenant_id = _tenant("t-dup")
    user_id = _user(tenant_id, "both@example.com")
    role_id = _role(tenant_id, "Reader", ["customer.read", "interaction.read"])
    group_id = _group(tenant_id, "Readers")
    UserService().set_user_roles(tenant_id, user_id, [role_id])
    groups = GroupService()
    groups.set_roles(tenant_id, group_id, [role_id])
    groups.set_members(tenant_id, group_id, [user_id])

    codes = AccessEvaluator().effective_codes(Principal(user_id=user_id, tenant_id=tenant_id))
    assert codes == {"customer.read", "interaction.read"}


def test_union_of_direct_and_group_grants(access_engine: Engine) -> None:
    tenant_id = _tenant("t-union")
    user_id = _user(tenant_id, "mixed@example.com")
    direct = _role(tenant_id, "Direct", ["customer.read"])
    via_group = _role(tenant_id, "ViaGroup", ["customer.update"])
    group_id = _group(tenant_id, "Editors")
    UserService().set_user_roles(tenant_id, user_id, [direct])
    groups = GroupService()
    groups.set_roles(tenant_id, group_id, [via_group])
    groups.set_members(tenant_id, group_id, [user_id])

    principal = Principal(user_id=user_id, tenant_id=tenant_id)
    assert AccessEvaluator().has_permissions(principal, ["customer.read", "customer.update"]) is True


def test_other_tenant_roles_never_contribute(access_engine: Engine) -> None:
    tenant_a = _tenant("tenant-a")
    tenant_b = _tenant("tenant-b")
    user_a = _user(tenant_a, "shared@example.com")
    _user(tenant_b, "shared@example.com")
    role_a = _role(tenant_a, "Reader", ["customer.read"])
    UserService().set_user_roles(tenant_a, user_a, [role_a])

    evaluator = AccessEvaluator()
    assert evaluator.has_permissions(Principal(user_id=user_a, tenant_id=tenant_a), ["customer.read"]) is True
    assert evaluator.has_permissions(Principal(user_id=user_a, tenant_id=tenant_b), ["customer.read"]) is False
    assert evaluator.effective_codes(Principal(user_id=user_a, tenant_id=tenant_b)) == set()


def test_no_roles_short_circuits_before_permission_lookup(access_engine: Engine) -> None:
    tenant_id = _tenant("t-short")
    user_id = _user(tenant_id, "idle@example.com")
    statements: list[str] = []

    def _record(_conn: object, _cursor: object, statement: str, *_args: object) -> None:
        statements.append(statement)

    event.listen(access_engine, "before_cursor_execute", _record)
    try:
        AccessEvaluator().has_permissions(Principal(user_id=user_id, tenant_id=tenant_id), ["customer.read"])
    finally:
        event.remove(access_engine, "before_cursor_execute", _record)

    assert statements
    assert not any("permissions.code" in item for item in statements)


def test_store_failure_propagates_instead_of_denying(
    access_engine: Engine,
    monkeypatch: pytest.MonkeyPatch,
    tmp_path: Path,
) -> None:
    broken_engine = create_engine(f"sqlite:///{tmp_path / 'missing' / 'nope.db'}")
    monkeypatch.setattr(db, "engine", broken_engine)

    with pytest.raises(OperationalError):
        AccessEvaluator().has_permissions(Principal(user_id="u", tenant_id="t"), ["customer.read"])


def test_single_code_string_is_rejected(access_engine: Engine) -> None:
    tenant_id = _tenant("t-typo")
    user_id = _user(tenant_id, "typo@example.com")

    with pytest.raises(TypeError):
        AccessEvaluator().has_permissions(Principal(user_id=user_id, tenant_id=tenant_id), "customer.read")  # type: ignore[arg-type]
