from __future__ import annotations

import logging
from collections import defaultdict

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, col, select

from crm.domain.models import (
    Permission,
    Role,
    RoleCreate,
    RolePermission,
    RoleUpdate,
    now_utc,
)
from crm.domain.scoping import active_in_tenant
from crm.infra.db import get_engine
from crm.services.catalog_service import CatalogService
from crm.services.errors import ConflictError, NotFoundError
from crm.services.graph import get_scoped, replace_edges, require_tenant

logger = logging.getLogger(__name__)


class RoleService:
    def __init__(self, catalog: CatalogService | None = None) -> None:
        self._catalog = catalog or CatalogService()

    def _session(self) -> Session:
        return Session(get_engine(), expire_on_commit=False)

    def _name_taken(self, session: Session, tenant_id: str, name: str, exclude_id: str | None = None) -> bool:
        statement = select(Role.id).where(active_in_tenant(Role, tenant_id)).where(col(Role.name) == name)
        if exclude_id is not None:
            statement = statement.where(col(Role.id) != exclude_id)
        return session.exec(statement).first() is not None

    def _latest_deleted(self, session: Session, tenant_id: str, name: str) -> Role | None:
        statement = (
            select(Role)
            .where(col(Role.tenant_id) == tenant_id)
            .where(col(Role.name) == name)
            .where(col(Role.deleted_at).is_not(None))
            .order_by(col(Role.deleted_at).desc())
        )
        return session.exec(statement).first()

    def _replace_permissions(self, session: Session, role_id: str, permissions: list[Permission]) -> None:
        replace_edges(
            session,
            RolePermission,
            col(RolePermission.role_id) == role_id,
            [RolePermission(role_id=role_id, permission_id=item.id) for item in permissions],
        )

    def list_roles(self, tenant_id: str) -> list[Role]:
        with self._session() as session:
            statement = select(Role).where(active_in_tenant(Role, tenant_id)).order_by(col(Role.created_at).desc())
            return list(session.exec(statement).all())

    def get_role(self, tenant_id: str, role_id: str) -> Role:
        with self._session() as session:
            role = get_scoped(session, Role, tenant_id, role_id)
            if role is None:
                raise NotFoundError("role not found")
            return role

    def permission_codes_by_role(self, role_ids: list[str]) -> dict[str, list[str]]:
        if not role_ids:
            return {}
        with self._session() as session:
            rows = session.exec(
                select(RolePermission.role_id, Permission.code)
                .join(Permission, col(Permission.id) == col(RolePermission.permission_id))
                .where(col(RolePermission.role_id).in_(role_ids))
            ).all()
        codes: dict[str, list[str]] = defaultdict(list)
        for role_id, code in rows:
            codes[role_id].append(code)
        return {role_id: sorted(items) for role_id, items in codes.items()}

    def create_role(self, tenant_id: str, payload: RoleCreate) -> Role:
        """Create a role, or revive the latest soft-deleted role of that name.

        A revived role keeps its old grants unless ``permission_codes`` is sent.
        """
        with self._session() as session:
            require_tenant(session, tenant_id)
            permissions = None
            if payload.permission_codes is not None:
                permissions = self._catalog.resolve_codes(session, payload.permission_codes)
            if self._name_taken(session, tenant_id, payload.name):
                raise ConflictError("role name already exists in tenant")

            role = self._latest_deleted(session, tenant_id, payload.name)
            restored = role is not None
            if role is None:
                role = Role(tenant_id=tenant_id, name=payload.name, description=payload.description)
            else:
                role.deleted_at = None
                role.updated_at = now_utc()
                if payload.description is not None:
                    role.description = payload.description
            session.add(role)
            try:
                session.flush()
                if permissions is not None:
                    self._replace_permissions(session, role.id, permissions)
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise ConflictError("role name already exists in tenant") from exc
            session.refresh(role)
            logger.info(
                "rbac.role.%s tenant_id=%s role_id=%s",
                "restored" if restored else "created",
                tenant_id,
                role.id,
            )
            return role

    def update_role(self, tenant_id: str, role_id: str, payload: RoleUpdate) -> Role:
        with self._session() as session:
            role = get_scoped(
                session,
                Role,
                tenant_id,
                role_id,
                for_update=payload.permission_codes is not None,
            )
            if role is None:
                raise NotFoundError("role not found")
            permissions = None
            if payload.permission_codes is not None:
                permissions = self._catalog.resolve_codes(session, payload.permission_codes)
            if payload.name is not None and payload.name != role.name:
                if self._name_taken(session, tenant_id, payload.name, exclude_id=role.id):
                    raise ConflictError("role name already exists in tenant")
                role.name = payload.name
            if payload.description is not None:
                role.description = payload.description
            role.updated_at = now_utc()
            session.add(role)
            try:
                if permissions is not None:
                    self._replace_permissions(session, role.id, permissions)
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise ConflictError("role name already exists in tenant") from exc
            session.refresh(role)
            return role

    def set_role_permissions(self, tenant_id: str, role_id: str, permission_codes: list[str]) -> Role:
        with self._session() as session:
            role = get_scoped(session, Role, tenant_id, role_id, for_update=True)
            if role is None:
                raise NotFoundError("role not found")
            permissions = self._catalog.resolve_codes(session, permission_codes)
            self._replace_permissions(session, role.id, permissions)
            role.updated_at = now_utc()
            session.add(role)
            session.commit()
            session.refresh(role)
            logger.info(
                "rbac.role.permissions.replaced tenant_id=%s role_id=%s count=%s",
                tenant_id,
                role.id,
                len(permissions),
            )
            return role

    def delete_role(self, tenant_id: str, role_id: str) -> None:
        with self._session() as session:
            role = get_scoped(session, Role, tenant_id, role_id)
            if role is None:
                raise NotFoundError("role not found")
            role.deleted_at = now_utc()
            session.add(role)
            session.commit()
            logger.info("rbac.role.deleted tenant_id=%s role_id=%s", tenant_id, role_id)
