from __future__ import annotations

import logging

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, col, select

from crm.domain.models import (
    BootstrapAdminRequest,
    Role,
    RolePermission,
    Tenant,
    TenantCreate,
    TenantUpdate,
    User,
    UserRole,
    UserStatus,
    UserType,
    now_utc,
)
from crm.domain.scoping import active_in_tenant, not_deleted
from crm.infra.auth import hash_password
from crm.infra.db import get_engine
from crm.services.catalog_service import CatalogService
from crm.services.errors import AuthError, ConflictError
from crm.services.graph import require_tenant

logger = logging.getLogger(__name__)

ADMIN_ROLE_NAME = "admin"


class IdentityService:
    """Tenant lifecycle, first-admin bootstrap and credential checks."""

    def __init__(self, catalog: CatalogService | None = None) -> None:
        self._catalog = catalog or CatalogService()

    def _session(self) -> Session:
        return Session(get_engine(), expire_on_commit=False)

    def create_tenant(self, payload: TenantCreate) -> Tenant:
        with self._session() as session:
            tenant = Tenant(name=payload.name)
            session.add(tenant)
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise ConflictError("tenant name already exists") from exc
            session.refresh(tenant)
            logger.info("identity.tenant.created tenant_id=%s", tenant.id)
            return tenant

    def get_tenant(self, tenant_id: str) -> Tenant:
        with self._session() as session:
            return require_tenant(session, tenant_id)

    def update_tenant(self, tenant_id: str, payload: TenantUpdate) -> Tenant:
        with self._session() as session:
            tenant = require_tenant(session, tenant_id)
            tenant.name = payload.name
            tenant.updated_at = now_utc()
            session.add(tenant)
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise ConflictError("tenant name already exists") from exc
            session.refresh(tenant)
            return tenant

    def delete_tenant(self, tenant_id: str) -> None:
        with self._session() as session:
            tenant = require_tenant(session, tenant_id)
            tenant.deleted_at = now_utc()
            session.add(tenant)
            session.commit()
            logger.info("identity.tenant.deleted tenant_id=%s", tenant_id)

    def _ensure_admin_role(self, session: Session, tenant_id: str) -> Role:
        all_permissions = self._catalog.ensure_catalog(session)
        admin_role = session.exec(
            select(Role)
            .where(active_in_tenant(Role, tenant_id))
            .where(col(Role.name) == ADMIN_ROLE_NAME)
        ).first()
        if admin_role is None:
            admin_role = Role(
                tenant_id=tenant_id,
                name=ADMIN_ROLE_NAME,
                description="bootstrap admin role",
            )
            session.add(admin_role)
            session.flush()
        granted = set(
            session.exec(select(RolePermission.permission_id).where(col(RolePermission.role_id) == admin_role.id)).all()
        )
        for permission in all_permissions:
            if permission.id not in granted:
                session.add(RolePermission(role_id=admin_role.id, permission_id=permission.id))
        return admin_role

    def bootstrap_admin(self, payload: BootstrapAdminRequest) -> User:
        with self._session() as session:
            require_tenant(session, payload.tenant_id)
            existing = session.exec(select(User.id).where(col(User.tenant_id) == payload.tenant_id)).first()
            if existing is not None:
                raise ConflictError("tenant already initialized")

            admin_user = User(
                tenant_id=payload.tenant_id,
                email=payload.email,
                name=payload.name,
                password_hash=hash_password(payload.password),
                status=UserStatus.ACTIVE,
                user_type=UserType.ADMIN,
            )
            try:
                admin_role = self._ensure_admin_role(session, payload.tenant_id)
                session.add(admin_user)
                session.flush()
                session.add(UserRole(tenant_id=payload.tenant_id, user_id=admin_user.id, role_id=admin_role.id))
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise ConflictError("tenant already initialized") from exc
            session.refresh(admin_user)
            logger.info(
                "identity.tenant.bootstrapped tenant_id=%s user_id=%s",
                payload.tenant_id,
                admin_user.id,
            )
            return admin_user

    def authenticate(self, tenant_id: str, email: str, password: str) -> User:
        with self._session() as session:
            statement = (
                select(User)
                .join(Tenant, col(Tenant.id) == col(User.tenant_id))
                .where(active_in_tenant(User, tenant_id))
                .where(not_deleted(Tenant))
                .where(col(User.email) == email)
            )
            user = session.exec(statement).first()
            if user is None:
                raise AuthError("invalid credentials")
            if user.status != UserStatus.ACTIVE:
                raise AuthError("invalid credentials")
            if user.password_hash != hash_password(password):
                raise AuthError("invalid credentials")
            return user
