from __future__ import annotations

import logging
from collections import defaultdict

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, col, select

from crm.domain.models import (
    Role,
    User,
    UserCreate,
    UserRole,
    UserStatus,
    UserType,
    UserUpdate,
    now_utc,
)
from crm.domain.scoping import active_in_tenant
from crm.infra.auth import hash_password
from crm.infra.db import get_engine
from crm.services.errors import ConflictError, NotFoundError
from crm.services.graph import get_scoped, replace_edges, require_tenant, resolve_scoped_ids

logger = logging.getLogger(__name__)


class UserService:
    def _session(self) -> Session:
        return Session(get_engine(), expire_on_commit=False)

    def _email_taken(self, session: Session, tenant_id: str, email: str, exclude_id: str | None = None) -> bool:
        statement = select(User.id).where(active_in_tenant(User, tenant_id)).where(col(User.email) == email)
        if exclude_id is not None:
            statement = statement.where(col(User.id) != exclude_id)
        return session.exec(statement).first() is not None

    def _require_user(
        self,
        session: Session,
        tenant_id: str,
        user_id: str,
        *,
        for_update: bool = False,
    ) -> User:
        user = get_scoped(session, User, tenant_id, user_id, for_update=for_update)
        if user is None:
            raise NotFoundError("user not found")
        return user

    def _replace_roles(self, session: Session, tenant_id: str, user_id: str, role_ids: list[str]) -> None:
        replace_edges(
            session,
            UserRole,
            (col(UserRole.tenant_id) == tenant_id) & (col(UserRole.user_id) == user_id),
            [UserRole(tenant_id=tenant_id, user_id=user_id, role_id=role_id) for role_id in role_ids],
        )

    def list_users(
        self,
        tenant_id: str,
        *,
        status: UserStatus | None = None,
        user_type: UserType | None = None,
    ) -> list[User]:
        with self._session() as session:
            statement = select(User).where(active_in_tenant(User, tenant_id))
            if status is not None:
                statement = statement.where(col(User.status) == status)
            if user_type is not None:
                statement = statement.where(col(User.user_type) == user_type)
            return list(session.exec(statement.order_by(col(User.created_at).desc())).all())

    def get_user(self, tenant_id: str, user_id: str) -> User:
        with self._session() as session:
            return self._require_user(session, tenant_id, user_id)

    def role_ids_by_user(self, tenant_id: str, user_ids: list[str]) -> dict[str, list[str]]:
        """Directly assigned, non-deleted role ids for each user."""
        if not user_ids:
            return {}
        with self._session() as session:
            rows = session.exec(
                select(UserRole.user_id, UserRole.role_id)
                .join(Role, col(Role.id) == col(UserRole.role_id))
                .where(col(UserRole.tenant_id) == tenant_id)
                .where(col(UserRole.user_id).in_(user_ids))
                .where(active_in_tenant(Role, tenant_id))
            ).all()
        role_ids: dict[str, list[str]] = defaultdict(list)
        for user_id, role_id in rows:
            role_ids[user_id].append(role_id)
        return {user_id: sorted(role_ids[user_id]) for user_id in user_ids}

    def create_user(self, tenant_id: str, payload: UserCreate) -> User:
        with self._session() as session:
            require_tenant(session, tenant_id)
            role_ids = resolve_scoped_ids(session, Role, tenant_id, payload.role_ids, label="roles")
            if self._email_taken(session, tenant_id, payload.email):
                raise ConflictError("email already exists in tenant")
            user = User(
                tenant_id=tenant_id,
                email=payload.email,
                name=payload.name,
                password_hash=hash_password(payload.password),
                status=payload.status,
                user_type=payload.user_type,
            )
            session.add(user)
            try:
                session.flush()
                if role_ids:
                    self._replace_roles(session, tenant_id, user.id, role_ids)
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise ConflictError("email already exists in tenant") from exc
            session.refresh(user)
            logger.info("identity.user.created tenant_id=%s user_id=%s", tenant_id, user.id)
            return user

    def update_user(self, tenant_id: str, user_id: str, payload: UserUpdate) -> User:
        with self._session() as session:
            user = self._require_user(session, tenant_id, user_id, for_update=payload.role_ids is not None)
            role_ids = None
            if payload.role_ids is not None:
                role_ids = resolve_scoped_ids(session, Role, tenant_id, payload.role_ids, label="roles")
            if payload.email is not None and payload.email != user.email:
                if self._email_taken(session, tenant_id, payload.email, exclude_id=user.id):
                    raise ConflictError("email already exists in tenant")
                user.email = payload.email
            if payload.password is not None:
                user.password_hash = hash_password(payload.password)
            if payload.name is not None:
                user.name = payload.name
            if payload.status is not None:
                user.status = payload.status
            if payload.user_type is not None:
                user.user_type = payload.user_type
            user.updated_at = now_utc()
            session.add(user)
            try:
                if role_ids is not None:
                    self._replace_roles(session, tenant_id, user.id, role_ids)
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise ConflictError("email already exists in tenant") from exc
            session.refresh(user)
            return user

    def set_user_roles(self, tenant_id: str, user_id: str, role_ids: list[str]) -> User:
        with self._session() as session:
            user = self._require_user(session, tenant_id, user_id, for_update=True)
            resolved = resolve_scoped_ids(session, Role, tenant_id, role_ids, label="roles")
            self._replace_roles(session, tenant_id, user.id, resolved)
            user.updated_at = now_utc()
            session.add(user)
            session.commit()
            session.refresh(user)
            logger.info(
                "rbac.user.roles.replaced tenant_id=%s user_id=%s count=%s",
                tenant_id,
                user.id,
                len(resolved),
            )
            return user

    def delete_user(self, tenant_id: str, user_id: str) -> None:
        with self._session() as session:
            user = self._require_user(session, tenant_id, user_id)
            user.deleted_at = now_utc()
            session.add(user)
            session.commit()
            logger.info("identity.user.deleted tenant_id=%s user_id=%s", tenant_id, user_id)
