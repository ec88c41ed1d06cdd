from __future__ import annotations

import logging
from collections.abc import Collection

from sqlmodel import Session, col, select

from crm.domain.models import (
    Group,
    GroupMember,
    GroupRole,
    Permission,
    Principal,
    Role,
    RolePermission,
    Tenant,
    User,
    UserRole,
)
from crm.domain.scoping import active_in_tenant, not_deleted
from crm.infra.db import get_engine

logger = logging.getLogger(__name__)


class AccessEvaluator:
    """Decides whether a principal holds every permission an endpoint requires.

    Effective permissions are the union of what the user's directly assigned
    roles grant and what the roles of the user's groups grant. Nothing is
    cached: each check reads the current identity graph, so a committed
    membership or grant change is visible to the next request.
    """

    def _session(self) -> Session:
        return Session(get_engine(), expire_on_commit=False)

    def has_permissions(self, principal: Principal, required: Collection[str]) -> bool:
        if isinstance(required, str):
            raise TypeError("required must be a collection of permission codes, not a single code")
        required_codes = set(required)
        if not required_codes:
            return True
        effective = self.effective_codes(principal)
        return required_codes.issubset(effective)

    def effective_codes(self, principal: Principal) -> set[str]:
        with self._session() as session:
            if not self._is_active_user(session, principal):
                logger.debug(
                    "rbac.evaluate.inactive_principal tenant_id=%s user_id=%s",
                    principal.tenant_id,
                    principal.user_id,
                )
                return set()

            role_ids = self._direct_role_ids(session, principal) | self._group_role_ids(session, principal)
            if not role_ids:
                return set()

            statement = (
                select(Permission.code)
                .join(RolePermission, col(RolePermission.permission_id) == col(Permission.id))
                .where(col(RolePermission.role_id).in_(sorted(role_ids)))
                .distinct()
            )
            return set(session.exec(statement).all())

    def _is_active_user(self, session: Session, principal: Principal) -> bool:
        statement = (
            select(User.id)
            .join(Tenant, col(Tenant.id) == col(User.tenant_id))
            .where(col(User.id) == principal.user_id)
            .where(active_in_tenant(User, principal.tenant_id))
            .where(not_deleted(Tenant))
        )
        return session.exec(statement).first() is not None

    def _direct_role_ids(self, session: Session, principal: Principal) -> set[str]:
        statement = (
            select(UserRole.role_id)
            .join(Role, col(Role.id) == col(UserRole.role_id))
            .where(col(UserRole.user_id) == principal.user_id)
            .where(col(UserRole.tenant_id) == principal.tenant_id)
            .where(active_in_tenant(Role, principal.tenant_id))
        )
        return set(session.exec(statement).all())

    def _group_role_ids(self, session: Session, principal: Principal) -> set[str]:
        statement = (
            select(GroupRole.role_id)
            .join(Group, col(Group.id) == col(GroupRole.group_id))
            .join(GroupMember, col(GroupMember.group_id) == col(Group.id))
            .join(Role, col(Role.id) == col(GroupRole.role_id))
            .where(col(GroupMember.user_id) == principal.user_id)
            .where(col(GroupMember.tenant_id) == principal.tenant_id)
            .where(col(GroupRole.tenant_id) == principal.tenant_id)
            .where(active_in_tenant(Group, principal.tenant_id))
            .where(active_in_tenant(Role, principal.tenant_id))
        )
        return set(session.exec(statement).all())
