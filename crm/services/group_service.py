from __future__ import annotations

import logging
from collections import defaultdict

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, col, select

from crm.domain.models import (
    Group,
    GroupCreate,
    GroupMember,
    GroupRole,
    GroupUpdate,
    Role,
    User,
    now_utc,
)
from crm.domain.scoping import active_in_tenant
from crm.infra.db import get_engine
from crm.services.errors import ConflictError, NotFoundError
from crm.services.graph import get_scoped, replace_edges, require_tenant, resolve_scoped_ids

logger = logging.getLogger(__name__)


class GroupService:
    def _session(self) -> Session:
        return Session(get_engine(), expire_on_commit=False)

    def _name_taken(self, session: Session, tenant_id: str, name: str, exclude_id: str | None = None) -> bool:
        statement = select(Group.id).where(active_in_tenant(Group, tenant_id)).where(col(Group.name) == name)
        if exclude_id is not None:
            statement = statement.where(col(Group.id) != exclude_id)
        return session.exec(statement).first() is not None

    def _latest_deleted(self, session: Session, tenant_id: str, name: str) -> Group | None:
        statement = (
            select(Group)
            .where(col(Group.tenant_id) == tenant_id)
            .where(col(Group.name) == name)
            .where(col(Group.deleted_at).is_not(None))
            .order_by(col(Group.deleted_at).desc())
        )
        return session.exec(statement).first()

    def _require_group(
        self,
        session: Session,
        tenant_id: str,
        group_id: str,
        *,
        for_update: bool = False,
    ) -> Group:
        group = get_scoped(session, Group, tenant_id, group_id, for_update=for_update)
        if group is None:
            raise NotFoundError("group not found")
        return group

    def list_groups(self, tenant_id: str) -> list[Group]:
        with self._session() as session:
            statement = select(Group).where(active_in_tenant(Group, tenant_id)).order_by(col(Group.created_at).desc())
            return list(session.exec(statement).all())

    def get_group(self, tenant_id: str, group_id: str) -> Group:
        with self._session() as session:
            return self._require_group(session, tenant_id, group_id)

    def edges_by_group(self, tenant_id: str, group_ids: list[str]) -> dict[str, tuple[list[str], list[str]]]:
        """Active member ids and active role ids for each group."""
        if not group_ids:
            return {}
        with self._session() as session:
            members = session.exec(
                select(GroupMember.group_id, GroupMember.user_id)
                .join(User, col(User.id) == col(GroupMember.user_id))
                .where(col(GroupMember.tenant_id) == tenant_id)
                .where(col(GroupMember.group_id).in_(group_ids))
                .where(active_in_tenant(User, tenant_id))
            ).all()
            roles = session.exec(
                select(GroupRole.group_id, GroupRole.role_id)
                .join(Role, col(Role.id) == col(GroupRole.role_id))
                .where(col(GroupRole.tenant_id) == tenant_id)
                .where(col(GroupRole.group_id).in_(group_ids))
                .where(active_in_tenant(Role, tenant_id))
            ).all()
        member_ids: dict[str, list[str]] = defaultdict(list)
        role_ids: dict[str, list[str]] = defaultdict(list)
        for group_id, user_id in members:
            member_ids[group_id].append(user_id)
        for group_id, role_id in roles:
            role_ids[group_id].append(role_id)
        return {
            group_id: (sorted(member_ids[group_id]), sorted(role_ids[group_id]))
            for group_id in group_ids
        }

    def create_group(self, tenant_id: str, payload: GroupCreate) -> Group:
        with self._session() as session:
            require_tenant(session, tenant_id)
            if self._name_taken(session, tenant_id, payload.name):
                raise ConflictError("group name already exists in tenant")

            group = self._latest_deleted(session, tenant_id, payload.name)
            restored = group is not None
            if group is None:
                group = Group(tenant_id=tenant_id, name=payload.name, description=payload.description)
            else:
                group.deleted_at = None
                group.updated_at = now_utc()
                if payload.description is not None:
                    group.description = payload.description
            session.add(group)
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise ConflictError("group name already exists in tenant") from exc
            session.refresh(group)
            logger.info(
                "rbac.group.%s tenant_id=%s group_id=%s",
                "restored" if restored else "created",
                tenant_id,
                group.id,
            )
            return group

    def update_group(self, tenant_id: str, group_id: str, payload: GroupUpdate) -> Group:
        with self._session() as session:
            group = self._require_group(session, tenant_id, group_id)
            if payload.name is not None and payload.name != group.name:
                if self._name_taken(session, tenant_id, payload.name, exclude_id=group.id):
                    raise ConflictError("group name already exists in tenant")
                group.name = payload.name
            if payload.description is not None:
                group.description = payload.description
            group.updated_at = now_utc()
            session.add(group)
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise ConflictError("group name already exists in tenant") from exc
            session.refresh(group)
            return group

    def delete_group(self, tenant_id: str, group_id: str) -> None:
        with self._session() as session:
            group = self._require_group(session, tenant_id, group_id)
            group.deleted_at = now_utc()
            session.add(group)
            session.commit()
            logger.info("rbac.group.deleted tenant_id=%s group_id=%s", tenant_id, group_id)

    def set_members(self, tenant_id: str, group_id: str, user_ids: list[str]) -> Group:
        with self._session() as session:
            group = self._require_group(session, tenant_id, group_id, for_update=True)
            members = resolve_scoped_ids(session, User, tenant_id, user_ids, label="users")
            replace_edges(
                session,
                GroupMember,
                col(GroupMember.group_id) == group.id,
                [GroupMember(tenant_id=tenant_id, group_id=group.id, user_id=user_id) for user_id in members],
            )
            group.updated_at = now_utc()
            session.add(group)
            session.commit()
            session.refresh(group)
            logger.info(
                "rbac.group.members.replaced tenant_id=%s group_id=%s count=%s",
                tenant_id,
                group.id,
                len(members),
            )
            return group

    def set_roles(self, tenant_id: str, group_id: str, role_ids: list[str]) -> Group:
        with self._session() as session:
            group = self._require_group(session, tenant_id, group_id, for_update=True)
            roles = resolve_scoped_ids(session, Role, tenant_id, role_ids, label="roles")
            replace_edges(
                session,
                GroupRole,
                col(GroupRole.group_id) == group.id,
                [GroupRole(tenant_id=tenant_id, group_id=group.id, role_id=role_id) for role_id in roles],
            )
            group.updated_at = now_utc()
            session.add(group)
            session.commit()
            session.refresh(group)
            logger.info(
                "rbac.group.roles.replaced tenant_id=%s group_id=%s count=%s",
                tenant_id,
                group.id,
                len(roles),
            )
            return group
