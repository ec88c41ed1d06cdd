from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Response, status

from crm.api.deps import require_perms
from crm.api.errors import raise_http_error
from crm.domain.models import (
    Group,
    GroupCreate,
    GroupRead,
    GroupUpdate,
    Principal,
    RoleIdsReplace,
    UserIdsReplace,
)
from crm.domain.permissions import (
    PERM_GROUP_CREATE,
    PERM_GROUP_DELETE,
    PERM_GROUP_READ,
    PERM_GROUP_UPDATE,
    PERM_ROLE_UPDATE,
)
from crm.services.errors import IdentityError
from crm.services.group_service import GroupService

router = APIRouter()


def get_group_service() -> GroupService:
    return GroupService()


Service = Annotated[GroupService, Depends(get_group_service)]


def _to_read(service: GroupService, tenant_id: str, groups: list[Group]) -> list[GroupRead]:
    edges = service.edges_by_group(tenant_id, [item.id for item in groups])
    rows: list[GroupRead] = []
    for item in groups:
        member_ids, role_ids = edges.get(item.id, ([], []))
        rows.append(
            GroupRead.model_validate(item).model_copy(
                update={"member_user_ids": member_ids, "role_ids": role_ids},
            )
        )
    return rows


@router.get("", response_model=list[GroupRead])
def list_groups(
    principal: Annotated[Principal, Depends(require_perms(PERM_GROUP_READ))],
    service: Service,
) -> list[GroupRead]:
    return _to_read(service, principal.tenant_id, service.list_groups(principal.tenant_id))


@router.post("", response_model=GroupRead, status_code=status.HTTP_201_CREATED)
def create_group(
    payload: GroupCreate,
    principal: Annotated[Principal, Depends(require_perms(PERM_GROUP_CREATE))],
    service: Service,
) -> GroupRead:
    try:
        group = service.create_group(principal.tenant_id, payload)
    except IdentityError as exc:
        raise_http_error(exc)
    return _to_read(service, principal.tenant_id, [group])[0]


@router.get("/{group_id}", response_model=GroupRead)
def get_group(
    group_id: str,
    principal: Annotated[Principal, Depends(require_perms(PERM_GROUP_READ))],
    service: Service,
) -> GroupRead:
    try:
        group = service.get_group(principal.tenant_id, group_id)
    except IdentityError as exc:
        raise_http_error(exc)
    return _to_read(service, principal.tenant_id, [group])[0]


@router.patch("/{group_id}", response_model=GroupRead)
def update_group(
    group_id: str,
    payload: GroupUpdate,
    principal: Annotated[Principal, Depends(require_perms(PERM_GROUP_UPDATE))],
    service: Service,
) -> GroupRead:
    try:
        group = service.update_group(principal.tenant_id, group_id, payload)
    except IdentityError as exc:
        raise_http_error(exc)
    return _to_read(service, principal.tenant_id, [group])[0]


@router.put("/{group_id}/members", response_model=GroupRead)
def set_group_members(
    group_id: str,
    payload: UserIdsReplace,
    principal: Annotated[Principal, Depends(require_perms(PERM_GROUP_UPDATE))],
    service: Service,
) -> GroupRead:
    try:
        group = service.set_members(principal.tenant_id, group_id, payload.user_ids)
    except IdentityError as exc:
        raise_http_error(exc)
    return _to_read(service, principal.tenant_id, [group])[0]


@router.put("/{group_id}/roles", response_model=GroupRead)
def set_group_roles(
    group_id: str,
    payload: RoleIdsReplace,
    principal: Annotated[Principal, Depends(require_perms(PERM_ROLE_UPDATE))],
    service: Service,
) -> GroupRead:
    try:
        group = service.set_roles(principal.tenant_id, group_id, payload.role_ids)
    except IdentityError as exc:
        raise_http_error(exc)
    return _to_read(service, principal.tenant_id, [group])[0]


@router.delete("/{group_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_group(
    group_id: str,
    principal: Annotated[Principal, Depends(require_perms(PERM_GROUP_DELETE))],
    service: Service,
) -> Response:
    try:
        service.delete_group(principal.tenant_id, group_id)
    except IdentityError as exc:
        raise_http_error(exc)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
