from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Query, Response, status

from crm.api.deps import require_perms
from crm.api.errors import raise_http_error
from crm.domain.models import (
    Principal,
    RoleIdsReplace,
    User,
    UserCreate,
    UserRead,
    UserStatus,
    UserType,
    UserUpdate,
)
from crm.domain.permissions import (
    PERM_USER_CREATE,
    PERM_USER_DELETE,
    PERM_USER_READ,
    PERM_USER_UPDATE,
)
from crm.services.errors import IdentityError
from crm.services.user_service import UserService

router = APIRouter()


def get_user_service() -> UserService:
    return UserService()


Service = Annotated[UserService, Depends(get_user_service)]


def _to_read(service: UserService, tenant_id: str, users: list[User]) -> list[UserRead]:
    role_ids = service.role_ids_by_user(tenant_id, [item.id for item in users])
    return [
        UserRead.model_validate(item).model_copy(update={"role_ids": role_ids.get(item.id, [])})
        for item in users
    ]


@router.get("", response_model=list[UserRead])
def list_users(
    principal: Annotated[Principal, Depends(require_perms(PERM_USER_READ))],
    service: Service,
    status_filter: Annotated[UserStatus | None, Query(alias="status")] = None,
    user_type: UserType | None = None,
) -> list[UserRead]:
    users = service.list_users(principal.tenant_id, status=status_filter, user_type=user_type)
    return _to_read(service, principal.tenant_id, users)


@router.post("", response_model=UserRead, status_code=status.HTTP_201_CREATED)
def create_user(
    payload: UserCreate,
    principal: Annotated[Principal, Depends(require_perms(PERM_USER_CREATE))],
    service: Service,
) -> UserRead:
    try:
        user = service.create_user(principal.tenant_id, payload)
    except IdentityError as exc:
        raise_http_error(exc)
    return _to_read(service, principal.tenant_id, [user])[0]


@router.get("/{user_id}", response_model=UserRead)
def get_user(
    user_id: str,
    principal: Annotated[Principal, Depends(require_perms(PERM_USER_READ))],
    service: Service,
) -> UserRead:
    try:
        user = service.get_user(principal.tenant_id, user_id)
    except IdentityError as exc:
        raise_http_error(exc)
    return _to_read(service, principal.tenant_id, [user])[0]


@router.patch("/{user_id}", response_model=UserRead)
def update_user(
    user_id: str,
    payload: UserUpdate,
    principal: Annotated[Principal, Depends(require_perms(PERM_USER_UPDATE))],
    service: Service,
) -> UserRead:
    try:
        user = service.update_user(principal.tenant_id, user_id, payload)
    except IdentityError as exc:
        raise_http_error(exc)
    return _to_read(service, principal.tenant_id, [user])[0]


@router.put("/{user_id}/roles", response_model=UserRead)
def set_user_roles(
    user_id: str,
    payload: RoleIdsReplace,
    principal: Annotated[Principal, Depends(require_perms(PERM_USER_UPDATE))],
    service: Service,
) -> UserRead:
    try:
        user = service.set_user_roles(principal.tenant_id, user_id, payload.role_ids)
    except IdentityError as exc:
        raise_http_error(exc)
    return _to_read(service, principal.tenant_id, [user])[0]


@router.delete("/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_user(
    user_id: str,
    principal: Annotated[Principal, Depends(require_perms(PERM_USER_DELETE))],
    service: Service,
) -> Response:
    try:
        service.delete_user(principal.tenant_id, user_id)
    except IdentityError as exc:
        raise_http_error(exc)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
