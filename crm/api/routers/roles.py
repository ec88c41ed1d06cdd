from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Response, status

from crm.api.deps import require_perms
from crm.api.errors import raise_http_error
from crm.domain.models import (
    PermissionCodesReplace,
    Principal,
    Role,
    RoleCreate,
    RoleRead,
    RoleUpdate,
)
from crm.domain.permissions import (
    PERM_ROLE_CREATE,
    PERM_ROLE_DELETE,
    PERM_ROLE_READ,
    PERM_ROLE_UPDATE,
)
from crm.services.errors import IdentityError
from crm.services.role_service import RoleService

router = APIRouter()


def get_role_service() -> RoleService:
    return RoleService()


Service = Annotated[RoleService, Depends(get_role_service)]


def _to_read(service: RoleService, roles: list[Role]) -> list[RoleRead]:
    codes = service.permission_codes_by_role([item.id for item in roles])
    return [
        RoleRead.model_validate(item).model_copy(update={"permission_codes": codes.get(item.id, [])})
        for item in roles
    ]


@router.get("", response_model=list[RoleRead])
def list_roles(
    principal: Annotated[Principal, Depends(require_perms(PERM_ROLE_READ))],
    service: Service,
) -> list[RoleRead]:
    return _to_read(service, service.list_roles(principal.tenant_id))


@router.post("", response_model=RoleRead, status_code=status.HTTP_201_CREATED)
def create_role(
    payload: RoleCreate,
    principal: Annotated[Principal, Depends(require_perms(PERM_ROLE_CREATE))],
    service: Service,
) -> RoleRead:
    try:
        role = service.create_role(principal.tenant_id, payload)
    except IdentityError as exc:
        raise_http_error(exc)
    return _to_read(service, [role])[0]


@router.get("/{role_id}", response_model=RoleRead)
def get_role(
    role_id: str,
    principal: Annotated[Principal, Depends(require_perms(PERM_ROLE_READ))],
    service: Service,
) -> RoleRead:
    try:
        role = service.get_role(principal.tenant_id, role_id)
    except IdentityError as exc:
        raise_http_error(exc)
    return _to_read(service, [role])[0]


@router.patch("/{role_id}", response_model=RoleRead)
def update_role(
    role_id: str,
    payload: RoleUpdate,
    principal: Annotated[Principal, Depends(require_perms(PERM_ROLE_UPDATE))],
    service: Service,
) -> RoleRead:
    try:
        role = service.update_role(principal.tenant_id, role_id, payload)
    except IdentityError as exc:
        raise_http_error(exc)
    return _to_read(service, [role])[0]


@router.put("/{role_id}/permissions", response_model=RoleRead)
def set_role_permissions(
    role_id: str,
    payload: PermissionCodesReplace,
    principal: Annotated[Principal, Depends(require_perms(PERM_ROLE_UPDATE))],
    service: Service,
) -> RoleRead:
    try:
        role = service.set_role_permissions(principal.tenant_id, role_id, payload.permission_codes)
    except IdentityError as exc:
        raise_http_error(exc)
    return _to_read(service, [role])[0]


@router.delete("/{role_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_role(
    role_id: str,
    principal: Annotated[Principal, Depends(require_perms(PERM_ROLE_DELETE))],
    service: Service,
) -> Response:
    try:
        service.delete_role(principal.tenant_id, role_id)
    except IdentityError as exc:
        raise_http_error(exc)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
