from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Response, status

from crm.api.deps import CurrentPrincipal, get_access_evaluator, require_perms
from crm.api.errors import raise_http_error
from crm.domain.models import (
    BootstrapAdminRequest,
    LoginRequest,
    MeRead,
    Principal,
    TenantCreate,
    TenantRead,
    TenantUpdate,
    TokenResponse,
    UserRead,
)
from crm.domain.permissions import PERM_TENANT_READ, PERM_TENANT_UPDATE
from crm.infra.auth import create_access_token
from crm.services.access_service import AccessEvaluator
from crm.services.errors import IdentityError
from crm.services.identity_service import IdentityService
from crm.services.user_service import UserService

router = APIRouter()
auth_router = APIRouter()


def get_identity_service() -> IdentityService:
    return IdentityService()


def get_user_service() -> UserService:
    return UserService()


Service = Annotated[IdentityService, Depends(get_identity_service)]
Users = Annotated[UserService, Depends(get_user_service)]
Evaluator = Annotated[AccessEvaluator, Depends(get_access_evaluator)]


def _ensure_own_tenant(principal: Principal, tenant_id: str) -> None:
    if principal.tenant_id != tenant_id:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="tenant not found")


@router.post("/tenants", response_model=TenantRead, status_code=status.HTTP_201_CREATED)
def create_tenant(payload: TenantCreate, service: Service) -> TenantRead:
    try:
        tenant = service.create_tenant(payload)
    except IdentityError as exc:
        raise_http_error(exc)
    return TenantRead.model_validate(tenant)


@router.get("/tenants/{tenant_id}", response_model=TenantRead)
def get_tenant(
    tenant_id: str,
    principal: Annotated[Principal, Depends(require_perms(PERM_TENANT_READ))],
    service: Service,
) -> TenantRead:
    _ensure_own_tenant(principal, tenant_id)
    try:
        tenant = service.get_tenant(tenant_id)
    except IdentityError as exc:
        raise_http_error(exc)
    return TenantRead.model_validate(tenant)


@router.patch("/tenants/{tenant_id}", response_model=TenantRead)
def update_tenant(
    tenant_id: str,
    payload: TenantUpdate,
    principal: Annotated[Principal, Depends(require_perms(PERM_TENANT_UPDATE))],
    service: Service,
) -> TenantRead:
    _ensure_own_tenant(principal, tenant_id)
    try:
        tenant = service.update_tenant(tenant_id, payload)
    except IdentityError as exc:
        raise_http_error(exc)
    return TenantRead.model_validate(tenant)


@router.delete("/tenants/{tenant_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_tenant(
    tenant_id: str,
    principal: Annotated[Principal, Depends(require_perms(PERM_TENANT_UPDATE))],
    service: Service,
) -> Response:
    _ensure_own_tenant(principal, tenant_id)
    try:
        service.delete_tenant(tenant_id)
    except IdentityError as exc:
        raise_http_error(exc)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/bootstrap-admin", response_model=UserRead, status_code=status.HTTP_201_CREATED)
def bootstrap_admin(payload: BootstrapAdminRequest, service: Service, users: Users) -> UserRead:
    try:
        user = service.bootstrap_admin(payload)
    except IdentityError as exc:
        raise_http_error(exc)
    role_ids = users.role_ids_by_user(user.tenant_id, [user.id])
    return UserRead.model_validate(user).model_copy(update={"role_ids": role_ids.get(user.id, [])})


@auth_router.post("/login", response_model=TokenResponse)
def login(payload: LoginRequest, service: Service, evaluator: Evaluator) -> TokenResponse:
    try:
        user = service.authenticate(payload.tenant_id, payload.email, payload.password)
    except IdentityError as exc:
        raise_http_error(exc)
    principal = Principal(user_id=user.id, tenant_id=user.tenant_id)
    permissions = sorted(evaluator.effective_codes(principal))
    token = create_access_token(user_id=user.id, tenant_id=user.tenant_id)
    return TokenResponse(access_token=token, permissions=permissions)


@auth_router.get("/me", response_model=MeRead)
def me(principal: CurrentPrincipal, users: Users, evaluator: Evaluator) -> MeRead:
    try:
        user = users.get_user(principal.tenant_id, principal.user_id)
    except IdentityError as exc:
        raise_http_error(exc)
    role_ids = users.role_ids_by_user(principal.tenant_id, [user.id])
    return MeRead(
        user=UserRead.model_validate(user).model_copy(update={"role_ids": role_ids.get(user.id, [])}),
        permissions=sorted(evaluator.effective_codes(principal)),
    )
