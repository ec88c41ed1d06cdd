from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends

from crm.api.deps import require_perms
from crm.domain.models import PermissionRead
from crm.domain.permissions import PERM_PERMISSION_READ
from crm.services.catalog_service import CatalogService

router = APIRouter()


def get_catalog_service() -> CatalogService:
    return CatalogService()


@router.get(
    "",
    response_model=list[PermissionRead],
    dependencies=[Depends(require_perms(PERM_PERMISSION_READ))],
)
def list_permissions(service: Annotated[CatalogService, Depends(get_catalog_service)]) -> list[PermissionRead]:
    return [PermissionRead.model_validate(item) for item in service.list_permissions()]
