from __future__ import annotations

from collections.abc import Callable
from typing import Annotated

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer

from crm.domain.models import Principal
from crm.infra.auth import decode_access_token
from crm.services.access_service import AccessEvaluator

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login", auto_error=False)


def get_access_evaluator() -> AccessEvaluator:
    return AccessEvaluator()


def get_current_principal(token: str | None = Depends(oauth2_scheme)) -> Principal:
    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
            headers={"WWW-Authenticate": "Bearer"},
        )
    try:
        claims = decode_access_token(token)
    except Exception as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token",
            headers={"WWW-Authenticate": "Bearer"},
        ) from exc
    return Principal(user_id=str(claims["sub"]), tenant_id=str(claims["tenant_id"]))


def require_perms(*permissions: str) -> Callable[..., Principal]:
    """Dependency factory: the caller must hold every listed permission."""
    required = frozenset(item for item in permissions if item)

    def _checker(
        principal: Annotated[Principal, Depends(get_current_principal)],
        evaluator: Annotated[AccessEvaluator, Depends(get_access_evaluator)],
    ) -> Principal:
        if not evaluator.has_permissions(principal, required):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Insufficient permissions: {', '.join(sorted(required))}",
            )
        return principal

    return _checker


CurrentPrincipal = Annotated[Principal, Depends(get_current_principal)]
