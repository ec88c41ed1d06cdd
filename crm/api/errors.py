from __future__ import annotations

from typing import NoReturn

from fastapi import HTTPException, status

from crm.services.errors import (
    AuthError,
    ConflictError,
    IdentityError,
    InvalidReferenceError,
    NotFoundError,
)


def raise_http_error(exc: IdentityError) -> NoReturn:
    if isinstance(exc, NotFoundError):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    if isinstance(exc, ConflictError):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    if isinstance(exc, InvalidReferenceError):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"message": str(exc), "missing": exc.missing},
        ) from exc
    if isinstance(exc, AuthError):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(exc)) from exc
    raise exc
