from __future__ import annotations

import logging

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.exc import OperationalError

from crm.api.routers import groups, identity, permissions, roles, users
from crm.infra.db import check_db_ready
from crm.infra.log_config import configure_logging

configure_logging()
logger = logging.getLogger(__name__)

app = FastAPI(
    title="tenant-crm",
    description="Multi-tenant CRM with group-mediated role-based access control.",
    version="0.1.0",
)

app.include_router(identity.router, prefix="/api/identity", tags=["identity"])
app.include_router(identity.auth_router, prefix="/api/auth", tags=["auth"])
app.include_router(users.router, prefix="/api/users", tags=["users"])
app.include_router(roles.router, prefix="/api/roles", tags=["roles"])
app.include_router(groups.router, prefix="/api/groups", tags=["groups"])
app.include_router(permissions.router, prefix="/api/permissions", tags=["permissions"])


@app.exception_handler(OperationalError)
def store_unavailable(request: Request, exc: OperationalError) -> JSONResponse:
    logger.error("store.unavailable path=%s error=%s", request.url.path, exc.orig)
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"detail": "data store unavailable"},
    )


@app.get("/healthz")
def healthz() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/readyz")
def readyz() -> dict[str, object]:
    db_ok = check_db_ready()
    checks = {"db": "ok" if db_ok else "fail"}
    if not db_ok:
        raise HTTPException(
            status_code=503,
            detail={"status": "not_ready", "checks": checks},
        )
    return {"status": "ready", "checks": checks}
