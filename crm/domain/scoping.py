from __future__ import annotations

from typing import Any

from sqlalchemy import and_
from sqlalchemy.sql.elements import ColumnElement
from sqlmodel import col


def not_deleted(model: Any) -> ColumnElement[bool]:
    return col(model.deleted_at).is_(None)


def active_in_tenant(model: Any, tenant_id: str) -> ColumnElement[bool]:
    """Row belongs to ``tenant_id`` and has not been soft-deleted.

    Every lookup feeding access checks or edge administration goes through
    this predicate so a deleted or foreign row can never leak in.
    """
    return and_(col(model.tenant_id) == tenant_id, not_deleted(model))
