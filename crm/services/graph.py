from __future__ import annotations

from collections.abc import Sequence
from typing import Any, TypeVar

import sqlalchemy as sa
from sqlalchemy.sql.elements import ColumnElement
from sqlmodel import Session, SQLModel, col, select

from crm.domain.models import Tenant
from crm.domain.permissions import dedupe
from crm.domain.scoping import active_in_tenant, not_deleted
from crm.services.errors import InvalidReferenceError, NotFoundError

ModelT = TypeVar("ModelT", bound=SQLModel)


def require_tenant(session: Session, tenant_id: str) -> Tenant:
    tenant = session.exec(
        select(Tenant).where(col(Tenant.id) == tenant_id).where(not_deleted(Tenant))
    ).first()
    if tenant is None:
        raise NotFoundError("tenant not found")
    return tenant


def get_scoped(
    session: Session,
    model: type[ModelT],
    tenant_id: str,
    row_id: str,
    *,
    for_update: bool = False,
) -> ModelT | None:
    """Load an active row of the tenant.

    ``for_update`` locks the row until the transaction ends; edge replaces take
    it on the owner so two replaces of the same edge set run one after another.
    """
    statement = select(model).where(col(model.id) == row_id).where(active_in_tenant(model, tenant_id))  # type: ignore[attr-defined]
    if for_update:
        statement = statement.with_for_update()
    return session.exec(statement).first()


def resolve_scoped_ids(
    session: Session,
    model: type[SQLModel],
    tenant_id: str,
    ids: Sequence[str],
    *,
    label: str,
) -> list[str]:
    """Return ``ids`` deduplicated, or fail if any is not an active row of the tenant."""
    wanted = dedupe(list(ids))
    if not wanted:
        return []
    found = set(
        session.exec(
            select(model.id)  # type: ignore[attr-defined]
            .where(col(model.id).in_(wanted))  # type: ignore[attr-defined]
            .where(active_in_tenant(model, tenant_id))
        ).all()
    )
    missing = [item for item in wanted if item not in found]
    if missing:
        raise InvalidReferenceError(f"{label} not found in tenant: {', '.join(missing)}", missing)
    return wanted


def replace_edges(
    session: Session,
    model: type[SQLModel],
    owner_filter: ColumnElement[bool],
    rows: Sequence[Any],
) -> None:
    """Swap every edge matching ``owner_filter`` for ``rows``.

    The delete targets whatever matches at execution time, not a previously
    read snapshot, so the last replace to commit wins. Caller owns the
    transaction; readers see either the old edge set or the new one.
    """
    session.execute(
        sa.delete(model).where(owner_filter).execution_options(synchronize_session=False)
    )
    session.add_all(list(rows))
    session.flush()
