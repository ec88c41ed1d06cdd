from __future__ import annotations

import logging

from sqlmodel import Session, col, select

from crm.domain.models import Permission
from crm.domain.permissions import PERMISSION_CATALOG, dedupe
from crm.infra.db import get_engine
from crm.services.errors import InvalidReferenceError

logger = logging.getLogger(__name__)


class CatalogService:
    """Global permission vocabulary. Request handling only ever reads it."""

    def _session(self) -> Session:
        return Session(get_engine(), expire_on_commit=False)

    def seed(self, catalog: dict[str, str] | None = None) -> list[Permission]:
        with self._session() as session:
            permissions = self.ensure_catalog(session, catalog)
            session.commit()
            return permissions

    def ensure_catalog(self, session: Session, catalog: dict[str, str] | None = None) -> list[Permission]:
        """Upsert the catalog inside the caller's transaction; the caller commits."""
        entries = PERMISSION_CATALOG if catalog is None else catalog
        existing = session.exec(select(Permission)).all()
        by_code = {item.code: item for item in existing}
        created = 0
        updated = 0
        for code, description in entries.items():
            permission = by_code.get(code)
            if permission is None:
                session.add(Permission(code=code, description=description))
                created += 1
                continue
            if permission.description != description:
                permission.description = description
                session.add(permission)
                updated += 1
        if created or updated:
            session.flush()
            logger.info("rbac.catalog.upserted created=%s updated=%s", created, updated)
        return list(session.exec(select(Permission).order_by(col(Permission.code))).all())

    def list_permissions(self) -> list[Permission]:
        with self._session() as session:
            return list(session.exec(select(Permission).order_by(col(Permission.code))).all())

    def resolve_codes(self, session: Session, codes: list[str]) -> list[Permission]:
        """Map codes to catalog rows; unknown codes fail the whole request."""
        wanted = dedupe(codes)
        if not wanted:
            return []
        rows = list(session.exec(select(Permission).where(col(Permission.code).in_(wanted))).all())
        by_code = {item.code: item for item in rows}
        missing = [code for code in wanted if code not in by_code]
        if missing:
            raise InvalidReferenceError(f"unknown permission codes: {', '.join(missing)}", missing)
        return [by_code[code] for code in wanted]
