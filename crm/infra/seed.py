from __future__ import annotations

import logging

from crm.infra.log_config import configure_logging
from crm.services.catalog_service import CatalogService

logger = logging.getLogger(__name__)


def run_seed() -> int:
    permissions = CatalogService().seed()
    logger.info("rbac.catalog.seeded count=%s", len(permissions))
    return len(permissions)


if __name__ == "__main__":
    configure_logging()
    run_seed()
