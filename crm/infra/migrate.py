from __future__ import annotations

import logging
import os

from alembic import command
from alembic.config import Config

from crm.infra.log_config import configure_logging

ALEMBIC_INI = os.getenv("ALEMBIC_INI", "alembic.ini")

logger = logging.getLogger(__name__)


def run_upgrade_head() -> None:
    config = Config(ALEMBIC_INI)
    logger.info("db.migrate.upgrade target=head ini=%s", ALEMBIC_INI)
    command.upgrade(config, "head")


if __name__ == "__main__":
    configure_logging()
    run_upgrade_head()
