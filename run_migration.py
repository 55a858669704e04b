#!/usr/bin/env python3
"""
Deployment entry point for schema upgrades.
Applies pending Alembic revisions before the server starts.
"""
import logging
import sys

from alembic import command
from alembic.config import Config
from sqlalchemy.exc import SQLAlchemyError

logger = logging.getLogger("run_migration")


def run_migrations(revision: str = "head") -> int:
    """Upgrade the database to ``revision``; returns a process exit code."""
    config = Config("alembic.ini")
    logger.info(f"Upgrading database schema to {revision}")

    try:
        command.upgrade(config, revision)
    except SQLAlchemyError as e:
        logger.error(f"Migration failed: {e}", exc_info=True)
        return 1

    logger.info("Database schema is up to date")
    return 0


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s [%(name)s] %(message)s")
    sys.exit(run_migrations(sys.argv[1] if len(sys.argv) > 1 else "head"))
