from __future__ import annotations

import logging
from pathlib import Path

from alembic import command
from alembic.config import Config
from alembic.runtime.migration import MigrationContext
from alembic.script import ScriptDirectory
from sqlalchemy.engine import Engine

from portal.core import config

logger = logging.getLogger(__name__)
MIGRATIONS_PREFIX = "[MIGRATIONS]"


def validate_database_environment() -> None:
    if config.IS_PROD and config.DATABASE_URL.startswith("sqlite"):
        logger.critical("%s SQLite is forbidden in production", MIGRATIONS_PREFIX)
        raise RuntimeError("SQLite is forbidden in production environment")


def _alembic_config(path: Path) -> Config:
    if not path.exists():
        logger.critical("%s alembic config not found path=%s", MIGRATIONS_PREFIX, path)
        raise RuntimeError("alembic config not found")
    alembic_cfg = Config(str(path))
    alembic_cfg.attributes["configure_logger"] = False
    return alembic_cfg


def apply_migrations(*, alembic_config_path: Path) -> None:
    """Upgrade to head when AUTO_APPLY_MIGRATIONS is set."""
    if not config.AUTO_APPLY_MIGRATIONS:
        logger.info("%s auto migration off", MIGRATIONS_PREFIX)
        return
    logger.info("%s applying migrations to head", MIGRATIONS_PREFIX)
    command.upgrade(_alembic_config(alembic_config_path), "head")
    logger.info("%s migrations applied", MIGRATIONS_PREFIX)


def ensure_migrations_applied(*, engine: Engine, alembic_config_path: Path) -> None:
    """Refuse to serve a database whose revision is behind the migration scripts.

    Test runs and local SQLite databases built by ``create_all`` are not checked.
    """
    if config.IS_TEST or (config.IS_DEV and config.DATABASE_URL.startswith("sqlite")):
        logger.info("%s migration check skipped", MIGRATIONS_PREFIX)
        return

    expected_heads = set(ScriptDirectory.from_config(_alembic_config(alembic_config_path)).get_heads())
    with engine.connect() as connection:
        current_heads = set(MigrationContext.configure(connection).get_current_heads())

    if current_heads != expected_heads:
        logger.critical(
            "%s database revision mismatch current=%s expected=%s",
            MIGRATIONS_PREFIX,
            sorted(current_heads),
            sorted(expected_heads),
        )
        raise RuntimeError("Pending migrations detected")
    logger.info("%s migration state verified", MIGRATIONS_PREFIX)
