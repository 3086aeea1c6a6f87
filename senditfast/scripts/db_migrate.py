"""Bring the database schema to the latest revision.

A database first created by the app's ``create_all`` has every table but no
``alembic_version`` row; it is stamped at head instead of re-created.
"""

import logging
import sys
from pathlib import Path

from alembic import command
from alembic.config import Config
from alembic.util import CommandError
from sqlalchemy import create_engine, inspect

from senditfast.core.database import DATABASE_URL, Base
import senditfast.models  # noqa: F401

logger = logging.getLogger("senditfast")

ALEMBIC_INI = Path(__file__).resolve().parents[2] / "alembic.ini"


def schema_state(sync_url: str) -> tuple[bool, set[str]]:
    """Whether alembic tracks the database, and which app tables already exist."""
    engine = create_engine(sync_url)
    try:
        existing = set(inspect(engine).get_table_names())
    finally:
        engine.dispose()
    return "alembic_version" in existing, existing & set(Base.metadata.tables)


def main() -> int:
    logging.basicConfig(level=logging.INFO, format="[db-migrate] %(message)s")
    cfg = Config(str(ALEMBIC_INI))
    cfg.set_main_option("script_location", str(ALEMBIC_INI.parent / "alembic"))

    tracked, app_tables = schema_state(DATABASE_URL.replace("+aiosqlite", ""))
    try:
        if app_tables and not tracked:
            logger.info("found %s untracked tables, stamping head", len(app_tables))
            command.stamp(cfg, "head")
        command.upgrade(cfg, "head")
    except CommandError as e:
        logger.error("alembic failed: %s", e)
        return 1
    logger.info("schema is at head")
    return 0


if __name__ == "__main__":
    sys.exit(main())
