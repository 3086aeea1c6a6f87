from logging.config import fileConfig

from sqlalchemy import create_engine, pool

from alembic import context

import senditfast.models  # noqa: F401  registers every table on Base.metadata
from senditfast.core.database import DATABASE_URL, Base

config = context.config
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata

# Alembic drives a blocking engine; the app's async driver is swapped out.
SYNC_URL = DATABASE_URL.replace("+aiosqlite", "")
IS_SQLITE = SYNC_URL.startswith("sqlite")

COMPARE_OPTS = dict(
    target_metadata=target_metadata,
    compare_type=True,
    compare_server_default=True,
    # ALTER on SQLite needs the copy-and-move table strategy.
    render_as_batch=IS_SQLITE,
)


def run_migrations_offline():
    context.configure(url=SYNC_URL, literal_binds=True, dialect_opts={"paramstyle": "named"}, **COMPARE_OPTS)
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online():
    engine = create_engine(SYNC_URL, poolclass=pool.NullPool)
    try:
        with engine.connect() as connection:
            context.configure(connection=connection, **COMPARE_OPTS)
            with context.begin_transaction():
                context.run_migrations()
    finally:
        engine.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
