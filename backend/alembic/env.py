from logging.config import fileConfig

from sqlalchemy import engine_from_config, pool
from alembic import context

import app.models  # noqa: F401 - registers users, user_refresh_tokens, audit_log
from app.config import settings
from app.db.base import Base

config = context.config
if config.config_file_name is not None:
    fileConfig(config.config_file_name)
# Sync driver URL (psycopg2 for Postgres, sqlite3 for local files)
config.set_main_option("sqlalchemy.url", settings.sync_database_url)

target_metadata = Base.metadata
# SQLite cannot ALTER most constraints in place
render_as_batch = settings.is_sqlite


def run_migrations_offline() -> None:
    context.configure(
        url=config.get_main_option("sqlalchemy.url"),
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        render_as_batch=render_as_batch,
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    connectable = engine_from_config(
        config.get_section(config.config_ini_section, {}),
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )
    with connectable.connect() as connection:
        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            compare_type=True,
            render_as_batch=render_as_batch,
        )
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
