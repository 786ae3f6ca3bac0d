from __future__ import annotations

import os
from logging.config import fileConfig

from alembic import context
from sqlalchemy import engine_from_config, pool

from ffe_sync.db_migrations import APP_URL_ATTRIBUTE, normalize_database_url


config = context.config

if config.config_file_name is not None:
    # App loggers stay enabled when migrations run inside the Flask CLI.
    fileConfig(config.config_file_name, disable_existing_loggers=False)

# Schema is hand-written SQL shared with ffe_sync.db; there is no ORM metadata to autogenerate from.
target_metadata = None


def _database_url() -> str:
    app_url = config.attributes.get(APP_URL_ATTRIBUTE)
    if app_url:
        return app_url
    env_url = os.environ.get("DATABASE_URL") or os.environ.get("DB_PATH")
    return normalize_database_url(env_url or config.get_main_option("sqlalchemy.url"))


def run_migrations_offline() -> None:
    context.configure(
        url=_database_url(),
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    section = config.get_section(config.config_ini_section) or {}
    section["sqlalchemy.url"] = _database_url()

    connectable = engine_from_config(
        section,
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
        future=True,
    )

    with connectable.connect() as connection:
        context.configure(connection=connection, target_metadata=target_metadata)

        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
