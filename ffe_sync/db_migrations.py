from __future__ import annotations

import logging
from pathlib import Path

import click
from alembic import command
from alembic.config import Config as AlembicConfig
from flask import Flask


logger = logging.getLogger("ffe_sync.migrations")

APP_URL_ATTRIBUTE = "ffe_sync_database_url"


def _project_root() -> Path:
    return Path(__file__).resolve().parents[1]


def normalize_database_url(raw_value: str | None) -> str:
    """Turns a DB_PATH value (file path or URL) into a SQLAlchemy URL."""
    value = (raw_value or "").strip()
    if not value:
        raise RuntimeError("DB_PATH is not set; cannot run migrations.")

    if value.startswith("postgres://"):
        value = "postgresql://" + value[len("postgres://") :]
    if value.startswith(("postgresql://", "postgresql+", "sqlite://", "sqlite+pysqlite://")):
        return value

    sqlite_path = Path(value).expanduser().resolve()
    return f"sqlite:///{sqlite_path.as_posix()}"


def build_alembic_config(app: Flask) -> AlembicConfig:
    root = _project_root()
    alembic_ini = root / "alembic.ini"
    if not alembic_ini.exists():
        raise RuntimeError(f"alembic.ini not found in {root}.")

    alembic_cfg = AlembicConfig(str(alembic_ini))
    alembic_cfg.set_main_option("script_location", str((root / "migrations").as_posix()))
    # env.py prefers this over DATABASE_URL so the CLI always migrates the app's own database.
    alembic_cfg.attributes[APP_URL_ATTRIBUTE] = normalize_database_url(app.config.get("DB_PATH"))
    return alembic_cfg


def register_db_cli(app: Flask) -> None:
    @app.cli.group("db")
    def db_group() -> None:
        """Procurement schema migrations."""

    @db_group.command("upgrade")
    @click.argument("revision", required=False, default="head")
    def db_upgrade(revision: str) -> None:
        command.upgrade(build_alembic_config(app), revision)
        logger.info("schema_upgraded", extra={"revision": revision})
        click.echo(f"Upgraded to {revision}.")

    @db_group.command("downgrade")
    @click.argument("revision", required=False, default="-1")
    def db_downgrade(revision: str) -> None:
        command.downgrade(build_alembic_config(app), revision)
        logger.warning("schema_downgraded", extra={"revision": revision})
        click.echo(f"Downgraded to {revision}.")

    @db_group.command("stamp")
    @click.argument("revision", required=False, default="head")
    def db_stamp(revision: str) -> None:
        """Marks a database built by DB_AUTO_INIT as migrated."""
        command.stamp(build_alembic_config(app), revision)
        click.echo(f"Stamped {revision}.")

    @db_group.command("current")
    def db_current() -> None:
        command.current(build_alembic_config(app), verbose=True)

    @db_group.command("history")
    def db_history() -> None:
        command.history(build_alembic_config(app))
