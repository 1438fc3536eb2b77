"""Schema management: Alembic upgrades and SQLite backups."""

from __future__ import annotations

import shutil
from pathlib import Path

from alembic import command
from alembic.config import Config
from alembic.runtime.migration import MigrationContext
from alembic.script import ScriptDirectory
from sqlalchemy import inspect
from sqlalchemy.engine import make_url

from .config import settings
from .database import engine

MIGRATIONS_DIR = Path(__file__).resolve().parent / "alembic"


def init_db() -> None:
    upgrade_database(make_backup=False)


def _alembic_config() -> Config:
    config = Config()
    config.set_main_option("script_location", str(MIGRATIONS_DIR))
    # Alembic options go through configparser interpolation; "%" must be doubled.
    url = engine.url.render_as_string(hide_password=False)
    config.set_main_option("sqlalchemy.url", url.replace("%", "%%"))
    return config


def _sqlite_path(url: str) -> Path | None:
    parsed = make_url(url)
    if parsed.get_backend_name() != "sqlite":
        return None
    if not parsed.database or parsed.database == ":memory:":
        return None
    return Path(parsed.database)


def _backup_sqlite_file() -> str | None:
    db_path = _sqlite_path(settings.database_url)
    if not db_path or not db_path.exists():
        return None
    backup_path = db_path.with_suffix(db_path.suffix + ".bak")
    shutil.copy(db_path, backup_path)
    return f"Backup created at {backup_path}"


def _is_at_head(config: Config) -> bool:
    head = ScriptDirectory.from_config(config).get_current_head()
    with engine.connect() as conn:
        current = MigrationContext.configure(conn).get_current_revision()
    return current == head


def upgrade_database(*, make_backup: bool = True) -> list[str]:
    """Bring the schema to the latest revision.

    A database without Alembic tracking but with the ``events`` table (for
    example one built by ``metadata.create_all``) is stamped rather than
    migrated. Returns the actions taken; empty when already current.
    """
    config = _alembic_config()
    inspector = inspect(engine)
    has_alembic = inspector.has_table("alembic_version")
    has_events = inspector.has_table("events")
    if has_alembic and _is_at_head(config):
        return []

    actions: list[str] = []
    if make_backup:
        backup = _backup_sqlite_file()
        if backup:
            actions.append(backup)

    if not has_alembic and not has_events:
        command.upgrade(config, "head")
        actions.append("Ran Alembic upgrade to head (fresh database)")
    elif not has_alembic:
        command.stamp(config, "head")
        actions.append("Stamped existing database to Alembic head")
    else:
        command.upgrade(config, "head")
        actions.append("Applied Alembic migrations to head")
    return actions
