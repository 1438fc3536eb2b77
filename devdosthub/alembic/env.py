from __future__ import annotations

from logging.config import fileConfig

from alembic import context

from devdosthub import database
from devdosthub.models import Base

config = context.config

if not config.get_main_option("sqlalchemy.url"):
    config.set_main_option(
        "sqlalchemy.url", str(database.DATABASE_URL).replace("%", "%%")
    )

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata


def _target_url() -> str:
    # get_main_option interpolates, so "%%" comes back as a single "%".
    return config.get_main_option("sqlalchemy.url")


def _connectable():
    # In-memory databases only exist on the application engine's connection.
    if _target_url() == database.engine.url.render_as_string(hide_password=False):
        return database.engine
    return database.build_engine(_target_url())


def run_migrations_offline() -> None:
    """Emit SQL for the users/events/rsvps schema without connecting."""
    context.configure(
        url=_target_url(),
        target_metadata=target_metadata,
        literal_binds=True,
        compare_type=True,
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    """Apply migrations over a live connection."""
    with _connectable().connect() as connection:
        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            compare_type=True,
            render_as_batch=connection.dialect.name == "sqlite",
        )

        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
