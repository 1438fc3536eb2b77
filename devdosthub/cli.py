"""Typer CLI for DevDostHub."""

from __future__ import annotations

import json
from pathlib import Path

from sqlalchemy.exc import OperationalError
import typer
import uvicorn

from .config import load_settings, settings, settings_as_dict, update_config_file
from .crud import get_user_by_email
from .database import get_session
from .scheduler import start_scheduler, stop_scheduler
from .seed import SEED_PASSWORD, seed_fake_data
from .status import refresh_event_statuses
from .storage import init_db, upgrade_database

app = typer.Typer(help="DevDostHub command-line interface")


def _database_failure(exc: OperationalError, action: str) -> None:
    message = str(getattr(exc, "orig", exc))
    typer.secho(
        f"Unable to {action}: {message}. Check that {settings.database_url} is reachable "
        "and writable.",
        err=True,
        fg=typer.colors.RED,
    )
    raise typer.Exit(code=1)


@app.callback(invoke_without_command=True)
def main(ctx: typer.Context) -> None:
    """Show help when no subcommand is provided."""
    if ctx.invoked_subcommand is None:
        typer.echo(ctx.get_help())
        raise typer.Exit()


@app.command("upgrade-db")
def upgrade_db(
    no_backup: bool = typer.Option(
        False,
        "--no-backup",
        help="Skip creating a .bak copy of the SQLite database before upgrading",
    ),
) -> None:
    """Upgrade the database schema if needed."""
    try:
        actions = upgrade_database(make_backup=not no_backup)
    except OperationalError as exc:
        _database_failure(exc, "upgrade the database")

    if not actions:
        typer.echo("Database already up to date.")
        return

    typer.echo("Database upgrade complete:")
    for action in actions:
        typer.echo(f"- {action}")


@app.command("refresh-statuses")
def refresh_statuses() -> None:
    """Run the event status refresh once."""
    try:
        init_db()
        stats = refresh_event_statuses()
    except OperationalError as exc:
        _database_failure(exc, "refresh event statuses")
    typer.echo(f"Status refresh complete: {stats}")


@app.command("runserver")
def runserver(
    host: str = typer.Option(settings.app_host, "--host", help="Host to bind"),
    port: int = typer.Option(settings.app_port, "--port", help="Port to bind"),
):
    """Start FastAPI, plus the status refresh job when enabled."""
    try:
        init_db()
    except OperationalError as exc:
        _database_failure(exc, "connect to the database")
    start_scheduler()
    config = uvicorn.Config(
        "devdosthub.api:app",
        host=host,
        port=port,
        reload=False,
        proxy_headers=True,
        forwarded_allow_ips="*",
    )
    server = uvicorn.Server(config)
    try:
        typer.echo(f"Starting DevDostHub on {host}:{port}")
        server.run()
    finally:
        stop_scheduler()


@app.command("seed-data")
def seed_data(
    users: int = typer.Option(
        settings.seed_users, "--users", min=0, help="Number of accounts to create"
    ),
    events: int = typer.Option(
        settings.seed_events, "--events", min=0, help="Number of events to create"
    ),
    max_rsvps: int = typer.Option(
        settings.seed_rsvps_per_event,
        "--max-rsvps",
        min=0,
        help="Maximum RSVPs to attach to each event",
    ),
) -> None:
    """Populate the database with fake users, events, and RSVPs."""
    stats = seed_fake_data(
        user_count=users,
        event_count=events,
        max_rsvps_per_event=max_rsvps,
    )
    typer.echo(
        "Seeded {users} users, {events} events, and {rsvps} RSVPs.".format(**stats)
    )
    typer.echo(f"Seeded accounts use the password '{SEED_PASSWORD}'.")


@app.command("make-admin")
def make_admin(email: str = typer.Argument(..., help="Email of an existing account")):
    """Grant the admin role to an existing account."""
    init_db()
    with get_session() as session:
        user = get_user_by_email(session, email)
        if not user:
            typer.secho(f"No account found for {email}", err=True, fg=typer.colors.RED)
            raise typer.Exit(code=1)
        user.role = "admin"
        session.add(user)
    typer.secho(f"{email} is now an admin.", fg=typer.colors.GREEN)


@app.command("config")
def configure(
    show: bool = typer.Option(
        False, "--show", help="Print the effective configuration and exit"
    ),
    events_per_page: int | None = typer.Option(
        None, "--events-per-page", min=1, help="Default page size for event listings"
    ),
    jwt_expires_days: int | None = typer.Option(
        None, "--jwt-expires-days", min=1, help="Bearer token lifetime in days"
    ),
    atomic_rsvp: bool | None = typer.Option(
        None,
        "--atomic-rsvp/--no-atomic-rsvp",
        help="Create RSVPs with a single conditional insert",
    ),
    enable_scheduler: bool | None = typer.Option(
        None,
        "--enable-scheduler/--disable-scheduler",
        help="Run the background status refresh job",
    ),
    status_refresh_minutes: int | None = typer.Option(
        None, "--status-refresh-minutes", min=1, help="Minutes between status refreshes"
    ),
    gemini_model: str | None = typer.Option(
        None, "--gemini-model", help="Model name used by /api/ai/ask"
    ),
    host: str | None = typer.Option(None, "--host", help="Default host for runserver"),
    port: int | None = typer.Option(None, "--port", help="Default port for runserver"),
    config_path: Path | None = typer.Option(
        None, "--config", help="Path to the TOML file to update"
    ),
) -> None:
    """Show or update persisted configuration."""
    updates = {
        "events_per_page": events_per_page,
        "jwt_expires_days": jwt_expires_days,
        "atomic_rsvp": atomic_rsvp,
        "enable_scheduler": enable_scheduler,
        "status_refresh_minutes": status_refresh_minutes,
        "gemini_model": gemini_model,
        "app_host": host,
        "app_port": port,
    }
    updates = {key: value for key, value in updates.items() if value is not None}

    if updates and not show:
        new_settings = update_config_file(updates, path=config_path)
        target_path = config_path or new_settings.config_path
        typer.echo(f"Updated configuration in {target_path}")
        effective = settings_as_dict(new_settings)
    else:
        effective = settings_as_dict(load_settings(config_path))
    typer.echo(json.dumps(effective, indent=2))


if __name__ == "__main__":
    app()
