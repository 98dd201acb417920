"""Typer CLI for EventBoard."""

from __future__ import annotations

import json
from pathlib import Path
from typing import NoReturn

from sqlalchemy.exc import OperationalError
import typer
import uvicorn

from .config import (
    load_settings,
    settings,
    settings_as_dict,
    update_config_file,
)
from .crud import rotate_user_token
from .database import get_session
from .errors import EventBoardError
from .identity import find_user, set_user_role, sync_user
from .seed import seed_fake_data
from .storage import init_db, upgrade_database

app = typer.Typer(help="EventBoard command-line interface")


def _fail(message: str) -> NoReturn:
    typer.secho(message, err=True, fg=typer.colors.RED)
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
        help="Skip creating a .bak copy of the database before upgrading",
    ),
) -> None:
    """Upgrade the SQLite database schema if needed."""
    try:
        actions = upgrade_database(make_backup=not no_backup)
    except OperationalError as exc:
        message = str(getattr(exc, "orig", exc)).lower()
        if "readonly" in message or "read-only" in message:
            _fail(
                "Unable to upgrade because the database is read-only. "
                f"Ensure write access to {settings.database_path}."
            )
        raise

    typer.echo("Database upgrade complete:")
    for action in actions:
        typer.echo(f"- {action}")


@app.command("runserver")
def runserver(
    host: str = typer.Option(settings.app_host, "--host", help="Host to bind"),
    port: int = typer.Option(settings.app_port, "--port", help="Port to bind"),
):
    """Start the FastAPI application under uvicorn."""
    init_db()
    config = uvicorn.Config(
        "eventboard.api:app",
        host=host,
        port=port,
        reload=False,
        proxy_headers=True,
        forwarded_allow_ips="*",
    )
    server = uvicorn.Server(config)
    typer.echo(f"Starting EventBoard on {host}:{port}")
    server.run()


@app.command("create-user")
def create_user(
    email: str = typer.Argument(..., help="Email address of the new user"),
    display_name: str = typer.Option(..., "--name", help="Display name"),
    external_id: str | None = typer.Option(
        None, "--external-id", help="Identity provider id (defaults to the email)"
    ),
) -> None:
    """Register a user and print their API token."""
    init_db()
    try:
        with get_session() as session:
            result = sync_user(
                session,
                external_id=external_id or email,
                email=email,
                display_name=display_name,
            )
            user = result.user
            typer.echo(f"Created {user.role} {user.email} ({user.id})")
            typer.echo(user.api_token)
    except EventBoardError as exc:
        _fail(exc.detail)


@app.command("user-token")
def user_token(identifier: str = typer.Argument(..., help="User id, email or external id")):
    """Print a user's API token."""
    init_db()
    try:
        with get_session() as session:
            typer.echo(find_user(session, identifier).api_token)
    except EventBoardError as exc:
        _fail(exc.detail)


@app.command("rotate-user-token")
def rotate_token(
    identifier: str = typer.Argument(..., help="User id, email or external id"),
) -> None:
    """Issue a new API token for a user, invalidating the old one."""
    init_db()
    try:
        with get_session() as session:
            typer.echo(rotate_user_token(session, find_user(session, identifier)))
    except EventBoardError as exc:
        _fail(exc.detail)


@app.command("set-role")
def set_role(
    identifier: str = typer.Argument(..., help="User id, email or external id"),
    role: str = typer.Argument(..., help="admin or user"),
) -> None:
    """Promote or demote a user."""
    init_db()
    try:
        with get_session() as session:
            user = set_user_role(session, identifier, role)
            typer.echo(f"{user.email} is now {user.role}")
    except EventBoardError as exc:
        _fail(exc.detail)


@app.command("seed-data")
def seed_data(
    users: int = typer.Option(
        settings.seed_users, "--users", min=1, help="Number of users to create"
    ),
    max_events: int = typer.Option(
        settings.seed_events_per_user,
        "--max-events",
        min=0,
        help="Maximum events each user creates",
    ),
    private_percent: int = typer.Option(
        settings.seed_private_percent,
        "--private-percent",
        min=0,
        max=100,
        help="Percentage of events that should be private (0-100)",
    ),
    seed: int | None = typer.Option(None, "--seed", help="Random seed"),
):
    """Populate the database with fake users and events for testing."""
    stats = seed_fake_data(
        user_count=users,
        max_events_per_user=max_events,
        private_percentage=private_percent,
        seed=seed,
    )
    typer.echo(
        f"Seed complete: {stats['users']} users, {stats['events']} events, "
        f"{stats['attendances']} attendances created."
    )


@app.command("config")
def configure(
    show: bool = typer.Option(
        False, "--show", help="Show the current effective configuration"
    ),
    host: str | None = typer.Option(None, "--host", help="Default host for runserver"),
    port: int | None = typer.Option(None, "--port", help="Default port for runserver"),
    config_path: Path | None = typer.Option(
        None,
        "--config-path",
        help="Path to eventboard.toml (default: ./eventboard.toml)",
    ),
    events_per_page: int | None = typer.Option(
        None, "--events-per-page", min=1, help="Default pagination size"
    ),
    bootstrap_admin_email: str | None = typer.Option(
        None,
        "--bootstrap-admin-email",
        help="Email that is granted the admin role on first sync",
    ),
    seed_users: int | None = typer.Option(
        None, "--seed-users", min=1, help="Default seed-data users"
    ),
    seed_events_per_user: int | None = typer.Option(
        None, "--seed-events-per-user", min=0, help="Default seed-data events/user"
    ),
    seed_private_percent: int | None = typer.Option(
        None,
        "--seed-private-percent",
        min=0,
        max=100,
        help="Default percent of private events for seed-data",
    ),
):
    """View or update the persistent configuration file."""

    updates = {
        "app_host": host,
        "app_port": port,
        "events_per_page": events_per_page,
        "bootstrap_admin_email": bootstrap_admin_email,
        "seed_users": seed_users,
        "seed_events_per_user": seed_events_per_user,
        "seed_private_percent": seed_private_percent,
    }
    clean_updates = {k: v for k, v in updates.items() if v is not None}

    target_path = config_path or settings.config_path
    if clean_updates:
        settings_ref = update_config_file(clean_updates, path=target_path)
        typer.echo(f"Updated configuration in {target_path}")
    else:
        settings_ref = load_settings(target_path)
    if show or not clean_updates:
        effective = settings_as_dict(settings_ref)
        effective["config_path"] = str(target_path)
        typer.echo(json.dumps(effective, indent=2))


if __name__ == "__main__":
    app()
