"""Typer CLI for Townsquare."""

from __future__ import annotations

import json
import os
import shutil
import subprocess
import sys
from pathlib import Path

from sqlalchemy.exc import OperationalError
import typer
import uvicorn

from .admin import list_orphaned_events
from .config import (
    load_settings,
    settings,
    settings_as_dict,
    update_config_file,
)
from .database import get_session
from .rsvps import count_rsvps
from .seed import seed_fake_data
from .storage import bootstrap, init_db, upgrade_database

app = typer.Typer(help="Townsquare command-line interface")


@app.callback(invoke_without_command=True)
def main(ctx: typer.Context) -> None:
    """Show help when no subcommand is provided."""
    if ctx.invoked_subcommand is None:
        typer.echo(ctx.get_help())
        raise typer.Exit()


def _fail_if_readonly(exc: OperationalError, action: str) -> None:
    message = str(getattr(exc, "orig", exc)).lower()
    if "readonly" in message or "read-only" in message:
        typer.secho(
            f"Unable to {action} because the database is read-only. "
            f"Ensure write access to {settings.database_path}.",
            err=True,
            fg=typer.colors.RED,
        )
        raise typer.Exit(code=1)


@app.command("init-db")
def init_database() -> None:
    """Create or upgrade the schema and bootstrap the admin account."""
    try:
        init_db()
    except OperationalError as exc:
        _fail_if_readonly(exc, "initialize the database")
        raise
    typer.echo(f"Database ready at {settings.database_path}")


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
        _fail_if_readonly(exc, "upgrade")
        raise

    if not actions:
        typer.echo("Database already up to date.")
        return

    bootstrap()
    typer.echo("Database upgrade complete:")
    for action in actions:
        typer.echo(f"- {action}")


@app.command("runserver")
def runserver(
    host: str = typer.Option(settings.app_host, "--host", help="Host to bind"),
    port: int = typer.Option(settings.app_port, "--port", help="Port to bind"),
):
    """Start the FastAPI application."""
    init_db()
    config = uvicorn.Config(
        "townsquare.api:app",
        host=host,
        port=port,
        reload=False,
        proxy_headers=True,
        forwarded_allow_ips="*",
    )
    server = uvicorn.Server(config)
    typer.echo(f"Starting Townsquare on {host}:{port}")
    server.run()


@app.command("seed-data")
def seed_data(
    users: int = typer.Option(
        settings.seed_users, "--users", min=1, help="Number of accounts to create"
    ),
    max_rsvps: int = typer.Option(
        settings.seed_rsvps_per_event,
        "--max-rsvps",
        min=0,
        help="Maximum RSVPs to attach to each event",
    ),
):
    """Populate the database with fake accounts, events and RSVPs."""
    stats = seed_fake_data(user_count=users, max_rsvps_per_event=max_rsvps)
    typer.echo(
        f"Seed complete: {stats['users']} users, {stats['events']} events, "
        f"{stats['rsvps']} RSVPs created."
    )


@app.command("orphans")
def orphans() -> None:
    """List events whose creator account has been removed."""
    init_db()
    admin_id = bootstrap()
    with get_session() as session:
        events = list_orphaned_events(session, actor_id=admin_id)
        if not events:
            typer.echo("No orphaned events.")
            return
        for event in events:
            typer.echo(
                f"{event.id}  {event.start_time:%Y-%m-%d %H:%M}  {event.title} "
                f"({count_rsvps(session, event.id)} RSVPs)"
            )


@app.command("config")
def configure(
    show: bool = typer.Option(
        False, "--show", help="Show the current effective configuration"
    ),
    host: str | None = typer.Option(None, "--host", help="Default host for runserver"),
    port: int | None = typer.Option(None, "--port", help="Default port for runserver"),
    config_path: Path | None = typer.Option(
        None, "--config-path", help="Path to townsquare.toml (default: ./townsquare.toml)"
    ),
    weather_base_url: str | None = typer.Option(
        None, "--weather-base-url", help="Forecast endpoint URL"
    ),
    weather_timeout: float | None = typer.Option(
        None, "--weather-timeout", min=0.1, help="Forecast request timeout in seconds"
    ),
    weather_forecast_days: int | None = typer.Option(
        None,
        "--weather-forecast-days",
        min=1,
        help="Days ahead for which forecasts are requested",
    ),
    admin_email: str | None = typer.Option(
        None, "--admin-email", help="Email of the bootstrap admin account"
    ),
    admin_display_name: str | None = typer.Option(
        None, "--admin-display-name", help="Display name of the bootstrap admin"
    ),
    seed_users: int | None = typer.Option(
        None, "--seed-users", min=1, help="Default seed-data accounts"
    ),
    seed_rsvps_per_event: int | None = typer.Option(
        None, "--seed-rsvps-per-event", min=0, help="Default seed-data RSVPs per event"
    ),
):
    """View or update the persistent configuration file."""

    updates = {
        "app_host": host,
        "app_port": port,
        "weather_base_url": weather_base_url,
        "weather_timeout_seconds": weather_timeout,
        "weather_forecast_days": weather_forecast_days,
        "admin_email": admin_email,
        "admin_display_name": admin_display_name,
        "seed_users": seed_users,
        "seed_rsvps_per_event": seed_rsvps_per_event,
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


@app.command("test")
def run_tests(pytest_args: list[str] = typer.Argument(None, help="Extra pytest args")):
    """Run the test suite with helpful defaults."""
    env = os.environ.copy()
    env.setdefault("PYTHONPATH", ".")
    env.setdefault("UV_CACHE_DIR", ".uv-cache")
    uv_path = shutil.which("uv")
    if uv_path:
        cmd = [uv_path, "run", "pytest"]
    else:
        typer.echo("uv not found, falling back to python -m pytest")
        cmd = [sys.executable, "-m", "pytest"]
    if pytest_args:
        cmd.extend(pytest_args)
    typer.echo(f"Running tests: {' '.join(cmd)}")
    result = subprocess.run(cmd, env=env)
    raise typer.Exit(code=result.returncode)


if __name__ == "__main__":
    app()
