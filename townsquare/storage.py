"""Database initialization, migrations and start-up bootstrap."""

from __future__ import annotations

import logging
import shutil
from pathlib import Path

from alembic import command
from alembic.config import Config
from alembic.runtime.migration import MigrationContext
from alembic.script import ScriptDirectory
from sqlalchemy import inspect

from .accounts import KNOWN_ROLES, create_account, ensure_role, get_account_by_email
from .config import settings
from .database import engine, get_session

logger = logging.getLogger("uvicorn.error")


def init_db() -> None:
    upgrade_database(make_backup=False)
    bootstrap()


def _escape_config_value(value: str) -> str:
    # Alembic's Config is a ConfigParser; a bare % starts an interpolation.
    return value.replace("%", "%%")


def _alembic_config() -> Config:
    package_dir = Path(__file__).resolve().parent
    script_location = package_dir / "alembic"
    ini_path = script_location.parent / "alembic.ini"

    config = Config(str(ini_path)) if ini_path.exists() else Config()
    config.set_main_option("script_location", _escape_config_value(str(script_location)))
    config.set_main_option("sqlalchemy.url", _escape_config_value(str(engine.url)))
    return config


def _is_at_head(config: Config) -> bool:
    head = ScriptDirectory.from_config(config).get_current_head()
    with engine.connect() as connection:
        current = MigrationContext.configure(connection).get_current_revision()
    return current == head


def upgrade_database(*, make_backup: bool = True) -> list[str]:
    """Upgrade the database schema in-place.

    Returns a list of applied actions; empty when the schema is already at
    the latest revision.
    """
    actions: list[str] = []
    db_path = Path(settings.database_path)

    inspector = inspect(engine)
    has_alembic = inspector.has_table("alembic_version")
    has_events = inspector.has_table("events")
    config = _alembic_config()

    if has_alembic and _is_at_head(config):
        return actions

    if make_backup and db_path.exists():
        backup_path = db_path.with_suffix(db_path.suffix + ".bak")
        shutil.copy(db_path, backup_path)
        actions.append(f"Backup created at {backup_path}")

    if not has_alembic and not has_events:
        command.upgrade(config, "head")
        actions.append("Ran Alembic upgrade to head (fresh database)")
    elif not has_alembic:
        # Schema created outside Alembic (create_all): baseline it.
        command.stamp(config, "head")
        actions.append("Stamped existing database to Alembic head")
    else:
        command.upgrade(config, "head")
        actions.append("Applied Alembic migrations to head")

    return actions


def bootstrap(
    *, admin_email: str | None = None, admin_display_name: str | None = None
) -> str:
    """Ensure the reference roles and the initial admin account exist.

    Safe to run on every start; returns the admin account id.
    """
    email = admin_email or settings.admin_email
    display_name = admin_display_name or settings.admin_display_name
    with get_session() as session:
        for role_name in KNOWN_ROLES:
            ensure_role(session, role_name)
        admin = get_account_by_email(session, email)
        if admin is None:
            admin = create_account(
                session, display_name=display_name, email=email, roles=KNOWN_ROLES
            )
            logger.info("Created initial admin account %s (%s)", admin.id, email)
        return admin.id
