"""Shared pytest fixtures for Townsquare."""

from __future__ import annotations

import sys
from datetime import timedelta
from pathlib import Path

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import scoped_session, sessionmaker
from sqlalchemy.pool import StaticPool

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from townsquare import api, database, storage
from townsquare.accounts import ADMIN_ROLE, USER_ROLE, create_account
from townsquare.catalog import create_event
from townsquare.models import Base
from townsquare.utils import utcnow


@pytest.fixture(scope="session", autouse=True)
def configure_in_memory_db():
    """Reuse a single in-memory SQLite database for fast, isolated tests."""

    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    session_factory = scoped_session(
        sessionmaker(
            bind=engine,
            autoflush=False,
            autocommit=False,
            future=True,
            expire_on_commit=False,
        )
    )
    database.engine = engine
    database.SessionLocal = session_factory
    storage.engine = engine
    storage.get_session = database.get_session
    api.SessionLocal = session_factory
    Base.metadata.create_all(bind=engine)
    yield
    session_factory.remove()


@pytest.fixture(autouse=True)
def clean_database():
    """Reset all tables between tests to guarantee isolation."""

    Base.metadata.drop_all(bind=database.engine)
    Base.metadata.create_all(bind=database.engine)
    yield
    database.SessionLocal.remove()


@pytest.fixture()
def session():
    """A plain session for arranging data and asserting on it."""

    db = database.SessionLocal()
    try:
        yield db
    finally:
        db.rollback()
        database.SessionLocal.remove()


def make_user(session, name: str = "Alice", *, admin: bool = False):
    roles = (ADMIN_ROLE, USER_ROLE) if admin else (USER_ROLE,)
    email = f"{name.lower().replace(' ', '.')}@example.com"
    user = create_account(session, display_name=name, email=email, roles=roles)
    session.commit()
    return user


def make_event(session, owner, *, title: str = "Jazz Night", days_ahead: int = 7, **fields):
    values = {
        "title": title,
        "description": "Live music by the river.",
        "start_time": utcnow().replace(microsecond=0) + timedelta(days=days_ahead),
        "location": "Stadsparken, Borås",
        "category": "concert",
    }
    values.update(fields)
    event = create_event(session, owner.id, values)
    session.commit()
    return event
