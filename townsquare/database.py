"""Database helpers for Townsquare."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Callable, TypeVar

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session, scoped_session, sessionmaker

from .config import settings

logger = logging.getLogger("uvicorn.error")

T = TypeVar("T")

TRANSIENT_ERROR_MARKERS = ("database is locked", "database is busy", "deadlock")

DATABASE_URL = f"sqlite:///{settings.database_path}"
engine = create_engine(
    DATABASE_URL,
    connect_args={"check_same_thread": False},
    future=True,
)
SessionLocal = scoped_session(
    sessionmaker(
        bind=engine,
        autoflush=False,
        autocommit=False,
        future=True,
        expire_on_commit=False,
    )
)


@event.listens_for(Engine, "connect")
def _enable_sqlite_foreign_keys(dbapi_connection, connection_record) -> None:
    """SQLite ships with FK enforcement off; the cascade rules depend on it."""
    module = type(dbapi_connection).__module__
    if "sqlite" not in module:
        return
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()
    # pysqlite defers BEGIN until the first DML, which breaks SAVEPOINT; let
    # SQLAlchemy emit BEGIN itself (see _begin_sqlite_transaction).
    dbapi_connection.isolation_level = None


@event.listens_for(Engine, "begin")
def _begin_sqlite_transaction(conn) -> None:
    if conn.dialect.name == "sqlite":
        conn.exec_driver_sql("BEGIN")


@contextmanager
def get_session():
    """Context manager returning a SQLAlchemy session."""
    session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def is_transient_error(exc: OperationalError) -> bool:
    raw = str(getattr(exc, "orig", None) or exc).lower()
    return any(marker in raw for marker in TRANSIENT_ERROR_MARKERS)


def run_in_transaction(work: Callable[[Session], T], *, retries: int = 1) -> T:
    """Run ``work`` inside one committed transaction.

    Transient storage aborts (a locked or busy SQLite file) are retried up to
    ``retries`` times; every other error propagates after rollback.
    """
    attempt = 0
    while True:
        try:
            with get_session() as session:
                return work(session)
        except OperationalError as exc:
            if attempt >= retries or not is_transient_error(exc):
                raise
            attempt += 1
            logger.warning(
                "Retrying transaction after transient database error (attempt %d): %s",
                attempt,
                getattr(exc, "orig", exc),
            )
