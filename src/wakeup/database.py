"""Database utilities for configuring optional SQLAlchemy sessions."""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from threading import Lock

from loguru import logger
from pydantic import BaseModel, Field
from sqlalchemy import Engine, create_engine, inspect, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker


class DatabaseSettings(BaseModel):
    """Configuration values for the database connection."""

    url: str | None = Field(default=None)
    echo: bool = Field(default=False)
    mode: str = Field(default="memory")

    @classmethod
    def load(cls) -> DatabaseSettings:
        return cls(
            url=os.getenv("WAKEUP_DB_URL") or None,
            echo=os.getenv("WAKEUP_DB_ECHO", "false").lower()
            in {"1", "true", "yes", "on"},
            mode=os.getenv("WAKEUP_DB_MODE", "memory").lower(),
        )


@lru_cache
def get_database_settings() -> DatabaseSettings:
    """Return cached database settings."""
    return DatabaseSettings.load()


_engine_lock = Lock()
_engine: Engine | None = None
_session_factory: sessionmaker[Session] | None = None


def is_database_configured() -> bool:
    """Return True when the environment selects the database repositories."""
    settings = get_database_settings()
    if settings.mode == "memory":
        return False
    if not settings.url:
        return False
    return settings.mode in {"auto", "database"}


def _ensure_sqlite_directory(url: str) -> None:
    if url.startswith("sqlite:///"):
        db_path = Path(url.replace("sqlite:///", "", 1))
        db_path.parent.mkdir(parents=True, exist_ok=True)


# Columns introduced after the first schema revision, keyed by table.
_ADDED_COLUMNS: dict[str, dict[str, str]] = {
    "devices": {
        "status_port": "INTEGER",
        "last_seen_at": "VARCHAR(64)",
    },
    "schedules": {
        "created_at": "VARCHAR(64)",
        "updated_at": "VARCHAR(64)",
    },
}


def _prepare_schema(engine: Engine) -> None:
    """Ensure tables exist and add columns missing from older databases."""
    from .db_models import Base  # Local import to avoid circular deps

    Base.metadata.create_all(engine)
    inspector = inspect(engine)
    tables = set(inspector.get_table_names())

    for table, added in _ADDED_COLUMNS.items():
        if table not in tables:
            continue
        columns = {column["name"] for column in inspector.get_columns(table)}
        missing = {name: ddl for name, ddl in added.items() if name not in columns}
        if not missing:
            continue
        with engine.begin() as connection:
            for name, ddl in missing.items():
                connection.execute(text(f"ALTER TABLE {table} ADD COLUMN {name} {ddl}"))


def get_engine() -> Engine | None:
    """Return the configured SQLAlchemy engine, if any."""
    global _engine

    if not is_database_configured():
        return None

    settings = get_database_settings()
    if settings.url is None:
        return None

    if _engine is None:
        with _engine_lock:
            if _engine is None:
                _ensure_sqlite_directory(settings.url)
                _engine = create_engine(
                    settings.url,
                    echo=settings.echo,
                    future=True,
                )
                _prepare_schema(_engine)
    return _engine


def get_session_factory() -> sessionmaker[Session]:
    """Return a session factory for creating SQLAlchemy sessions."""
    global _session_factory
    engine = get_engine()
    if engine is None:
        raise RuntimeError(
            "Database is not configured. Set WAKEUP_DB_URL and "
            "WAKEUP_DB_MODE=database (or auto) to enable SQL storage."
        )

    if _session_factory is None:
        with _engine_lock:
            if _session_factory is None:
                _session_factory = sessionmaker(
                    bind=engine,
                    autoflush=False,
                    autocommit=False,
                    future=True,
                )
    return _session_factory


_DATABASE_UNAVAILABLE = False


def database_available() -> bool:
    """Return True when SQL storage is configured and answers a ping.

    A failed connection is remembered so every repository selector falls back
    to memory together for the rest of the process.
    """
    global _DATABASE_UNAVAILABLE
    if _DATABASE_UNAVAILABLE or not is_database_configured():
        return False
    try:
        engine = get_engine()
        if engine is None:
            return False
        with engine.connect() as connection:
            connection.execute(text("SELECT 1"))
    except (RuntimeError, SQLAlchemyError) as exc:
        logger.warning("Database unavailable; using in-memory storage: {}", exc)
        _DATABASE_UNAVAILABLE = True
        return False
    return True
