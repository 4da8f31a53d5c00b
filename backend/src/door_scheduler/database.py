"""Database utilities for configuring SQLAlchemy sessions."""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from threading import Lock

from pydantic import BaseModel, Field
from sqlalchemy import Engine, create_engine, event, inspect
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from .gateway.utils import logger

DEFAULT_DATABASE_URL = "sqlite:///./data/door_scheduler.db"


class DatabaseSettings(BaseModel):
    """Configuration values for the database connection."""

    url: str = Field(default=DEFAULT_DATABASE_URL)
    echo: bool = Field(default=False)

    @classmethod
    def load(cls) -> DatabaseSettings:
        return cls(
            url=os.getenv("DOOR_SCHEDULER_DB_URL") or DEFAULT_DATABASE_URL,
            echo=os.getenv("DOOR_SCHEDULER_DB_ECHO", "false").lower()
            in {"1", "true", "yes", "on"},
        )


@lru_cache
def get_database_settings() -> DatabaseSettings:
    """Return cached database settings."""
    return DatabaseSettings.load()


_engine_lock = Lock()
_engine: Engine | None = None
_session_factory: sessionmaker[Session] | None = None


def _ensure_sqlite_directory(url: str) -> None:
    if url.startswith("sqlite:///") and url != "sqlite:///:memory:":
        db_path = Path(url.replace("sqlite:///", "", 1))
        db_path.parent.mkdir(parents=True, exist_ok=True)


def _enable_sqlite_foreign_keys(engine: Engine) -> None:
    """Turn on FK enforcement so restrict/cascade rules hold on SQLite."""
    if engine.dialect.name != "sqlite":
        return

    @event.listens_for(engine, "connect")
    def _set_pragma(dbapi_connection, _connection_record) -> None:
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


def _prepare_schema(engine: Engine) -> None:
    """Ensure tables exist."""
    from .db_models import Base  # Local import to avoid circular deps

    Base.metadata.create_all(engine)
    tables = sorted(inspect(engine).get_table_names())
    logger.bind(tables=tables).debug("Database schema ensured")


def build_engine(url: str, *, echo: bool = False) -> Engine:
    """Create an engine with the pragmas and schema the application expects."""
    if url in {"sqlite://", "sqlite:///:memory:"}:
        engine = create_engine(
            url,
            echo=echo,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    else:
        _ensure_sqlite_directory(url)
        connect_args = (
            {"check_same_thread": False} if url.startswith("sqlite") else {}
        )
        engine = create_engine(url, echo=echo, connect_args=connect_args)
    _enable_sqlite_foreign_keys(engine)
    _prepare_schema(engine)
    return engine


def build_session_factory(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(
        bind=engine,
        autoflush=False,
        autocommit=False,
        expire_on_commit=False,
    )


def get_engine() -> Engine:
    """Return the process-wide SQLAlchemy engine, creating it on first use."""
    global _engine

    if _engine is None:
        with _engine_lock:
            if _engine is None:
                settings = get_database_settings()
                _engine = build_engine(settings.url, echo=settings.echo)
    return _engine


def get_session_factory() -> sessionmaker[Session]:
    """Return a session factory for creating SQLAlchemy sessions."""
    global _session_factory
    engine = get_engine()

    if _session_factory is None:
        with _engine_lock:
            if _session_factory is None:
                _session_factory = build_session_factory(engine)
    return _session_factory


def configure_database(url: str, *, echo: bool = False) -> sessionmaker[Session]:
    """Rebind the process-wide engine to ``url`` (used by CLIs and tests)."""
    global _engine, _session_factory

    with _engine_lock:
        if _engine is not None:
            _engine.dispose()
        _engine = build_engine(url, echo=echo)
        _session_factory = build_session_factory(_engine)
        return _session_factory


def create_session() -> Session:
    """Create a new SQLAlchemy session."""
    return get_session_factory()()
