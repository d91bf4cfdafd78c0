"""SQLAlchemy engine factory."""

from __future__ import annotations

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine

from retention_rules.config import Settings, get_settings


def _enable_sqlite_foreign_keys(dbapi_connection, _connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON;")
    cursor.close()


def build_engine(database_url: str | None = None, settings: Settings | None = None) -> Engine:
    """Create an engine for the rule store.

    Args:
        database_url: Explicit URL; defaults to settings.database_url.
        settings: Application settings. If None, uses cached settings.

    Returns:
        Engine: SQLAlchemy engine. SQLite connections have foreign keys enabled.
    """

    settings = settings or get_settings()
    url = database_url or settings.database_url

    connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
    engine = create_engine(url, echo=settings.database_echo, future=True, connect_args=connect_args)
    if engine.dialect.name == "sqlite":
        event.listen(engine, "connect", _enable_sqlite_foreign_keys)
    return engine


def check_connection(engine: Engine) -> None:
    """Verify the database is reachable."""

    with engine.connect() as conn:
        conn.execute(text("SELECT 1"))
