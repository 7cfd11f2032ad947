"""Async engine and session factory.

SQLite connections are opened in WAL mode with foreign keys enforced and
the driver's implicit transaction handling switched off, so that the
store decides how each transaction begins: ``BEGIN IMMEDIATE`` for
writers (requested with the ``immediate`` execution option) and a plain
deferred ``BEGIN`` for readers.
"""

from pathlib import Path

from sqlalchemy import event
from sqlalchemy.engine import URL, make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from postpartum_triage.core.config import settings

# Execution option that makes a transaction take the SQLite write lock up front
IMMEDIATE = {"immediate": True}


def _configure_sqlite(engine: AsyncEngine) -> None:
    """Install connection pragmas and explicit BEGIN handling."""

    @event.listens_for(engine.sync_engine, "connect")
    def on_connect(dbapi_connection, connection_record) -> None:
        # Stop the driver from emitting its own BEGIN
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA synchronous=NORMAL")
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine.sync_engine, "begin")
    def on_begin(conn) -> None:
        if conn.get_execution_options().get("immediate"):
            conn.exec_driver_sql("BEGIN IMMEDIATE")
        else:
            conn.exec_driver_sql("BEGIN")


def sqlite_database_path(database_url: str | URL) -> Path | None:
    """File path of a SQLite database URL, or None for memory/other backends."""
    url = make_url(database_url)
    if url.get_backend_name() != "sqlite":
        return None
    if not url.database or url.database == ":memory:":
        return None
    return Path(url.database)


def create_engine(
    database_url: str | None = None,
    busy_timeout: float | None = None,
) -> AsyncEngine:
    """Create an async engine for the configured database.

    Args:
        database_url: SQLAlchemy URL (defaults to settings.database_url)
        busy_timeout: Seconds a SQLite writer waits for the lock

    Returns:
        Configured AsyncEngine
    """
    url = database_url or settings.database_url
    if busy_timeout is None:
        busy_timeout = settings.sqlite_busy_timeout_seconds

    if make_url(url).get_backend_name() == "sqlite":
        engine = create_async_engine(
            url,
            echo=False,
            connect_args={"timeout": busy_timeout},
        )
        _configure_sqlite(engine)
        return engine

    return create_async_engine(url, echo=False, pool_pre_ping=True)


def make_session_factory(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory used by the store and ledger."""
    return async_sessionmaker(
        bind,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


engine = create_engine()
AsyncSessionLocal = make_session_factory(engine)


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Dependency returning the application session factory."""
    return AsyncSessionLocal

