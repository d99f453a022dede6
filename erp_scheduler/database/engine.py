"""
SQLAlchemy Engine Configuration.

Creates database engines shared by the API process and its worker threads.
Supports both sync (scheduler/queue workers) and async (read endpoints) connections.
"""

import os
from functools import lru_cache

from sqlalchemy import create_engine, event, Engine
from sqlalchemy.ext.asyncio import create_async_engine, AsyncEngine
from sqlalchemy.pool import NullPool


def get_database_url(async_mode: bool = False) -> str:
    """
    Get database URL from environment or use default SQLite.

    Args:
        async_mode: If True, returns async-compatible URL

    Returns:
        Database connection URL
    """
    db_url = os.environ.get("DATABASE_URL", "")

    if not db_url:
        # Default to SQLite in instance folder
        base_dir = os.path.abspath(os.path.join(os.path.dirname(__file__), '..'))
        db_path = os.path.join(base_dir, 'instance', 'scheduler.db')
        db_url = f"sqlite:///{db_path}"

    if async_mode:
        if db_url.startswith("sqlite:///"):
            return db_url.replace("sqlite:///", "sqlite+aiosqlite:///")
        elif db_url.startswith("mysql://"):
            return db_url.replace("mysql://", "mysql+aiomysql://")
        elif db_url.startswith("mysql+pymysql://"):
            return db_url.replace("mysql+pymysql://", "mysql+aiomysql://")
        elif db_url.startswith("postgresql://"):
            return db_url.replace("postgresql://", "postgresql+asyncpg://")

    return db_url


def _ensure_sqlite_dir(db_url: str) -> None:
    if db_url.startswith("sqlite") and ":///" in db_url:
        path = db_url.split(":///", 1)[1]
        if path and path != ":memory:":
            os.makedirs(os.path.dirname(os.path.abspath(path)), exist_ok=True)


def _echo() -> bool:
    return os.environ.get('SQL_ECHO', 'false').lower() == 'true'


def _sqlite_wal(dbapi_connection, connection_record) -> None:
    # Readers (API) do not block the tick loop and drain worker writers.
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.close()


@lru_cache()
def get_engine() -> Engine:
    """
    Get or create synchronous SQLAlchemy engine.

    Used by the scheduler engine, the notification drain worker and bootstrap.
    Cached for reuse across threads.
    """
    db_url = get_database_url(async_mode=False)

    if db_url.startswith("sqlite"):
        _ensure_sqlite_dir(db_url)
        # Worker threads write concurrently; wait on the SQLite file lock instead of failing fast.
        engine = create_engine(
            db_url,
            echo=_echo(),
            connect_args={"check_same_thread": False, "timeout": 30},
        )
        if ":memory:" not in db_url:
            event.listen(engine, "connect", _sqlite_wal)
        return engine

    return create_engine(
        db_url,
        echo=_echo(),
        pool_size=5,
        max_overflow=10,
        pool_pre_ping=True,
        pool_recycle=3600
    )


@lru_cache()
def get_async_engine() -> AsyncEngine:
    """
    Get or create asynchronous SQLAlchemy engine.

    Used by FastAPI read endpoints.
    """
    db_url = get_database_url(async_mode=True)

    if "sqlite" in db_url:
        _ensure_sqlite_dir(db_url)
        return create_async_engine(
            db_url,
            echo=_echo(),
            connect_args={"check_same_thread": False},
            poolclass=NullPool,
        )

    return create_async_engine(
        db_url,
        echo=_echo(),
        pool_size=5,
        max_overflow=10,
        pool_pre_ping=True,
        pool_recycle=3600
    )
