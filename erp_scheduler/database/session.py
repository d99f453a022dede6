"""
SQLAlchemy Session Management.

Two factories over the same database:
- sync sessions for the scheduler engine, the notification queue and their
  worker threads (every write goes through these)
- async sessions for the FastAPI read endpoints

Objects are not expired on commit: services hand ORM rows back to callers
after the session has closed.
"""

from contextlib import contextmanager, asynccontextmanager
from typing import AsyncGenerator, Generator, Optional

from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .engine import get_engine, get_async_engine


_sync_session_factory: Optional[sessionmaker] = None
_async_session_factory: Optional[async_sessionmaker] = None


def get_sync_session_factory() -> sessionmaker:
    global _sync_session_factory
    if _sync_session_factory is None:
        _sync_session_factory = sessionmaker(bind=get_engine(), autoflush=False, expire_on_commit=False)
    return _sync_session_factory


def get_async_session_factory() -> async_sessionmaker:
    global _async_session_factory
    if _async_session_factory is None:
        _async_session_factory = async_sessionmaker(
            bind=get_async_engine(),
            class_=AsyncSession,
            autoflush=False,
            expire_on_commit=False,
        )
    return _async_session_factory


def reset_session_factories() -> None:
    """Drop cached factories (tests swap DATABASE_URL between cases)."""
    global _sync_session_factory, _async_session_factory
    _sync_session_factory = None
    _async_session_factory = None


@contextmanager
def get_db_session() -> Generator[Session, None, None]:
    """
    One unit of work: commits on clean exit, rolls back on error.

    Usage:
        with get_db_session() as session:
            job = session.get(ScheduledJob, job_id)
            job.is_active = False
    """
    session = get_sync_session_factory()()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


@asynccontextmanager
async def get_async_db_session() -> AsyncGenerator[AsyncSession, None]:
    """
    Async counterpart of `get_db_session`.

    Usage:
        async with get_async_db_session() as session:
            result = await session.execute(select(JobExecution))
    """
    session = get_async_session_factory()()
    try:
        yield session
        await session.commit()
    except Exception:
        await session.rollback()
        raise
    finally:
        await session.close()
