"""
Database Package.

One SQLite (or server) database shared by the API process, the scheduler tick
loop and the notification drain worker:
- engine: cached sync/async engines
- session: `get_db_session()` for services and workers, `get_db` for endpoints
- bootstrap: `init_db()` table creation at startup
"""

from .bootstrap import init_db
from .engine import get_engine, get_async_engine
from .session import get_db_session, get_async_db_session

__all__ = [
    "init_db",
    "get_engine",
    "get_async_engine",
    "get_db_session",
    "get_async_db_session",
]
