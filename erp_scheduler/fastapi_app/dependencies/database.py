"""
Database Dependencies.

Provides the async session used by read-only endpoints (job list, execution
history, dead-letter listings). Mutations go through the services, which use
the sync session factory shared with the worker threads.
"""

from typing import Annotated, AsyncGenerator

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from ...database.session import get_async_db_session


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    Usage in FastAPI route:
        @router.get("/executions")
        async def list_executions(db: DbSession):
            result = await db.execute(select(JobExecution))
    """
    async with get_async_db_session() as session:
        yield session


DbSession = Annotated[AsyncSession, Depends(get_db)]
