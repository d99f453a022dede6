"""
Database bootstrap utilities.

Responsibilities:
- Create missing tables (SQLAlchemy metadata `create_all`)
- Apply minimal SQLite schema guards (add columns where safe)

Job rows are seeded by the scheduler's JobRegistry, not here.
"""

from __future__ import annotations

import logging

from .engine import get_engine
from ..models import Base
from ..utils.sqlite_schema import ensure_sqlite_schema

logger = logging.getLogger(__name__)


def init_db() -> None:
    """
    Idempotent DB init for local/dev deployments.

    For production, prefer proper migrations; this keeps dev/test environments safe and simple.
    """
    engine = get_engine()

    # Create missing tables first.
    Base.metadata.create_all(bind=engine)

    # SQLite guard for adding columns without migrations.
    ensure_sqlite_schema(engine)
    logger.debug("Database initialized at %s", engine.url)
