import logging
from sqlalchemy import text
from sqlalchemy.engine import Engine

logger = logging.getLogger(__name__)

# Columns added after the first deployed schema: (table, column, DDL type/default).
_ADDED_COLUMNS = [
    ('scheduled_jobs', 'timezone', "VARCHAR(64) DEFAULT 'Asia/Riyadh'"),
    ('scheduled_jobs', 'consecutive_failures', 'INTEGER DEFAULT 0'),
    ('scheduled_jobs', 'max_retries', 'INTEGER DEFAULT 3'),
    ('scheduled_jobs', 'running_execution_id', 'VARCHAR(36)'),
    ('job_executions', 'result', 'TEXT'),
    ('notification_queue_items', 'recipient_id', 'INTEGER'),
    ('notification_queue_items', 'last_attempt_at', 'DATETIME'),
]


def _get_sqlite_columns(conn, table_name: str) -> set[str]:
    rows = conn.execute(text(f"PRAGMA table_info('{table_name}')")).fetchall()
    # PRAGMA table_info columns: cid, name, type, notnull, dflt_value, pk
    return {r[1] for r in rows}


def ensure_sqlite_schema(engine: Engine) -> list[str]:
    """
    Lightweight SQLite schema guard for when Alembic migrations are not used.

    - Creates new tables via SQLAlchemy `create_all()` (handled elsewhere)
    - Adds missing columns via `ALTER TABLE ... ADD COLUMN ...` where safe

    Keep this minimal and backwards-compatible: do NOT add NOT NULL constraints here.
    Returns the "table.column" names that were added.
    """
    added: list[str] = []
    try:
        if engine.url.get_backend_name() != 'sqlite':
            return added

        with engine.begin() as conn:
            columns_by_table: dict[str, set[str]] = {}
            for table, column, ddl in _ADDED_COLUMNS:
                if table not in columns_by_table:
                    columns_by_table[table] = _get_sqlite_columns(conn, table)
                existing = columns_by_table[table]
                # Empty means the table does not exist yet; create_all owns it.
                if not existing or column in existing:
                    continue
                conn.execute(text(f'ALTER TABLE {table} ADD COLUMN {column} {ddl}'))
                existing.add(column)
                added.append(f'{table}.{column}')
                logger.info("SQLite migration: added %s.%s", table, column)

    except Exception as e:
        logger.warning("SQLite schema ensure skipped/failed: %s", e)
    return added
