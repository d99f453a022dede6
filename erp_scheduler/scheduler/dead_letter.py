"""
Job Dead-Letter Store.

Jobs land here when their consecutive failures reach `max_retries`; the engine
disables them at the same time. Operators either retry (re-enable) a job or
clear the whole store.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import delete, func, select
from sqlalchemy.orm import Session

from ..database.session import get_db_session
from ..models.scheduled_job import ScheduledJob
from ..models.scheduler_dead_letter import SchedulerDeadLetter
from ..utils.timeutils import utcnow
from .cron import next_fire_time
from .errors import DeadLetterNotFoundError, InvalidOperationError, JobNotFoundError

logger = logging.getLogger(__name__)


def record_dead_letter(session: Session, job: ScheduledJob, error: Optional[str], now: datetime) -> SchedulerDeadLetter:
    """
    Write (or refresh) the dead-letter entry for `job` inside the caller's transaction.

    An existing entry keeps its counts; only the error and last_retry_at move.
    """
    entry = session.execute(
        select(SchedulerDeadLetter).where(SchedulerDeadLetter.job_id == job.id)
    ).scalar_one_or_none()

    if entry is not None:
        entry.error = error
        entry.last_retry_at = now
        return entry

    max_retries = int(job.max_retries or 0)
    entry = SchedulerDeadLetter(
        job_id=job.id,
        job_name=job.name,
        failed_at=now,
        retry_count=min(int(job.consecutive_failures or 0), max_retries),
        max_retries=max_retries,
        error=error,
        last_retry_at=now,
    )
    session.add(entry)
    return entry


class JobDeadLetterStore:
    def __init__(self, clock=utcnow):
        self._clock = clock

    def get(self) -> list[SchedulerDeadLetter]:
        with get_db_session() as session:
            rows = session.execute(
                select(SchedulerDeadLetter).order_by(SchedulerDeadLetter.failed_at.desc())
            ).scalars().all()
            return list(rows)

    def retry(self, job_id: str, max_retries: Optional[int] = None) -> dict:
        """
        Re-enable a dead-lettered job and remove its entry.

        The consecutive failure streak is reset; run/fail counters are history
        and stay. `max_retries`, when given, becomes the job's new budget and
        may not be lower than the failures already recorded on the entry.

        A retry is always an operator override: it is accepted even when the
        entry's retry_count has already reached the job's max_retries, and
        without a new `max_retries` the old budget applies to the fresh streak.
        """
        with get_db_session() as session:
            entry = session.execute(
                select(SchedulerDeadLetter).where(SchedulerDeadLetter.job_id == job_id)
            ).scalar_one_or_none()
            if entry is None:
                raise DeadLetterNotFoundError(job_id)

            job = session.get(ScheduledJob, job_id)
            if job is None:
                raise JobNotFoundError(job_id)

            if max_retries is not None:
                if max_retries < entry.retry_count:
                    raise InvalidOperationError(
                        f"max_retries ({max_retries}) cannot be lower than the recorded retry count ({entry.retry_count})"
                    )
                job.max_retries = max_retries

            job.consecutive_failures = 0
            job.is_active = True
            job.next_run = next_fire_time(job.cron_expression, self._clock(), job.timezone)
            session.delete(entry)
            job_name = job.name

        logger.info("Dead-lettered job %s re-enabled by operator", job_id)
        return {"message": f"Job '{job_name}' re-enabled and removed from the dead letter"}

    def clear(self) -> dict:
        with get_db_session() as session:
            count = session.execute(select(func.count()).select_from(SchedulerDeadLetter)).scalar_one()
            if not count:
                return {"message": "Dead letter is already empty"}
            session.execute(delete(SchedulerDeadLetter))

        logger.info("Cleared %s scheduler dead-letter entr%s", count, "y" if count == 1 else "ies")
        return {"message": f"Cleared {count} dead-letter entr{'y' if count == 1 else 'ies'}"}
