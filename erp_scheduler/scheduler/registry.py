"""
Job Registry.

Holds the authoritative list of schedulable jobs: static definitions plus the
in-process handler for each. Definitions are seeded into `scheduled_jobs` at
startup; operator state (is_active) and counters live in the database and are
never overwritten by a re-seed.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Optional

from sqlalchemy import select

from ..database.session import get_db_session
from ..models.scheduled_job import ScheduledJob
from ..utils.timeutils import utcnow
from .cron import cron_validation_error, next_fire_time
from .errors import InvalidOperationError, JobNotFoundError

logger = logging.getLogger(__name__)


@dataclass
class JobContext:
    """What a handler gets to know about the run it is part of."""

    job_id: str
    job_name: str
    execution_id: str
    trigger_type: str
    enqueue_notification: Optional[Callable[..., str]] = None


JobHandler = Callable[[JobContext], Any]


@dataclass(frozen=True)
class JobDefinition:
    id: str
    name: str
    name_ar: str
    cron_expression: str
    description: str = ""
    timezone: str = "Asia/Riyadh"
    max_retries: int = 3
    active_by_default: bool = True


@dataclass
class _Registration:
    definition: JobDefinition
    handler: JobHandler = field(repr=False)


class JobRegistry:
    def __init__(self, clock: Callable[[], datetime] = utcnow) -> None:
        self._registrations: dict[str, _Registration] = {}
        self._clock = clock

    def register(self, definition: JobDefinition, handler: JobHandler) -> None:
        error = cron_validation_error(definition.cron_expression)
        if error:
            raise InvalidOperationError(f"Job '{definition.id}': {error}")
        if definition.id in self._registrations:
            logger.warning("Job '%s' registered twice; replacing handler", definition.id)
        self._registrations[definition.id] = _Registration(definition, handler)

    def __contains__(self, job_id: str) -> bool:
        return job_id in self._registrations

    def definitions(self) -> list[JobDefinition]:
        return [r.definition for r in self._registrations.values()]

    def get_handler(self, job_id: str) -> JobHandler:
        registration = self._registrations.get(job_id)
        if registration is None:
            raise JobNotFoundError(job_id)
        return registration.handler

    def seed(self) -> int:
        """
        Create missing job rows and refresh static metadata on existing ones.

        Returns the number of rows created.
        """
        now = self._clock()
        created = 0
        with get_db_session() as session:
            existing = {
                job.id: job
                for job in session.execute(select(ScheduledJob)).scalars().all()
            }
            for definition in self.definitions():
                job = existing.get(definition.id)
                if job is None:
                    job = ScheduledJob(
                        id=definition.id,
                        is_active=definition.active_by_default,
                        max_retries=definition.max_retries,
                        run_count=0,
                        fail_count=0,
                        consecutive_failures=0,
                    )
                    session.add(job)
                    created += 1

                cron_changed = job.cron_expression != definition.cron_expression or job.timezone != definition.timezone
                job.name = definition.name
                job.name_ar = definition.name_ar
                job.description = definition.description
                job.cron_expression = definition.cron_expression
                job.timezone = definition.timezone

                if job.is_active and (job.next_run is None or cron_changed):
                    job.next_run = next_fire_time(job.cron_expression, now, job.timezone)
                elif not job.is_active:
                    job.next_run = None

        if created:
            logger.info("Seeded %s scheduled job definition(s)", created)
        return created

    def list_jobs(self) -> list[ScheduledJob]:
        with get_db_session() as session:
            jobs = session.execute(select(ScheduledJob).order_by(ScheduledJob.id)).scalars().all()
            return list(jobs)

    def get_job(self, job_id: str) -> ScheduledJob:
        with get_db_session() as session:
            job = session.get(ScheduledJob, job_id)
            if job is None:
                raise JobNotFoundError(job_id)
            return job

    def toggle(self, job_id: str, is_active: bool) -> dict:
        """
        Enable or disable a job atomically.

        Enabling recomputes next_run from the cron expression relative to now;
        disabling clears it. Toggling to the current state is a no-op.
        """
        with get_db_session() as session:
            job = session.get(ScheduledJob, job_id)
            if job is None:
                raise JobNotFoundError(job_id)

            label = job.name
            if bool(job.is_active) == bool(is_active):
                return {"message": f"Job '{label}' is already {'enabled' if is_active else 'disabled'}"}

            if is_active:
                next_run = next_fire_time(job.cron_expression, self._clock(), job.timezone)
                if next_run is None:
                    raise InvalidOperationError(f"Job '{job_id}' has an invalid cron expression: {job.cron_expression}")
                job.is_active = True
                job.next_run = next_run
            else:
                job.is_active = False
                job.next_run = None

        logger.info("Job %s %s", job_id, "enabled" if is_active else "disabled")
        return {"message": f"Job '{label}' {'enabled' if is_active else 'disabled'}"}
