"""
Scheduler service: the tick loop and its lifecycle.

Owns an APScheduler BackgroundScheduler with a single interval job that calls
`ExecutionEngine.tick()`. Only the process holding the leadership lock runs
the loop; stopping prevents new fires but does not interrupt running jobs.
"""

from __future__ import annotations

import logging
import os
import threading
from datetime import datetime
from typing import Callable, Optional

from apscheduler.schedulers.background import BackgroundScheduler
from sqlalchemy import func, select
from sqlalchemy.engine import make_url
from sqlalchemy.exc import ArgumentError

from ..database.session import get_db_session
from ..models.scheduled_job import ScheduledJob
from .builtin_jobs import ErpJobClient, register_builtin_jobs
from .cron import resolve_timezone
from .dead_letter import JobDeadLetterStore
from .engine import ExecutionEngine
from .errors import SchedulerNotLeaderError
from .lock import SchedulerLock
from .registry import JobRegistry

logger = logging.getLogger(__name__)

TICK_JOB_ID = "scheduler_tick"


def default_lock_path(database_url: str) -> str:
    """
    Default lock location:
    - For sqlite:////path/to/db.sqlite -> /path/to/scheduler.lock
    - For sqlite:///./data/db.sqlite -> <cwd>/data/scheduler.lock
    - Otherwise -> ./scheduler.lock
    """
    try:
        url = make_url(database_url or "")
    except ArgumentError:
        return os.path.abspath("scheduler.lock")
    if url.get_backend_name() == "sqlite" and url.database and url.database != ":memory:":
        return os.path.join(os.path.dirname(os.path.abspath(url.database)), "scheduler.lock")
    return os.path.abspath("scheduler.lock")


class SchedulerService:
    def __init__(
        self,
        registry: JobRegistry,
        engine: ExecutionEngine,
        dead_letters: JobDeadLetterStore,
        *,
        tick_seconds: float = 30,
        timezone: str = "Asia/Riyadh",
        lock: Optional[SchedulerLock] = None,
        erp_client: Optional[ErpJobClient] = None,
    ):
        self.registry = registry
        self.engine = engine
        self.dead_letters = dead_letters
        self.tick_seconds = tick_seconds
        self.timezone = timezone
        self.lock = lock
        self.erp_client = erp_client

        self._scheduler: Optional[BackgroundScheduler] = None
        self._state_lock = threading.Lock()

    @classmethod
    def from_settings(
        cls,
        settings,
        *,
        enqueue_notification: Optional[Callable[..., str]] = None,
        cleanup_queue: Optional[Callable[[], dict]] = None,
        erp_client: Optional[ErpJobClient] = None,
    ) -> "SchedulerService":
        registry = JobRegistry()
        erp_client = erp_client or ErpJobClient.from_settings(settings)
        register_builtin_jobs(registry, erp_client=erp_client, cleanup_queue=cleanup_queue)

        engine = ExecutionEngine(
            registry,
            max_execution_seconds=settings.scheduler_max_execution_seconds,
            max_workers=settings.scheduler_max_workers,
            history_limit=settings.scheduler_execution_history_limit,
            enqueue_notification=enqueue_notification,
        )
        lock = SchedulerLock(
            lock_path=settings.scheduler_lock_path or default_lock_path(settings.database_url),
            stale_after_seconds=settings.scheduler_lock_stale_seconds or None,
        )
        return cls(
            registry,
            engine,
            JobDeadLetterStore(),
            tick_seconds=settings.scheduler_tick_seconds,
            timezone=settings.scheduler_timezone,
            lock=lock,
            erp_client=erp_client,
        )

    @property
    def running(self) -> bool:
        return self._scheduler is not None and bool(self._scheduler.running)

    @property
    def is_leader(self) -> bool:
        if not self.running:
            return False
        return self.lock is None or self.lock.is_held

    def init(self) -> None:
        """Seed job definitions and close runs a previous process abandoned."""
        self.registry.seed()
        reaped = self.engine.reap_stale()
        if reaped:
            logger.warning("Closed %s execution(s) left running by a previous process", reaped)

    def start(self) -> dict:
        with self._state_lock:
            if self.running:
                return {"message": "Scheduler is already running"}

            if self.lock is not None and not self.lock.try_acquire():
                holder = self.lock.holder()
                logger.info("Scheduler lock held by pid=%s; not starting tick loop", holder.pid)
                raise SchedulerNotLeaderError(self.lock.lock_path)

            tz = resolve_timezone(self.timezone)
            scheduler = BackgroundScheduler(timezone=tz)
            scheduler.add_job(
                self.engine.tick,
                "interval",
                seconds=self.tick_seconds,
                id=TICK_JOB_ID,
                name="Scheduler tick",
                max_instances=1,
                coalesce=True,
                # First pass right away rather than one interval from now.
                next_run_time=datetime.now(tz),
            )
            scheduler.start()
            self._scheduler = scheduler

        logger.info("Scheduler started (tick every %ss, timezone %s)", self.tick_seconds, self.timezone)
        return {"message": "Scheduler started"}

    def stop(self) -> dict:
        with self._state_lock:
            if not self.running:
                return {"message": "Scheduler is already stopped"}
            try:
                self._scheduler.shutdown(wait=False)
            finally:
                self._scheduler = None
                if self.lock is not None:
                    self.lock.release()

        logger.info("Scheduler stopped")
        return {"message": "Scheduler stopped"}

    def shutdown(self) -> None:
        self.stop()
        self.engine.shutdown(wait=False)
        if self.erp_client is not None:
            self.erp_client.close()

    def status(self) -> dict:
        with get_db_session() as session:
            job_count = session.execute(select(func.count()).select_from(ScheduledJob)).scalar_one()
            active_count = session.execute(
                select(func.count()).select_from(ScheduledJob).where(ScheduledJob.is_active.is_(True))
            ).scalar_one()
        return {
            "running": self.running,
            "is_leader": self.is_leader,
            "timezone": self.timezone,
            "tick_seconds": self.tick_seconds,
            "job_count": job_count,
            "active_job_count": active_count,
            "running_job_count": self.engine.inflight_count(),
        }
