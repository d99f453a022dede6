"""
Job Execution Engine.

Fires due jobs (from the tick loop) or on demand, records each run as a
JobExecution and keeps the job row's counters in step.

Concurrency model:
- `running_execution_id` on the job row is the per-job lock. It is taken with a
  conditional UPDATE (`... WHERE running_execution_id IS NULL`) in the same
  transaction that inserts the execution row, so a job never overlaps itself.
- Scheduled runs go through a bounded runner pool. Each run starts its handler
  on a thread of its own, so the `max_execution_seconds` clock starts when the
  handler does, never while it waits behind other jobs. Past the limit the run
  is closed as failed and the lock is released even though the handler thread
  may still be busy.
- Closing is a conditional UPDATE (`... WHERE status = 'running'`). Whoever
  closes first wins; a late completion of a reaped run is discarded.
"""

from __future__ import annotations

import logging
import threading
import uuid
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from concurrent.futures import wait as wait_futures
from datetime import datetime, timedelta
from typing import Any, Callable, Optional

from sqlalchemy import delete, select, update

from ..database.session import get_db_session
from ..models.job_execution import JobExecution
from ..models.scheduled_job import ScheduledJob
from ..utils.timeutils import utcnow
from .cron import next_fire_time
from .dead_letter import record_dead_letter
from .errors import JobNotFoundError
from .registry import JobContext, JobRegistry

logger = logging.getLogger(__name__)

TRIGGER_SCHEDULED = "scheduled"
TRIGGER_MANUAL = "manual"


class ExecutionEngine:
    def __init__(
        self,
        registry: JobRegistry,
        *,
        max_execution_seconds: float = 600,
        max_workers: int = 5,
        history_limit: int = 200,
        enqueue_notification: Optional[Callable[..., str]] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.registry = registry
        self.max_execution_seconds = max_execution_seconds
        self.history_limit = history_limit
        self.enqueue_notification = enqueue_notification
        self._clock = clock

        self._runner_pool = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="job-runner")
        self._inflight: dict[str, Future] = {}
        self._inflight_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Claim / close
    # ------------------------------------------------------------------

    def _claim(self, job: ScheduledJob, trigger_type: str, now: datetime) -> Optional[str]:
        """
        Take the job lock and open an execution row. Returns the execution id,
        or None if the job is already running (or, for scheduled runs, no
        longer due).
        """
        execution_id = str(uuid.uuid4())
        values: dict[str, Any] = {"running_execution_id": execution_id}
        conditions = [
            ScheduledJob.id == job.id,
            ScheduledJob.running_execution_id.is_(None),
        ]
        if trigger_type == TRIGGER_SCHEDULED:
            # Advance next_run in the same statement so the job fires once per slot.
            conditions += [ScheduledJob.is_active.is_(True), ScheduledJob.next_run <= now]
            values["next_run"] = next_fire_time(job.cron_expression, now, job.timezone)

        with get_db_session() as session:
            result = session.execute(
                update(ScheduledJob)
                .where(*conditions)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                return None

            session.add(
                JobExecution(
                    id=execution_id,
                    job_id=job.id,
                    job_name=job.name,
                    status="running",
                    trigger_type=trigger_type,
                    start_time=now,
                )
            )
        return execution_id

    def _close(self, execution_id: str, status: str, *, error: Optional[str] = None, result: Any = None) -> bool:
        """
        Close a running execution and update the job row.

        Returns False when the execution was already closed (e.g. reaped), in
        which case nothing is written.
        """
        now = self._clock()
        with get_db_session() as session:
            closed = session.execute(
                update(JobExecution)
                .where(JobExecution.id == execution_id, JobExecution.status == "running")
                .values(status=status, end_time=now)
                .execution_options(synchronize_session=False)
            )
            if closed.rowcount != 1:
                logger.info("Discarding late completion of execution %s", execution_id)
                return False

            execution = session.get(JobExecution, execution_id)
            execution.mark_completed(status, error=error, result=result, completed_at=now)

            job = session.get(ScheduledJob, execution.job_id)
            if job is None:
                return True

            if job.running_execution_id == execution_id:
                job.running_execution_id = None
            job.last_run = execution.start_time
            job.last_status = status
            job.run_count = (job.run_count or 0) + 1

            if status == "success":
                job.last_error = None
                job.consecutive_failures = 0
                return True

            job.last_error = error
            job.fail_count = (job.fail_count or 0) + 1
            job.consecutive_failures = (job.consecutive_failures or 0) + 1

            if job.max_retries and job.consecutive_failures >= job.max_retries:
                record_dead_letter(session, job, error, now)
                job.is_active = False
                job.next_run = None
                logger.warning(
                    "Job %s failed %s consecutive time(s); moved to dead letter and disabled",
                    job.id,
                    job.consecutive_failures,
                )
        return True

    # ------------------------------------------------------------------
    # Running
    # ------------------------------------------------------------------

    @staticmethod
    def _start_handler(handler: Callable[[JobContext], Any], context: JobContext) -> Future:
        future: Future = Future()

        def _run() -> None:
            if not future.set_running_or_notify_cancel():
                return
            try:
                future.set_result(handler(context))
            except Exception as exc:
                future.set_exception(exc)

        threading.Thread(
            target=_run,
            name=f"job-handler-{context.execution_id[:8]}",
            daemon=True,
        ).start()
        return future

    def _execute(self, job_id: str, job_name: str, execution_id: str, trigger_type: str) -> dict:
        context = JobContext(
            job_id=job_id,
            job_name=job_name,
            execution_id=execution_id,
            trigger_type=trigger_type,
            enqueue_notification=self.enqueue_notification,
        )
        logger.info("Executing job '%s' (ID: %s, trigger: %s)", job_name, job_id, trigger_type)

        try:
            handler = self.registry.get_handler(job_id)
            future = self._start_handler(handler, context)
            result = future.result(timeout=self.max_execution_seconds)
        except FutureTimeoutError:
            error = f"Job '{job_name}' exceeded the maximum execution time of {self.max_execution_seconds:g}s"
            logger.error(error)
            self._close(execution_id, "failed", error=error)
            return {"success": False, "error": error, "executionId": execution_id}
        except Exception as exc:
            error = str(exc) or exc.__class__.__name__
            logger.error("Job '%s' (ID: %s) failed: %s", job_name, job_id, error)
            self._close(execution_id, "failed", error=error)
            return {"success": False, "error": error, "executionId": execution_id}

        self._close(execution_id, "success", result=result)
        logger.info("Job '%s' (ID: %s) completed successfully", job_name, job_id)
        return {"success": True, "result": result, "executionId": execution_id}

    def _track(self, execution_id: str, future: Future) -> None:
        with self._inflight_lock:
            self._inflight[execution_id] = future

        def _done(_f: Future) -> None:
            with self._inflight_lock:
                self._inflight.pop(execution_id, None)

        future.add_done_callback(_done)

    def inflight_count(self) -> int:
        with self._inflight_lock:
            return len(self._inflight)

    def run_manually(self, job_id: str) -> dict:
        """
        Fire a job now, on the calling thread, regardless of its schedule.

        Works on disabled jobs too. Returns `{success, error?, result?}`; a job
        that is already running is reported, not fired.
        """
        with get_db_session() as session:
            job = session.get(ScheduledJob, job_id)
            if job is None:
                raise JobNotFoundError(job_id)

        execution_id = self._claim(job, TRIGGER_MANUAL, self._clock())
        if execution_id is None:
            return {"success": False, "error": f"Job '{job.name}' is already running"}

        return self._execute(job.id, job.name, execution_id, TRIGGER_MANUAL)

    def tick(self) -> list[str]:
        """
        One pass of the scheduling loop.

        Reaps stale runs, then claims every due job and hands it to the runner
        pool. Returns the execution ids that were started. Never raises.
        """
        started: list[str] = []
        try:
            self.reap_stale()
        except Exception as exc:
            logger.exception("Failed reaping stale executions: %s", exc)

        now = self._clock()
        try:
            with get_db_session() as session:
                due = session.execute(
                    select(ScheduledJob).where(
                        ScheduledJob.is_active.is_(True),
                        ScheduledJob.next_run.is_not(None),
                        ScheduledJob.next_run <= now,
                        ScheduledJob.running_execution_id.is_(None),
                    )
                ).scalars().all()
        except Exception as exc:
            logger.exception("Failed selecting due jobs: %s", exc)
            return started

        for job in due:
            try:
                if job.id not in self.registry:
                    logger.warning("Due job %s has no registered handler; skipping", job.id)
                    continue
                execution_id = self._claim(job, TRIGGER_SCHEDULED, now)
                if execution_id is None:
                    continue
                future = self._runner_pool.submit(self._execute, job.id, job.name, execution_id, TRIGGER_SCHEDULED)
                self._track(execution_id, future)
                started.append(execution_id)
            except Exception as exc:
                logger.exception("Failed firing job %s: %s", job.id, exc)

        try:
            self.prune_history()
        except Exception as exc:
            logger.exception("Failed pruning execution history: %s", exc)
        return started

    # ------------------------------------------------------------------
    # Liveness
    # ------------------------------------------------------------------

    def reap_stale(self) -> int:
        """
        Close executions still `running` past the maximum duration that no
        runner in this process is waiting on (crashed worker, restart).
        """
        cutoff = self._clock() - timedelta(seconds=self.max_execution_seconds)
        with get_db_session() as session:
            stale_ids = session.execute(
                select(JobExecution.id).where(
                    JobExecution.status == "running",
                    JobExecution.start_time < cutoff,
                )
            ).scalars().all()

        with self._inflight_lock:
            tracked = set(self._inflight)

        reaped = 0
        for execution_id in stale_ids:
            if execution_id in tracked:
                continue
            error = f"Execution abandoned: still running after {self.max_execution_seconds:g}s"
            if self._close(execution_id, "failed", error=error):
                reaped += 1
                logger.warning("Reaped stale execution %s", execution_id)

        self._release_orphan_locks()
        return reaped

    def _release_orphan_locks(self) -> None:
        # A lock whose execution row is closed or missing can never be released by its runner.
        with get_db_session() as session:
            locked = session.execute(
                select(ScheduledJob).where(ScheduledJob.running_execution_id.is_not(None))
            ).scalars().all()
            for job in locked:
                execution = session.get(JobExecution, job.running_execution_id)
                if execution is None or execution.status != "running":
                    logger.warning("Releasing orphaned lock on job %s", job.id)
                    job.running_execution_id = None

    def prune_history(self) -> int:
        if not self.history_limit:
            return 0
        with get_db_session() as session:
            keep_ids = session.execute(
                select(JobExecution.id).order_by(JobExecution.start_time.desc()).limit(self.history_limit)
            ).scalars().all()
            if len(keep_ids) < self.history_limit:
                return 0
            result = session.execute(
                delete(JobExecution)
                .where(JobExecution.status != "running", JobExecution.id.not_in(keep_ids))
                .execution_options(synchronize_session=False)
            )
            return result.rowcount or 0

    def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """Block until every scheduled run started by `tick()` has closed."""
        with self._inflight_lock:
            pending = list(self._inflight.values())
        if not pending:
            return True
        _, not_done = wait_futures(pending, timeout=timeout)
        return not not_done

    def shutdown(self, wait: bool = False) -> None:
        self._runner_pool.shutdown(wait=wait)
