import threading
from datetime import datetime, timedelta

import pytest
from sqlalchemy import select

from erp_scheduler.database.session import get_db_session
from erp_scheduler.models.job_execution import JobExecution
from erp_scheduler.models.scheduled_job import ScheduledJob
from erp_scheduler.models.scheduler_dead_letter import SchedulerDeadLetter
from erp_scheduler.scheduler.errors import JobNotFoundError


def _executions(job_id="sample_job"):
    with get_db_session() as session:
        return session.execute(
            select(JobExecution).where(JobExecution.job_id == job_id).order_by(JobExecution.start_time)
        ).scalars().all()


def _job(job_id="sample_job"):
    with get_db_session() as session:
        return session.get(ScheduledJob, job_id)


def _make_due(clock, job_id="sample_job"):
    with get_db_session() as session:
        session.get(ScheduledJob, job_id).next_run = clock() - timedelta(minutes=1)


def _failing(context):
    raise RuntimeError("ERP returned 500: boom")


def test_manual_run_success_records_execution(make_engine):
    engine = make_engine(lambda context: {"rows": 3, "trigger": context.trigger_type})

    outcome = engine.run_manually("sample_job")

    assert outcome["success"] is True
    assert outcome["result"] == {"rows": 3, "trigger": "manual"}

    [execution] = _executions()
    assert execution.status == "success"
    assert execution.trigger_type == "manual"
    assert execution.end_time is not None
    assert execution.get_result() == {"rows": 3, "trigger": "manual"}

    job = _job()
    assert job.run_count == 1
    assert job.fail_count == 0
    assert job.last_status == "success"
    assert job.last_run == execution.start_time
    assert job.running_execution_id is None


def test_manual_run_failure_stores_error_verbatim(make_engine):
    engine = make_engine(_failing)

    outcome = engine.run_manually("sample_job")

    assert outcome == {"success": False, "error": "ERP returned 500: boom", "executionId": outcome["executionId"]}
    [execution] = _executions()
    assert execution.status == "failed"
    assert execution.error == "ERP returned 500: boom"

    job = _job()
    assert job.last_status == "failed"
    assert job.last_error == "ERP returned 500: boom"
    assert job.fail_count == 1
    assert job.consecutive_failures == 1


def test_manual_run_unknown_job_raises(make_engine):
    engine = make_engine(lambda context: None)
    with pytest.raises(JobNotFoundError):
        engine.run_manually("missing")


def test_counters_never_let_failures_exceed_runs(make_engine):
    calls = {"n": 0}

    def flaky(context):
        calls["n"] += 1
        if calls["n"] % 2:
            raise ValueError("odd run")
        return "ok"

    engine = make_engine(flaky)
    for _ in range(5):
        engine.run_manually("sample_job")
        job = _job()
        assert job.fail_count <= job.run_count

    job = _job()
    assert job.run_count == 5
    assert job.fail_count == 3


def test_success_resets_consecutive_failures(make_engine):
    results = iter([RuntimeError("first"), RuntimeError("second"), None])

    def handler(context):
        outcome = next(results)
        if outcome is not None:
            raise outcome

    engine = make_engine(handler)
    engine.run_manually("sample_job")
    engine.run_manually("sample_job")
    assert _job().consecutive_failures == 2

    engine.run_manually("sample_job")
    job = _job()
    assert job.consecutive_failures == 0
    assert job.last_error is None
    assert job.is_active is True


def test_three_consecutive_failures_move_job_to_dead_letter(make_engine):
    engine = make_engine(_failing)

    for _ in range(3):
        engine.run_manually("sample_job")

    job = _job()
    assert job.is_active is False
    assert job.next_run is None
    assert job.fail_count == 3

    with get_db_session() as session:
        [entry] = session.execute(select(SchedulerDeadLetter)).scalars().all()
    assert entry.job_id == "sample_job"
    assert entry.retry_count == 3
    assert entry.max_retries == 3
    assert entry.error == "ERP returned 500: boom"


def test_tick_fires_due_job_once_and_advances_next_run(make_engine, clock):
    engine = make_engine(lambda context: context.trigger_type)
    _make_due(clock)

    started = engine.tick()
    assert len(started) == 1
    assert engine.wait_idle(timeout=5)

    # Same instant again: next_run has moved past now.
    assert engine.tick() == []
    assert engine.wait_idle(timeout=5)

    [execution] = _executions()
    assert execution.trigger_type == "scheduled"
    assert execution.status == "success"
    assert execution.get_result() == "scheduled"

    job = _job()
    assert job.next_run > clock()
    assert job.run_count == 1


def test_tick_skips_inactive_and_future_jobs(make_engine, clock):
    engine = make_engine(lambda context: None)
    assert engine.tick() == []

    _make_due(clock)
    with get_db_session() as session:
        session.get(ScheduledJob, "sample_job").is_active = False
    assert engine.tick() == []
    assert _executions() == []


def test_running_job_is_not_fired_again(make_engine, clock):
    release = threading.Event()
    entered = threading.Event()

    def blocking(context):
        entered.set()
        release.wait(5)
        return "done"

    engine = make_engine(blocking)
    _make_due(clock)

    [execution_id] = engine.tick()
    assert entered.wait(5)
    assert _job().running_execution_id == execution_id

    outcome = engine.run_manually("sample_job")
    assert outcome["success"] is False
    assert "already running" in outcome["error"]

    _make_due(clock)
    assert engine.tick() == []

    release.set()
    assert engine.wait_idle(timeout=5)

    assert len(_executions()) == 1
    assert _job().running_execution_id is None


def test_run_exceeding_max_duration_is_failed_and_lock_released(make_engine):
    release = threading.Event()

    def slow(context):
        release.wait(5)
        return "late"

    engine = make_engine(slow, max_execution_seconds=0.2)
    try:
        outcome = engine.run_manually("sample_job")
    finally:
        release.set()

    assert outcome["success"] is False
    assert "maximum execution time" in outcome["error"]

    [execution] = _executions()
    assert execution.status == "failed"
    job = _job()
    assert job.running_execution_id is None
    assert job.fail_count == 1


def test_busy_runner_pool_does_not_eat_into_another_jobs_time_limit(make_engine, clock):
    from erp_scheduler.scheduler.registry import JobDefinition

    release = threading.Event()
    entered = threading.Event()
    fast_calls = []

    def slow(context):
        entered.set()
        release.wait(5)
        return "slow done"

    def fast(context):
        fast_calls.append(context.execution_id)
        return "fast done"

    engine = make_engine(slow, max_workers=1, max_execution_seconds=0.5)
    engine.registry.register(
        JobDefinition(id="fast_job", name="Fast", name_ar="سريع", cron_expression="0 0 1 1 *", timezone="UTC"),
        fast,
    )
    engine.registry.seed()
    _make_due(clock)

    try:
        [slow_execution] = engine.tick()
        assert entered.wait(5)

        outcome = engine.run_manually("fast_job")
    finally:
        release.set()

    assert outcome["success"] is True
    assert outcome["result"] == "fast done"
    assert fast_calls == [outcome["executionId"]]
    assert engine.wait_idle(timeout=5)

    [fast_execution] = _executions("fast_job")
    assert fast_execution.status == "success"
    fast_job = _job("fast_job")
    assert fast_job.fail_count == 0
    assert fast_job.consecutive_failures == 0
    assert _executions()[0].id == slow_execution


def test_late_completion_after_close_is_discarded(make_engine):
    engine = make_engine(_failing)
    outcome = engine.run_manually("sample_job")

    assert engine._close(outcome["executionId"], "success", result="late") is False

    [execution] = _executions()
    assert execution.status == "failed"
    assert _job().run_count == 1


def test_reap_stale_closes_abandoned_runs(make_engine, clock):
    engine = make_engine(lambda context: None, max_execution_seconds=600)

    with get_db_session() as session:
        session.add(
            JobExecution(
                id="abandoned-run",
                job_id="sample_job",
                job_name="Sample Job",
                status="running",
                trigger_type="scheduled",
                start_time=clock() - timedelta(hours=1),
            )
        )
        session.get(ScheduledJob, "sample_job").running_execution_id = "abandoned-run"

    assert engine.reap_stale() == 1

    [execution] = _executions()
    assert execution.status == "failed"
    assert "abandoned" in execution.error.lower()

    job = _job()
    assert job.running_execution_id is None
    assert job.fail_count == 1
    assert job.run_count == 1


def test_reap_leaves_recent_runs_alone(make_engine, clock):
    engine = make_engine(lambda context: None, max_execution_seconds=600)

    with get_db_session() as session:
        session.add(
            JobExecution(
                id="recent-run",
                job_id="sample_job",
                job_name="Sample Job",
                status="running",
                trigger_type="scheduled",
                start_time=clock() - timedelta(seconds=30),
            )
        )
        session.get(ScheduledJob, "sample_job").running_execution_id = "recent-run"

    assert engine.reap_stale() == 0
    assert _job().running_execution_id == "recent-run"


def test_orphaned_lock_is_released(make_engine):
    engine = make_engine(lambda context: None)
    with get_db_session() as session:
        session.get(ScheduledJob, "sample_job").running_execution_id = "no-such-execution"

    engine.reap_stale()
    assert _job().running_execution_id is None


def test_handler_error_does_not_escape_tick(make_engine, clock):
    engine = make_engine(_failing)
    _make_due(clock)

    started = engine.tick()
    assert len(started) == 1
    assert engine.wait_idle(timeout=5)
    assert _job().last_status == "failed"


def test_prune_history_keeps_newest_closed_runs(make_engine, clock):
    engine = make_engine(lambda context: None, history_limit=3)
    for _ in range(5):
        engine.run_manually("sample_job")
        clock.advance(seconds=1)

    assert engine.prune_history() == 2
    remaining = _executions()
    assert len(remaining) == 3
    assert remaining[0].start_time == datetime(2026, 1, 4, 5, 0, 2)


def test_handler_receives_notification_hook(make_engine):
    queued = []

    def handler(context):
        context.enqueue_notification({"subject": "Hi"})
        return context.job_name

    engine = make_engine(handler, enqueue_notification=lambda payload: queued.append(payload) or "notif_1")
    outcome = engine.run_manually("sample_job")

    assert outcome["result"] == "Sample Job"
    assert queued == [{"subject": "Hi"}]
