from datetime import timedelta

import pytest

from erp_scheduler.database.session import get_db_session
from erp_scheduler.models.scheduled_job import ScheduledJob
from erp_scheduler.scheduler.dead_letter import JobDeadLetterStore, record_dead_letter
from erp_scheduler.scheduler.errors import DeadLetterNotFoundError, InvalidOperationError


def _failing(context):
    raise RuntimeError("ERP unreachable")


@pytest.fixture
def dead_engine(make_engine):
    """An engine whose only job has already been escalated to the dead letter."""
    engine = make_engine(_failing)
    for _ in range(3):
        engine.run_manually("sample_job")
    return engine


@pytest.fixture
def store(clock):
    return JobDeadLetterStore(clock=clock)


def _job():
    with get_db_session() as session:
        return session.get(ScheduledJob, "sample_job")


def test_get_lists_escalated_job(dead_engine, store):
    [entry] = store.get()
    assert entry.job_id == "sample_job"
    assert entry.job_name == "Sample Job"
    assert entry.retry_count == 3
    assert entry.error == "ERP unreachable"


def test_retry_reenables_job_and_next_tick_fires_it(dead_engine, store, clock):
    result = store.retry("sample_job")
    assert "re-enabled" in result["message"]
    assert store.get() == []

    job = _job()
    assert job.is_active is True
    assert job.consecutive_failures == 0
    assert job.next_run is not None
    # Historical counters are kept.
    assert job.fail_count == 3

    clock.advance(minutes=5)
    started = dead_engine.tick()
    assert len(started) == 1
    assert dead_engine.wait_idle(timeout=5)


def test_retry_without_budget_is_accepted_at_exhausted_retry_count(dead_engine, store):
    [entry] = store.get()
    assert entry.retry_count == _job().max_retries == 3

    store.retry("sample_job")

    job = _job()
    assert job.max_retries == 3
    assert job.is_active is True

    # The old budget applies to the fresh streak.
    for _ in range(2):
        dead_engine.run_manually("sample_job")
    assert _job().is_active is True
    dead_engine.run_manually("sample_job")
    assert _job().is_active is False
    [entry] = store.get()
    assert entry.retry_count == 3


def test_retry_unknown_entry_raises(setup_db, store):
    with pytest.raises(DeadLetterNotFoundError):
        store.retry("sample_job")


def test_retry_rejects_budget_below_recorded_failures(dead_engine, store):
    with pytest.raises(InvalidOperationError):
        store.retry("sample_job", max_retries=2)

    # Nothing changed.
    assert len(store.get()) == 1
    assert _job().is_active is False


def test_retry_with_larger_budget(dead_engine, store):
    store.retry("sample_job", max_retries=5)

    job = _job()
    assert job.max_retries == 5

    for _ in range(4):
        dead_engine.run_manually("sample_job")
    assert _job().is_active is True
    assert store.get() == []

    dead_engine.run_manually("sample_job")
    assert _job().is_active is False
    [entry] = store.get()
    assert entry.retry_count == 5
    assert entry.max_retries == 5


def test_manual_run_keeps_dead_letter_entry(dead_engine, store):
    dead_engine.run_manually("sample_job")

    [entry] = store.get()
    assert entry.retry_count == 3
    assert _job().is_active is False


def test_existing_entry_is_refreshed_not_duplicated(dead_engine, store, clock):
    later = clock() + timedelta(hours=1)
    with get_db_session() as session:
        job = session.get(ScheduledJob, "sample_job")
        record_dead_letter(session, job, "still broken", later)

    [entry] = store.get()
    assert entry.error == "still broken"
    assert entry.last_retry_at == later
    assert entry.retry_count == 3


def test_clear(dead_engine, store):
    assert store.clear()["message"] == "Cleared 1 dead-letter entry"
    assert store.get() == []
    assert store.clear()["message"] == "Dead letter is already empty"
