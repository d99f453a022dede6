import os
import threading
from datetime import datetime, timedelta

import httpx
import pytest
from httpx import ASGITransport, AsyncClient


class FakeClock:
    """Settable naive-UTC clock shared by the services under test."""

    def __init__(self, start: datetime):
        self._now = start
        self._lock = threading.Lock()

    def __call__(self) -> datetime:
        with self._lock:
            return self._now

    def advance(self, **kwargs) -> datetime:
        with self._lock:
            self._now += timedelta(**kwargs)
            return self._now


class ErpStub:
    """httpx.MockTransport handler standing in for the ERP internal job endpoints."""

    def __init__(self):
        self.calls: list[httpx.Request] = []
        self.responses: dict[str, httpx.Response] = {}

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(request)
        job_id = request.url.path.rsplit("/", 1)[-1]
        response = self.responses.get(job_id)
        if response is not None:
            return response
        return httpx.Response(200, json={"result": {"ok": True}})


@pytest.fixture(scope="function")
def db_url(tmp_path, monkeypatch):
    db_path = tmp_path / "test.db"
    database_url = f"sqlite:///{db_path}"

    monkeypatch.setenv("SCHEDULER_ENABLED", "false")
    monkeypatch.setenv("NOTIFICATION_QUEUE_ENABLED", "false")
    monkeypatch.setenv("TESTING", "true")
    monkeypatch.setenv("DATABASE_URL", database_url)
    monkeypatch.setenv("SCHEDULER_LOCK_PATH", str(tmp_path / "scheduler.lock"))
    monkeypatch.setenv("ERP_BASE_URL", "http://erp.test")
    monkeypatch.setenv("MAIL_SERVER", "")
    monkeypatch.setenv("SLACK_WEBHOOK_URL", "")

    # Clear cached settings/engines/session factories so each test uses its own temp DB.
    from erp_scheduler.fastapi_app.config import get_settings
    from erp_scheduler.database import engine as db_engine
    from erp_scheduler.database import session as db_session

    get_settings.cache_clear()
    db_engine.get_engine.cache_clear()
    db_engine.get_async_engine.cache_clear()
    db_session.reset_session_factories()

    return database_url


@pytest.fixture(scope="function")
def setup_db(db_url):
    assert os.environ.get("DATABASE_URL") == db_url
    from erp_scheduler.database.bootstrap import init_db

    init_db()
    yield


@pytest.fixture
def clock():
    # Sunday 2026-01-04 05:00 UTC (08:00 in Riyadh).
    return FakeClock(datetime(2026, 1, 4, 5, 0, 0))


@pytest.fixture
def erp_stub():
    return ErpStub()


@pytest.fixture
def sample_definition():
    from erp_scheduler.scheduler.registry import JobDefinition

    return JobDefinition(
        id="sample_job",
        name="Sample Job",
        name_ar="مهمة تجريبية",
        description="Used by the tests",
        cron_expression="*/5 * * * *",
        timezone="UTC",
        max_retries=3,
    )


@pytest.fixture
def make_engine(setup_db, clock, sample_definition):
    """Build a seeded registry + engine around a single job with the given handler."""
    from erp_scheduler.scheduler.engine import ExecutionEngine
    from erp_scheduler.scheduler.registry import JobRegistry

    engines = []

    def _make(handler, definition=None, **kwargs):
        registry = JobRegistry(clock=clock)
        registry.register(definition or sample_definition, handler)
        registry.seed()
        kwargs.setdefault("clock", clock)
        engine = ExecutionEngine(registry, **kwargs)
        engines.append(engine)
        return engine

    yield _make

    for engine in engines:
        engine.shutdown(wait=False)


@pytest.fixture
def fake_channel():
    """Email channel double: records items, fails while `fail` is set."""

    class _Channel:
        def __init__(self):
            self.delivered = []
            self.fail = False
            self.release = threading.Event()
            self.release.set()

        def __call__(self, item):
            self.release.wait(5)
            if self.fail:
                raise RuntimeError("smtp unavailable")
            self.delivered.append(item.id)

    return _Channel()


@pytest.fixture
def queue(setup_db, fake_channel):
    from erp_scheduler.notifications.delivery import NotificationDispatcher
    from erp_scheduler.notifications.queue import NotificationQueue

    q = NotificationQueue(
        NotificationDispatcher({"email": fake_channel, "slack": fake_channel}),
        poll_seconds=0.05,
        max_concurrency=3,
    )
    yield q
    q.stop()
    fake_channel.release.set()
    q.wait_idle(timeout=5)


@pytest.fixture(scope="function")
def fastapi_app(db_url, erp_stub):
    assert os.environ.get("DATABASE_URL") == db_url
    from erp_scheduler.fastapi_app.config import get_settings
    from erp_scheduler.fastapi_app.main import build_services, create_app as create_fastapi_app
    from erp_scheduler.scheduler.builtin_jobs import ErpJobClient

    app = create_fastapi_app()
    settings = get_settings()
    build_services(
        app,
        settings,
        erp_client=ErpJobClient.from_settings(settings, transport=httpx.MockTransport(erp_stub)),
    )
    return app


@pytest.fixture(scope="function")
async def async_client(fastapi_app):
    # httpx.ASGITransport does not run ASGI lifespan hooks; enter the lifespan explicitly.
    async with fastapi_app.router.lifespan_context(fastapi_app):
        transport = ASGITransport(app=fastapi_app)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            yield client
