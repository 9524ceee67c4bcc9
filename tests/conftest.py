import os
import tempfile
import uuid
from datetime import datetime, timedelta, timezone
from pathlib import Path

# Point the app at throwaway infrastructure before anything imports settings.
_DB_PATH = Path(tempfile.mkdtemp(prefix="taskpipe-tests-")) / "taskpipe.db"
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_DB_PATH}"
os.environ["SYNC_DATABASE_URL"] = f"sqlite:///{_DB_PATH}"
os.environ["BROKER_URL"] = "memory://"

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from kombu import Connection  # noqa: E402

from taskpipe.database import SyncSessionLocal, sync_engine  # noqa: E402
from taskpipe.main import app  # noqa: E402
from taskpipe.models import Base  # noqa: E402
from taskpipe.models.person import Person  # noqa: E402
from taskpipe.models.task import Task  # noqa: E402
from taskpipe.services.cache_service import CacheService  # noqa: E402
from taskpipe.worker.broker import make_queue  # noqa: E402
from tests.fakes import FakeRedis, RecordingPublisher  # noqa: E402


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture(autouse=True)
def db():
    """Fresh schema per test (SQLite file shared by the sync and async engines)."""

    Base.metadata.drop_all(sync_engine)
    Base.metadata.create_all(sync_engine)
    yield SyncSessionLocal


@pytest.fixture
def persons(db) -> dict[str, int]:
    with db() as session:
        ana = Person(name="Ana")
        bruno = Person(name="Bruno")
        session.add_all([ana, bruno])
        session.commit()
        return {"ana": ana.id, "bruno": bruno.id}


@pytest.fixture
def make_task(db):
    def _make_task(*, person_id: int, title: str = "Existing task", severity: int = 2) -> int:
        with db() as session:
            task = Task(
                person_id=person_id,
                title=title,
                description="desc",
                location="office",
                severity=severity,
                start_date=datetime.now(timezone.utc) + timedelta(days=2),
                end_date=None,
            )
            session.add(task)
            session.commit()
            return task.id

    return _make_task


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def cache(fake_redis: FakeRedis) -> CacheService:
    return CacheService(fake_redis, ttl_seconds=600)


@pytest.fixture
def publisher() -> RecordingPublisher:
    return RecordingPublisher()


@pytest.fixture
def client(cache: CacheService, publisher: RecordingPublisher):
    # TestClient is not entered as a context manager, so the lifespan (real
    # Redis/broker wiring) never runs; the fakes stand in on app.state.
    app.state.cache = cache
    app.state.publisher = publisher
    yield TestClient(app, raise_server_exceptions=False)
    del app.state.cache
    del app.state.publisher


@pytest.fixture
def broker():
    with Connection("memory://") as conn:
        yield conn


@pytest.fixture
def task_queue():
    # Memory transport state is process-global; isolate each test's queue.
    return make_queue(f"taskQueue-{uuid.uuid4().hex[:8]}")


@pytest.fixture
def dead_letter_queue(task_queue):
    return make_queue(f"{task_queue.name}.dead-letter")

