import os
import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path

# main.py builds a default app on import; keep its database out of the repo.
os.environ.setdefault("TASKS_DB_PATH", str(Path(tempfile.gettempdir()) / "tasks-api-import.db"))

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from auth import issue_token  # noqa: E402
from config import Settings  # noqa: E402
from database import TaskStore  # noqa: E402
from main import create_app  # noqa: E402
from services import TaskService  # noqa: E402

TEST_SECRET = "test-secret-key-that-is-long-enough-for-hs256"


class FakeClock:
    """Deterministic clock; call it for the current time, advance() to move on."""

    def __init__(self, start: datetime = datetime(2025, 9, 1, 12, 0, tzinfo=timezone.utc)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def store(tmp_path: Path) -> TaskStore:
    return TaskStore(tmp_path / "tasks.sqlite3")


@pytest.fixture()
def service(store: TaskStore, clock: FakeClock) -> TaskService:
    return TaskService(store, clock=clock)


@pytest.fixture()
def settings(tmp_path: Path) -> Settings:
    return Settings(db_path=str(tmp_path / "tasks.sqlite3"), jwt_secret=TEST_SECRET)


@pytest.fixture()
def app(settings: Settings, store: TaskStore, clock: FakeClock):
    return create_app(settings, store=store, clock=clock)


@pytest.fixture()
def client(app) -> TestClient:
    return TestClient(app)


@pytest.fixture()
def token_for():
    def make(user_id: int, ttl: int = 3600) -> str:
        return issue_token(user_id, TEST_SECRET, ttl=ttl)

    return make


@pytest.fixture()
def auth_headers(token_for):
    def make(user_id: int = 1) -> dict:
        return {"Authorization": f"Bearer {token_for(user_id)}"}

    return make
