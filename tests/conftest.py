import os
from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

# Ensure we default to memory backend and open access for tests
os.environ.setdefault("PERSISTENCE_BACKEND", "memory")
os.environ["ENABLE_BASIC_AUTH"] = "false"

from todo_api.dependencies import get_clock, get_repo  # noqa: E402
from todo_api.main import app  # noqa: E402
from todo_api.repositories import InMemoryRepository  # noqa: E402

NOW = datetime(2025, 6, 1, 12, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    """Settable clock shared by the repository (created_at) and the ranking endpoint (now)."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def clock():
    return FakeClock(NOW)


@pytest.fixture
def repo(clock):
    return InMemoryRepository(clock=clock)


@pytest.fixture
def client(repo, clock):
    app.dependency_overrides[get_repo] = lambda: repo
    app.dependency_overrides[get_clock] = lambda: clock
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()
