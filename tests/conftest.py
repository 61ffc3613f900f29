import asyncio
import os
import sys
from pathlib import Path

import pytest
from sqlalchemy.pool import NullPool

# Ensure project root on sys.path
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

# Settings are cached on first use; keep the shared apps permissive in tests
os.environ.setdefault("RATE_LIMIT_REQUESTS", "100000")
os.environ.setdefault("BACKGROUND_JOBS_ENABLED", "false")
os.environ.setdefault("CACHE_URL", "")

from libs.db import Database  # noqa: E402
from libs.http import reset_circuit_breakers  # noqa: E402


@pytest.fixture()
def database(tmp_path):
    """Fresh SQLite database with the schema created."""

    # NullPool: every asyncio.run gets its own connections
    db = Database(f"sqlite+aiosqlite:///{tmp_path / 'tracker.db'}", poolclass=NullPool)
    asyncio.run(db.init_db(max_attempts=1))
    yield db
    asyncio.run(db.dispose())


@pytest.fixture(autouse=True)
def _fresh_breakers():
    reset_circuit_breakers()
    yield
    reset_circuit_breakers()


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, now: float = 0.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture()
def clock():
    return FakeClock()


class FakeRedis:
    """Dict-backed subset of the redis.asyncio client API."""

    def __init__(self) -> None:
        self.data = {}
        self.ttls = {}

    async def get(self, key):
        return self.data.get(key)

    async def set(self, key, value, ex=None):
        if isinstance(value, bytes):
            value = value.decode("utf-8")
        self.data[key] = value
        self.ttls[key] = ex
        return True

    async def delete(self, *keys):
        removed = 0
        for key in keys:
            if self.data.pop(key, None) is not None:
                removed += 1
            self.ttls.pop(key, None)
        return removed

    async def scan_iter(self, match=None):
        prefix = (match or "*").rstrip("*")
        for key in list(self.data):
            if key.startswith(prefix):
                yield key


@pytest.fixture()
def fake_redis():
    return FakeRedis()


@pytest.fixture()
def client(database):
    """Scrapper API wired to the test database and an in-memory link cache."""

    from fastapi.testclient import TestClient

    from apps.api import main
    from libs.cache import InMemoryLinkListCache

    cache = InMemoryLinkListCache()
    main.app.dependency_overrides[main.get_database] = lambda: database
    main.app.dependency_overrides[main.get_link_cache] = lambda: cache
    # Not used as a context manager: the lifespan would start background jobs
    test_client = TestClient(main.app)
    test_client.link_cache = cache
    yield test_client
    main.app.dependency_overrides.clear()
