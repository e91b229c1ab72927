"""
Pytest configuration and fixtures.
"""
import uuid
from datetime import datetime, timedelta, timezone
from typing import AsyncGenerator, Callable

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from limits.storage import MemoryStorage
from limits.strategies import FixedWindowRateLimiter

from civic_tracker.core.security import Actor
from civic_tracker.models.issues import Issue, IssueCategory
from civic_tracker.models.users import UserRole

NOW = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)


def make_actor(role: str = UserRole.USER, active: bool = True) -> Actor:
    return Actor(user_id=uuid.uuid4(), role=role, is_active=active)


def make_issue(**overrides) -> Issue:
    """Transient issue with valid defaults; ``overrides`` win."""
    fields = dict(
        id=uuid.uuid4(),
        title="Pothole on Main Street",
        description="Large pothole causing traffic issues near the junction",
        category=IssueCategory.ROADS_TRANSPORT,
        longitude=-74.006,
        latitude=40.7128,
        city="New York",
        reported_by_id=uuid.uuid4(),
        created_at=NOW - timedelta(days=1),
    )
    fields.update(overrides)
    return Issue(**fields)


@pytest.fixture
def issue_factory() -> Callable[..., Issue]:
    return make_issue


@pytest.fixture
def citizen() -> Actor:
    return make_actor(UserRole.USER)


@pytest.fixture
def moderator() -> Actor:
    return make_actor(UserRole.MODERATOR)


@pytest.fixture
def admin() -> Actor:
    return make_actor(UserRole.ADMIN)


@pytest_asyncio.fixture
async def api_client(monkeypatch) -> AsyncGenerator[AsyncClient, None]:
    """HTTPX AsyncClient configured against the FastAPI app with test overrides."""
    from civic_tracker.main import app
    from civic_tracker.core.database import get_db
    from civic_tracker.core.redis import get_redis
    from civic_tracker.core.rate_limiter import limiter
    import civic_tracker.core.rate_limiter as rate_limit_module
    from slowapi import extension as slowapi_extension

    class StubResult:
        def scalar(self):
            return 1

        def scalar_one(self):
            return 1

    class StubSession:
        async def execute(self, *_args, **_kwargs):
            return StubResult()

        async def get(self, *_args, **_kwargs):
            return None

        async def close(self):
            return None

    class StubRedis:
        async def ping(self):
            return True

        async def get(self, _key):
            return None

        async def setex(self, *_args):
            return True

        async def delete(self, *_keys):
            return 0

    async def override_db():
        session = StubSession()
        try:
            yield session
        finally:
            await session.close()

    async def override_redis():
        return StubRedis()

    async def _startup_stub(*_args, **_kwargs):
        return None

    monkeypatch.setattr("civic_tracker.main.init_db", _startup_stub)
    monkeypatch.setattr("civic_tracker.main.ensure_admin_user", _startup_stub)
    previous_storage, previous_strategy = limiter._storage, limiter._limiter
    limiter._storage = MemoryStorage()
    limiter._limiter = FixedWindowRateLimiter(limiter._storage)
    limiter.reset()
    monkeypatch.setattr(
        slowapi_extension,
        "_rate_limit_exceeded_handler",
        rate_limit_module._rate_limit_handler,
    )

    app.dependency_overrides[get_db] = override_db
    app.dependency_overrides[get_redis] = override_redis
    app.state.test_db_override = override_db
    app.state.test_redis_override = override_redis

    transport = ASGITransport(app=app)
    try:
        async with AsyncClient(transport=transport, base_url="http://testserver") as client:
            yield client
    finally:
        app.dependency_overrides.clear()
        if hasattr(app.state, "test_db_override"):
            delattr(app.state, "test_db_override")
        if hasattr(app.state, "test_redis_override"):
            delattr(app.state, "test_redis_override")
        limiter._storage = previous_storage
        limiter._limiter = previous_strategy
