"""Shared test fixtures and configuration."""
import asyncio
import os

# Required settings must exist before any app module is imported
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("ALLOWED_ORIGINS", "http://localhost:3000")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("CACHE_BACKEND", "memory")
os.environ.setdefault("RATE_LIMIT_PER_MINUTE", "1000")

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from app.application.auth_rate_limit import login_rate_limiter, request_rate_limiter
from app.database import enable_sqlite_foreign_keys
from app.infrastructure.cache import InMemoryCacheBackend
from app.models import Base
from app.services.admin.permission_cache import PermissionCache


class FakeClock:
    """Monotonic clock the tests move by hand."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture(autouse=True)
def clear_rate_limiters():
    login_rate_limiter.clear()
    request_rate_limiter.clear()
    yield
    login_rate_limiter.clear()
    request_rate_limiter.clear()


@pytest.fixture
def engine(tmp_path):
    # File-backed so the isolated audit session sees committed rows;
    # NullPool keeps connections from crossing event loops.
    test_engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'test.db'}", poolclass=NullPool
    )
    enable_sqlite_foreign_keys(test_engine.sync_engine)

    async def create_schema() -> None:
        async with test_engine.begin() as connection:
            await connection.run_sync(Base.metadata.create_all)

    asyncio.run(create_schema())
    yield test_engine
    asyncio.run(test_engine.dispose())


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def session(session_factory):
    async with session_factory() as db_session:
        yield db_session


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def cache_backend(clock):
    return InMemoryCacheBackend(clock=clock)


@pytest.fixture
def permission_cache(cache_backend):
    return PermissionCache(cache_backend, ttl_seconds=3600)
