"""Pytest configuration and fixtures."""

from datetime import datetime, timedelta, timezone

import pytest
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from finterm.main import app
from finterm.models import Base
from finterm.routers.cache import get_cache
from finterm.routers.data_sources import get_external_data_service
from finterm.routers.markets import get_regional_aggregator, get_session_clock
from finterm.services.external_data import ExternalDataService
from finterm.services.freshness import FeedRefresher, FreshnessGate
from finterm.services.freshness_cache import FreshnessCache
from finterm.services.kv_store import MemoryKeyValueStore, SqlKeyValueStore
from finterm.services.market_hours import SessionClock
from finterm.services.regions import RegionalAggregator


# Test database URL (in-memory SQLite)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


def utc(year, month, day, hour=0, minute=0, second=0):
    return datetime(year, month, day, hour, minute, second, tzinfo=timezone.utc)


class FrozenClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now

    def set(self, now: datetime) -> None:
        self.now = now


@pytest.fixture
def frozen_clock():
    """Clock fixed at Monday 2025-01-06 12:00 UTC."""
    return FrozenClock(utc(2025, 1, 6, 12, 0))


@pytest.fixture
def memory_store():
    return MemoryKeyValueStore()


@pytest.fixture(scope="function")
async def session_maker():
    """Fresh in-memory database with the key/value table."""
    engine = create_async_engine(TEST_DATABASE_URL, echo=False, poolclass=StaticPool)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture
async def sql_store(session_maker):
    return SqlKeyValueStore(session_maker)


@pytest.fixture
def cache(memory_store, frozen_clock):
    return FreshnessCache(memory_store, clock=frozen_clock)


@pytest.fixture
def gate(memory_store, frozen_clock):
    return FreshnessGate(memory_store, clock=frozen_clock)


@pytest.fixture
def refresher(cache, gate, memory_store):
    return FeedRefresher(cache, gate, memory_store)


@pytest.fixture
def session_clock(frozen_clock):
    return SessionClock(clock=frozen_clock)


@pytest.fixture
def aggregator(session_clock):
    return RegionalAggregator(session_clock)


@pytest.fixture
def data_service(tmp_path, refresher, frozen_clock):
    """External data service writing its config and logs under tmp_path."""
    return ExternalDataService(
        config_path=tmp_path / "data_sources.yaml",
        refresher=refresher,
        log_dir=tmp_path / "logs",
        clock=frozen_clock,
    )


@pytest.fixture(scope="function")
async def client(cache, data_service, session_clock, aggregator):
    """Create test client with isolated services."""
    app.dependency_overrides[get_cache] = lambda: cache
    app.dependency_overrides[get_external_data_service] = lambda: data_service
    app.dependency_overrides[get_session_clock] = lambda: session_clock
    app.dependency_overrides[get_regional_aggregator] = lambda: aggregator

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
