"""Shared pytest fixtures for store, core and API tests.

Each test gets its own SQLite file so background click writes can open their
own connections next to the test's session.
"""

import datetime
from collections.abc import AsyncGenerator, Awaitable, Callable
from pathlib import Path

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from shortener.allocation import AllocationEngine
from shortener.analytics import AnalyticsAggregator
from shortener.codegen import CodeGenerator
from shortener.config import Settings
from shortener.database import build_session_factory, get_db, init_db
from shortener.dependencies import ServiceManager, _service_manager
from shortener.main import app
from shortener.models import URLMapping, utcnow
from shortener.store import SQLMappingStore
from shortener.tracker import ClickRecorder, RedirectTracker


def make_settings(**overrides) -> Settings:
    values = {
        "DATABASE_URL": "sqlite+aiosqlite://",
        "BASE_URL": "http://test",
        "CACHE_ENABLED": False,
        "LOG_LEVEL": "DEBUG",
    }
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
def settings_factory() -> Callable[..., Settings]:
    return make_settings


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest_asyncio.fixture(scope="function")
async def db_engine(tmp_path: Path) -> AsyncGenerator[AsyncEngine, None]:
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'shortener.db'}", echo=False)
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return build_session_factory(db_engine)


@pytest_asyncio.fixture(scope="function")
async def db_session(session_factory: async_sessionmaker[AsyncSession]) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def store(db_session: AsyncSession) -> SQLMappingStore:
    return SQLMappingStore(db_session)


@pytest.fixture
def generator(settings: Settings) -> CodeGenerator:
    return CodeGenerator.from_settings(settings)


@pytest_asyncio.fixture(scope="function")
async def recorder(session_factory: async_sessionmaker[AsyncSession]) -> AsyncGenerator[ClickRecorder, None]:
    click_recorder = ClickRecorder(session_factory)
    yield click_recorder
    await click_recorder.drain()


@pytest.fixture
def allocation_engine(store: SQLMappingStore, generator: CodeGenerator, settings: Settings) -> AllocationEngine:
    return AllocationEngine(store, generator, settings)


@pytest.fixture
def tracker(store: SQLMappingStore, recorder: ClickRecorder) -> RedirectTracker:
    return RedirectTracker(store, recorder)


@pytest.fixture
def aggregator(store: SQLMappingStore, settings: Settings) -> AnalyticsAggregator:
    return AnalyticsAggregator(store, settings)


@pytest.fixture
def reload_mapping(
    session_factory: async_sessionmaker[AsyncSession],
) -> Callable[[str], Awaitable[URLMapping | None]]:
    """Read a mapping through a fresh session, bypassing the test session's identity map."""

    async def _reload(short_code: str) -> URLMapping | None:
        async with session_factory() as session:
            return await SQLMappingStore(session).find_by_code(short_code)

    return _reload


@pytest.fixture
def make_mapping(store: SQLMappingStore) -> Callable[..., Awaitable[URLMapping]]:
    """Insert a mapping directly, skipping allocation rules."""

    async def _make(short_code: str, original_url: str = "https://example.com", **fields) -> URLMapping:
        now = utcnow()
        fields.setdefault("created_at", now)
        fields.setdefault("updated_at", fields["created_at"])
        mapping = URLMapping(short_code=short_code, original_url=original_url, is_active=True, click_count=0, **fields)
        return await store.insert(mapping)

    return _make


@pytest.fixture
def days_ago() -> Callable[[float], datetime.datetime]:
    return lambda days: utcnow() - datetime.timedelta(days=days)


@pytest_asyncio.fixture(scope="function")
async def service_manager(
    settings: Settings, session_factory: async_sessionmaker[AsyncSession]
) -> AsyncGenerator[ServiceManager, None]:
    await _service_manager.cleanup()
    await _service_manager.initialize(settings=settings, session_factory=session_factory)
    yield _service_manager
    await _service_manager.cleanup()


@pytest_asyncio.fixture(scope="function")
async def client(
    service_manager: ServiceManager, session_factory: async_sessionmaker[AsyncSession]
) -> AsyncGenerator[AsyncClient, None]:
    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
