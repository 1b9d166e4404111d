"""
Test Suite Configuration
"""
import fnmatch
from datetime import datetime
from typing import AsyncGenerator, Callable

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from nutritionist.analytics.metrics import build_event_frame, event_record
from nutritionist.config import Settings, get_settings
from nutritionist.config.settings import RedisSettings, SecuritySettings, ShopifySettings, StorageSettings
from nutritionist.database.connection import get_db_dependency
from nutritionist.database.models import Base
from nutritionist.security.admin_auth import generate_session_token
from nutritionist.serving import cache
from nutritionist.serving.api.main import create_api_app

ADMIN_PASSWORD = "test-password"
WEBHOOK_SECRET = "whsec_test_secret"

# Fixed reference time: Wednesday 2025-01-15 14:30 UTC
NOW = datetime(2025, 1, 15, 14, 30)


def build_settings(tmp_path, app_env: str = "testing", **shopify) -> Settings:
    return Settings(
        app_env=app_env,
        debug=True,
        redis=RedisSettings(enabled=False),
        security=SecuritySettings(admin_password=ADMIN_PASSWORD, rate_limit_enabled=False),
        shopify=ShopifySettings(webhook_secret=WEBHOOK_SECRET, **shopify),
        storage=StorageSettings(temp_dir=tmp_path / "temp"),
    )


@pytest.fixture
def test_settings(tmp_path) -> Settings:
    """Create test settings"""
    return build_settings(tmp_path)


@pytest.fixture
async def test_engine():
    """In-memory database shared by every session of one test"""
    engine = create_async_engine("sqlite+aiosqlite://", poolclass=StaticPool)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(test_engine) -> async_sessionmaker:
    return async_sessionmaker(bind=test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def test_db(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create test database session"""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def make_app(session_factory) -> Callable[[Settings], FastAPI]:
    """Build an app wired to the test database and the given settings"""

    def factory(settings: Settings) -> FastAPI:
        app = create_api_app(settings)

        async def override_db() -> AsyncGenerator[AsyncSession, None]:
            async with session_factory() as session:
                try:
                    yield session
                    await session.commit()
                except Exception:
                    await session.rollback()
                    raise

        app.dependency_overrides[get_db_dependency] = override_db
        app.dependency_overrides[get_settings] = lambda: settings
        return app

    return factory


@pytest.fixture
async def client(make_app, test_settings) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client against the app in testing mode"""
    transport = ASGITransport(app=make_app(test_settings))
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture
async def dev_client(make_app, tmp_path) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client against the app in development mode"""
    transport = ASGITransport(app=make_app(build_settings(tmp_path, app_env="development")))
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture
def admin_password() -> str:
    return ADMIN_PASSWORD


@pytest.fixture
def webhook_secret() -> str:
    return WEBHOOK_SECRET


@pytest.fixture
def admin_headers() -> dict:
    return {"Authorization": f"Bearer {generate_session_token(ADMIN_PASSWORD)}"}


@pytest.fixture
def make_frame():
    """Build an event frame from (event, session, timestamp, properties) tuples"""

    def factory(*rows):
        return build_event_frame(
            event_record(event, session_id, timestamp, properties)
            for event, session_id, timestamp, properties in rows
        )

    return factory


class InMemoryRedis:
    """Stand-in for the redis.asyncio client, covering the calls the cache makes"""

    def __init__(self):
        self.store = {}
        self.expiry = {}

    async def ping(self):
        return True

    async def get(self, key):
        return self.store.get(key)

    async def set(self, key, value, ex=None):
        self.store[key] = value
        self.expiry[key] = ex
        return True

    async def scan_iter(self, match="*"):
        for key in list(self.store):
            if fnmatch.fnmatchcase(key, match):
                yield key

    async def delete(self, *keys):
        removed = 0
        for key in keys:
            if self.store.pop(key, None) is not None:
                self.expiry.pop(key, None)
                removed += 1
        return removed


@pytest.fixture
def redis_client(monkeypatch) -> InMemoryRedis:
    """Install an in-memory client as the cache backend"""
    client = InMemoryRedis()
    monkeypatch.setattr(cache, "_client", client)
    return client
