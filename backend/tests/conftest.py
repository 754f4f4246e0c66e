"""Shared test fixtures for all test groups."""

import pytest
from fakeredis import FakeAsyncRedis
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from thesisflow.db.base import bind_engine, close_db, create_schema, engine_options
from thesisflow.domain.funnel import LeadProfile
from thesisflow.integrations.content_gateway import ContentGatewayFake


@pytest.fixture
async def redis():
    """Create a fake Redis instance for testing."""
    fake_redis = FakeAsyncRedis(decode_responses=True)
    yield fake_redis
    await fake_redis.flushall()
    await fake_redis.aclose()

@pytest.fixture
async def engine() -> AsyncEngine:
    """In-memory SQLite engine with all tables created.

    Also installs it as the shared engine so code calling
    get_session_factory() (route dependencies, scripts) sees this database.
    """
    engine = create_async_engine("sqlite+aiosqlite://", **engine_options("sqlite+aiosqlite://"))
    await create_schema(engine)
    bind_engine(engine)

    yield engine

    await close_db()

@pytest.fixture
def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

@pytest.fixture
def content_fake():
    """Fresh ContentGatewayFake with happy_path scenario (default)."""
    return ContentGatewayFake(scenario="happy_path")

@pytest.fixture
def content_fake_failing():
    """ContentGatewayFake with provider_error scenario."""
    return ContentGatewayFake(scenario="provider_error")

@pytest.fixture
def lead():
    return LeadProfile(faculty="Engineering", department="CS", email="a@b.com")
