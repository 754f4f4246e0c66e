"""API-specific test fixtures.

The app is built with create_app() and exercised in-process through
httpx.AsyncClient, so route handlers share the pytest-asyncio loop with the
SQLite engine and the fake Redis from the root conftest. Lifespan does not
run under ASGITransport; the engine fixture installs the global session
factory and Redis is injected through dependency overrides.
"""

import pytest
from httpx import ASGITransport, AsyncClient

from thesisflow.api.dependencies import get_content_gateway, get_payment_gateway
from thesisflow.db.redis import get_redis
from thesisflow.integrations.payments import SimulatedPaymentGateway
from thesisflow.main import create_app

SESSION_COOKIE = "thesisflow_session"
SESSION_ID = "test-session"


@pytest.fixture
def app(engine, redis, content_fake):
    application = create_app()
    application.dependency_overrides[get_redis] = lambda: redis
    application.dependency_overrides[get_content_gateway] = lambda: content_fake
    application.dependency_overrides[get_payment_gateway] = SimulatedPaymentGateway
    yield application
    application.dependency_overrides.clear()


@pytest.fixture
async def anonymous_client(app):
    """Client without a funnel session cookie."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://testserver") as client:
        yield client


@pytest.fixture
async def client(app):
    """Client carrying a fixed funnel session cookie."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://testserver") as client:
        client.cookies.set(SESSION_COOKIE, SESSION_ID)
        yield client


@pytest.fixture
async def paid_client(client):
    """Client whose session has completed (simulated) payment."""
    await client.post("/api/funnel/start")
    await client.post(
        "/api/funnel/lead",
        json={"faculty": "Engineering", "department": "CS", "email": "a@b.com"},
    )
    response = await client.post("/api/funnel/checkout", json={"title": "X"})
    assert response.status_code == 200
    return client
