"""Health and readiness endpoints."""

import pytest

from thesisflow.db.redis import use_redis

pytestmark = pytest.mark.integration


@pytest.fixture
def shared_redis(redis):
    """Install the fake Redis as the process-wide client for the readiness check."""
    use_redis(redis)
    yield redis
    use_redis(None)


async def test_health(anonymous_client):
    response = await anonymous_client.get("/api/health")
    assert response.status_code == 200
    assert response.json() == {"status": "healthy", "service": "thesisflow-backend"}


async def test_health_while_draining(app, anonymous_client):
    app.state.shutting_down = True
    response = await anonymous_client.get("/api/health")
    assert response.status_code == 503
    assert response.json()["status"] == "shutting_down"


async def test_ready_with_backends(anonymous_client, shared_redis):
    response = await anonymous_client.get("/api/ready")

    assert response.status_code == 200
    assert response.json() == {"status": "ready", "checks": {"database": True, "redis": True}}


async def test_ready_degraded_without_redis(anonymous_client):
    response = await anonymous_client.get("/api/ready")

    assert response.status_code == 503
    assert response.json()["checks"] == {"database": True, "redis": False}
