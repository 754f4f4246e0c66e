"""Shared Redis client for funnel snapshots and generation locks."""

import redis.asyncio as redis
import structlog

from thesisflow.core.config import get_settings

logger = structlog.get_logger(__name__)

_client: redis.Redis | None = None


async def init_redis(url: str | None = None) -> None:
    """Connect once per process and verify the server answers PING."""
    global _client

    if _client is not None:
        return

    client = redis.from_url(
        url or get_settings().redis_url,
        encoding="utf-8",
        decode_responses=True,
        health_check_interval=30,
    )
    await client.ping()
    _client = client
    logger.info("redis_connected")


def use_redis(client: redis.Redis | None) -> None:
    """Replace the shared client (fakeredis in tests, None to detach)."""
    global _client
    _client = client


async def close_redis() -> None:
    global _client

    if _client is not None:
        await _client.aclose()
    _client = None


def get_redis() -> redis.Redis:
    """Return the shared Redis client.

    Raises RuntimeError if init_redis() has not been called.
    """
    if _client is None:
        raise RuntimeError("Redis not initialized. Call init_redis() first.")
    return _client
