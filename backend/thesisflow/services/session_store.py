"""Session-scoped funnel snapshot store and per-section single-flight lock.

The whole FunnelState is written under one key per session after every
successful transition. A missing, expired, or unparsable blob yields the
default initial state; it is never surfaced as an error.
"""

from datetime import UTC, datetime

import redis.asyncio as redis
import structlog
from pydantic import ValidationError as PydanticValidationError

from thesisflow.domain.funnel import FunnelState, deserialize_state, initial_state, serialize_state
from thesisflow.domain.sections import Section

logger = structlog.get_logger(__name__)


class FunnelSessionStore:
    """Reads and writes FunnelState snapshots in Redis."""

    KEY_PREFIX = "thesisflow:funnel:"

    def __init__(self, redis_client: redis.Redis, ttl_seconds: int, initial_revisions: int = 5):
        self.redis = redis_client
        self.ttl_seconds = ttl_seconds
        self.initial_revisions = initial_revisions

    def _key(self, session_id: str) -> str:
        return f"{self.KEY_PREFIX}{session_id}"

    async def load(self, session_id: str) -> FunnelState:
        """Return the persisted state, or a fresh one when absent or malformed."""
        blob = await self.redis.get(self._key(session_id))
        if not blob:
            return initial_state(self.initial_revisions)

        try:
            return deserialize_state(blob)
        except (PydanticValidationError, ValueError) as exc:
            logger.warning("funnel_snapshot_discarded", session_id=session_id, error=str(exc))
            return initial_state(self.initial_revisions)

    async def save(self, session_id: str, state: FunnelState) -> None:
        await self.redis.set(self._key(session_id), serialize_state(state), ex=self.ttl_seconds)

    async def clear(self, session_id: str) -> None:
        await self.redis.delete(self._key(session_id))


class GenerationLock:
    """Single-flight guard: at most one outstanding request per (session, section).

    The lock expires on its own so an abandoned request (page reload, crashed
    worker) cannot block the section forever. The TTL must outlast the longest
    content call, retries included. Each holder passes an owner token and only
    that owner can release the lock.
    """

    LOCK_PREFIX = "thesisflow:lock:"

    def __init__(self, redis_client: redis.Redis, ttl_seconds: int = 600):
        self.redis = redis_client
        self.ttl_seconds = ttl_seconds

    def _key(self, session_id: str, section: Section) -> str:
        return f"{self.LOCK_PREFIX}{session_id}:{section.value}"

    async def acquire(self, session_id: str, section: Section, owner: str) -> bool:
        """Return True if the lock was taken, False if a request is already in flight."""
        value = f"{owner}:{datetime.now(UTC).isoformat()}"
        result = await self.redis.set(self._key(session_id, section), value, nx=True, ex=self.ttl_seconds)
        return bool(result)

    async def release(self, session_id: str, section: Section, owner: str) -> bool:
        """Release the lock if ``owner`` still holds it.

        Returns:
            True if released, False if it expired or another request holds it now
        """
        key = self._key(session_id, section)
        current = await self.redis.get(key)
        if current and current.startswith(f"{owner}:"):
            await self.redis.delete(key)
            return True

        logger.warning("generation_lock_not_owned", session_id=session_id, section=section.value)
        return False

    async def is_held(self, session_id: str, section: Section) -> bool:
        return bool(await self.redis.exists(self._key(session_id, section)))
