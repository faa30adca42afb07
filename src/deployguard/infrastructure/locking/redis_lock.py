"""Redis-backed target lock, shared by every process using the same Redis."""

from __future__ import annotations

import uuid

import redis.asyncio
import structlog

from deployguard.config import RedisSettings
from deployguard.domain.ports.services import DistributedLock
from deployguard.infrastructure.observability.metrics import DISTRIBUTED_LOCK_OPERATIONS


logger = structlog.get_logger(__name__)

# Delete only when the stored token is ours.
_RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
else
    return 0
end
"""


class RedisDistributedLock(DistributedLock):
    """Redis implementation of distributed locking using SET NX.

    The token returned by :meth:`acquire` is the stored value; release
    deletes the key only while it still holds that value.
    """

    def __init__(self, client: redis.asyncio.Redis, key_prefix: str = "deployguard:lock") -> None:
        self._client = client
        self._key_prefix = key_prefix

    def _key(self, resource_id: str) -> str:
        return f"{self._key_prefix}:{resource_id}"

    async def acquire(self, resource_id: str, ttl_seconds: int = 30) -> str | None:
        lock_value = str(uuid.uuid4())
        acquired = await self._client.set(
            self._key(resource_id), lock_value, nx=True, ex=ttl_seconds
        )
        if acquired:
            DISTRIBUTED_LOCK_OPERATIONS.labels(operation="acquire", result="acquired").inc()
            logger.debug("lock_acquired", resource_id=resource_id, ttl=ttl_seconds)
            return lock_value

        DISTRIBUTED_LOCK_OPERATIONS.labels(operation="acquire", result="contended").inc()
        logger.debug("lock_not_acquired", resource_id=resource_id)
        return None

    async def release(self, resource_id: str, token: str) -> bool:
        result = await self._client.eval(_RELEASE_SCRIPT, 1, self._key(resource_id), token)
        if result:
            DISTRIBUTED_LOCK_OPERATIONS.labels(operation="release", result="released").inc()
            logger.debug("lock_released", resource_id=resource_id)
            return True

        DISTRIBUTED_LOCK_OPERATIONS.labels(operation="release", result="expired").inc()
        logger.warning("lock_expired_before_release", resource_id=resource_id)
        return False

    async def is_locked(self, resource_id: str) -> bool:
        return bool(await self._client.exists(self._key(resource_id)))


def create_redis_client(settings: RedisSettings) -> redis.asyncio.Redis:
    """Factory function to create a Redis client."""
    return redis.asyncio.Redis.from_url(
        settings.url,
        decode_responses=False,
        socket_timeout=5.0,
        socket_connect_timeout=5.0,
        retry_on_timeout=True,
    )
