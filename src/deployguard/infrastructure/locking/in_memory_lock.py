"""Process-local target lock."""

from __future__ import annotations

import time
import uuid
from collections.abc import Callable

import structlog

from deployguard.domain.ports.services import DistributedLock
from deployguard.infrastructure.observability.metrics import DISTRIBUTED_LOCK_OPERATIONS


logger = structlog.get_logger(__name__)


class InMemoryDistributedLock(DistributedLock):
    """Non-blocking lock table with expiry, for single-process deployments.

    All calls run on the event loop thread, so the check-and-set in
    :meth:`acquire` cannot interleave with another coroutine. Each holder
    gets its own token; a holder whose lock expired and was taken over
    cannot release the new holder's lock.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._held: dict[str, tuple[str, float]] = {}

    async def acquire(self, resource_id: str, ttl_seconds: int = 30) -> str | None:
        now = self._clock()
        if await self.is_locked(resource_id):
            DISTRIBUTED_LOCK_OPERATIONS.labels(operation="acquire", result="contended").inc()
            logger.debug("lock_not_acquired", resource_id=resource_id)
            return None

        token = str(uuid.uuid4())
        self._held[resource_id] = (token, now + ttl_seconds)
        DISTRIBUTED_LOCK_OPERATIONS.labels(operation="acquire", result="acquired").inc()
        logger.debug("lock_acquired", resource_id=resource_id, ttl=ttl_seconds)
        return token

    async def release(self, resource_id: str, token: str) -> bool:
        held = self._held.get(resource_id)
        if held is None or held[0] != token:
            DISTRIBUTED_LOCK_OPERATIONS.labels(operation="release", result="not_held").inc()
            if held is not None:
                logger.warning("lock_owned_by_another_holder", resource_id=resource_id)
            return False

        del self._held[resource_id]
        if held[1] <= self._clock():
            DISTRIBUTED_LOCK_OPERATIONS.labels(operation="release", result="expired").inc()
            logger.warning("lock_expired_before_release", resource_id=resource_id)
            return False

        DISTRIBUTED_LOCK_OPERATIONS.labels(operation="release", result="released").inc()
        logger.debug("lock_released", resource_id=resource_id)
        return True

    async def is_locked(self, resource_id: str) -> bool:
        held = self._held.get(resource_id)
        return held is not None and held[1] > self._clock()
