"""In-process event bus for schedule lifecycle events and notifications."""

from __future__ import annotations

from collections import deque
from collections.abc import Awaitable, Callable
from typing import Any

import structlog

from deployguard.domain.ports.services import EventPublisher


logger = structlog.get_logger(__name__)

EventHandler = Callable[[dict[str, Any]], Awaitable[None]]

WILDCARD = "*"


class InMemoryEventPublisher(EventPublisher):
    """Delivers events to subscribers in the publishing task.

    Subscriptions match an exact event type, a ``prefix.*`` pattern, or
    ``*``. Handlers run in subscription order and their exceptions
    propagate to the publisher. The most recent ``max_history`` events are
    kept for inspection.
    """

    def __init__(self, max_history: int = 1000) -> None:
        self._events: deque[tuple[str, dict[str, Any]]] = deque(maxlen=max_history)
        self._handlers: list[tuple[str, EventHandler]] = []

    async def publish(self, event_type: str, payload: dict[str, Any]) -> None:
        self._events.append((event_type, payload))
        logger.debug("event_published", event_type=event_type, payload_keys=list(payload))

        for pattern, handler in list(self._handlers):
            if _matches(pattern, event_type):
                await handler(payload)

    async def publish_batch(self, events: list[tuple[str, dict[str, Any]]]) -> None:
        for event_type, payload in events:
            await self.publish(event_type, payload)

    def subscribe(self, pattern: str, handler: EventHandler) -> None:
        self._handlers.append((pattern, handler))

    def unsubscribe(self, pattern: str, handler: EventHandler) -> None:
        self._handlers = [(p, h) for p, h in self._handlers if (p, h) != (pattern, handler)]

    @property
    def published_events(self) -> list[tuple[str, dict[str, Any]]]:
        return list(self._events)

    def events_of(self, event_type: str) -> list[dict[str, Any]]:
        return [payload for kind, payload in self._events if kind == event_type]

    def clear(self) -> None:
        self._events.clear()


def _matches(pattern: str, event_type: str) -> bool:
    if pattern == WILDCARD or pattern == event_type:
        return True
    return pattern.endswith(".*") and event_type.startswith(pattern[:-1])


async def log_notification(payload: dict[str, Any]) -> None:
    """Default ``notification.*`` sink: one structured log line per notification."""
    logger.info(
        "deployment_notification",
        kind=payload.get("type"),
        scheduled_id=payload.get("scheduled_id"),
        target=payload.get("target"),
        requested_by=payload.get("requested_by"),
        message=payload.get("message", ""),
    )
