"""Base domain model classes."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, Field, PrivateAttr


def generate_id(prefix: str = "") -> str:
    """Generate a unique identifier, optionally prefixed (``deploy-3f2a...``)."""
    value = uuid.uuid4().hex
    return f"{prefix}-{value}" if prefix else value


def utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Interpret naive datetimes as UTC and normalise aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class ValueObject(BaseModel):
    """Base class for value objects (immutable)."""

    model_config = {"frozen": True}


class DomainEvent(BaseModel):
    """Base class for domain events."""

    event_id: str = Field(default_factory=generate_id)
    event_type: str = ""
    occurred_at: datetime = Field(default_factory=utc_now)
    metadata: dict[str, Any] = Field(default_factory=dict)

    model_config = {"frozen": True}


class AggregateRoot(BaseModel):
    """Base class for mutable aggregates that emit domain events."""

    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    version: int = Field(default=1)

    model_config = {"frozen": False, "validate_assignment": True}

    _domain_events: list[DomainEvent] = PrivateAttr(default_factory=list)

    def touch(self) -> None:
        """Update the timestamp and increment version."""
        self.updated_at = utc_now()
        self.version += 1

    def add_event(self, event: DomainEvent) -> None:
        """Register a domain event."""
        self._domain_events.append(event)

    def collect_events(self) -> list[DomainEvent]:
        """Collect and clear all pending domain events."""
        events = list(self._domain_events)
        self._domain_events.clear()
        return events

    @property
    def pending_events(self) -> list[DomainEvent]:
        return list(self._domain_events)
