"""Unit tests for base domain models."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from pydantic import ValidationError

from deployguard.domain.models.base import (
    AggregateRoot,
    DomainEvent,
    ensure_utc,
    generate_id,
    utc_now,
    ValueObject,
)


class TestGenerateId:
    def test_returns_string(self) -> None:
        assert isinstance(generate_id(), str)

    def test_unique(self) -> None:
        ids = {generate_id() for _ in range(100)}
        assert len(ids) == 100

    def test_prefix(self) -> None:
        assert generate_id("deploy").startswith("deploy-")


class TestUtcNow:
    def test_returns_datetime(self) -> None:
        now = utc_now()
        assert now.tzinfo is not None


class TestEnsureUtc:
    def test_naive(self) -> None:
        assert ensure_utc(datetime(2026, 1, 1, 12)).tzinfo == timezone.utc

    def test_converts_offset(self) -> None:
        plus_two = timezone(timedelta(hours=2))
        value = ensure_utc(datetime(2026, 1, 1, 12, tzinfo=plus_two))
        assert value.hour == 10
        assert value.tzinfo == timezone.utc


class TestValueObject:
    def test_immutable(self) -> None:
        class Price(ValueObject):
            amount: float
            currency: str

        p = Price(amount=9.99, currency="USD")
        with pytest.raises(ValidationError):
            p.amount = 1.0  # type: ignore[misc]


class TestDomainEvent:
    def test_defaults(self) -> None:
        event = DomainEvent()
        assert event.event_id is not None
        assert event.occurred_at is not None


class TestAggregateRoot:
    def test_events_collected_once(self) -> None:
        aggregate = AggregateRoot()
        aggregate.add_event(DomainEvent(event_type="a"))
        assert len(aggregate.pending_events) == 1
        assert [e.event_type for e in aggregate.collect_events()] == ["a"]
        assert aggregate.collect_events() == []

    def test_touch(self) -> None:
        aggregate = AggregateRoot()
        aggregate.touch()
        assert aggregate.version == 2
