"""Unit tests for API schemas."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest
from pydantic import ValidationError

from deployguard.api.schemas.deployment_schemas import (
    DeployImprovementBatchRequest,
    DeployRequest,
    ImprovementRequest,
    ScheduledDeploymentResponse,
    ScheduleRequest,
)
from deployguard.domain.models.scheduling import ScheduledDeployment, ScheduledStatus


WHEN = datetime(2026, 10, 20, 10, 0, tzinfo=timezone.utc)


class TestDeployRequest:
    def test_to_domain(self) -> None:
        req = DeployRequest(
            target="dev-sandbox",
            sources={"A.cls": "class A {}"},
            metadata={"Invoice__c.object": "<CustomObject/>"},
            requested_by="alice",
        )
        domain = req.to_domain()
        assert domain.target == "dev-sandbox"
        assert domain.artifacts.names == ["A.cls", "Invoice__c.object"]
        assert domain.requested_by == "alice"
        assert not domain.options.skip_snapshot

    def test_empty_target_rejected(self) -> None:
        with pytest.raises(ValidationError):
            DeployRequest(target="")

    def test_options_parsed(self) -> None:
        req = DeployRequest(target="dev-sandbox", options={"skip_tests": True})
        assert req.to_domain().options.skip_tests


class TestScheduleRequest:
    def test_default_retry_policy_left_to_scheduler(self) -> None:
        req = ScheduleRequest(target="dev-sandbox", scheduled_time=WHEN)
        assert req.retry_policy() is None

    def test_explicit_max_retries(self) -> None:
        req = ScheduleRequest(target="dev-sandbox", scheduled_time=WHEN, max_retries=5)
        policy = req.retry_policy()
        assert policy is not None
        assert policy.enabled and policy.max_retries == 5

    def test_retries_disabled(self) -> None:
        req = ScheduleRequest(target="dev-sandbox", scheduled_time=WHEN, retry_enabled=False)
        policy = req.retry_policy()
        assert policy is not None
        assert not policy.enabled

    def test_negative_retries_rejected(self) -> None:
        with pytest.raises(ValidationError):
            ScheduleRequest(target="dev-sandbox", scheduled_time=WHEN, max_retries=-1)

    def test_notifications(self) -> None:
        req = ScheduleRequest(target="dev-sandbox", scheduled_time=WHEN, notify_before=False)
        flags = req.notifications()
        assert not flags.notify_before
        assert flags.notify_after


class TestImprovementRequests:
    def test_to_domain(self) -> None:
        req = ImprovementRequest(
            class_name="AccountService",
            improved_code="public class AccountService {}",
            metadata={"coverage": 81.5},
        )
        proposal = req.to_domain()
        assert proposal.class_name == "AccountService"
        assert proposal.metadata.coverage == 81.5

    def test_batch_requires_proposals(self) -> None:
        with pytest.raises(ValidationError):
            DeployImprovementBatchRequest(target="dev-sandbox", proposals=[])


class TestScheduledDeploymentResponse:
    def test_of(self) -> None:
        req = ScheduleRequest(
            target="dev-sandbox",
            scheduled_time=WHEN,
            sources={"A.cls": "class A {}"},
            requested_by="bob",
            description="nightly",
        )
        scheduled = ScheduledDeployment(request=req.to_domain(), scheduled_time=WHEN)

        response = ScheduledDeploymentResponse.of(scheduled)

        assert response.id == scheduled.id
        assert response.status == ScheduledStatus.SCHEDULED
        assert response.artifacts == ["A.cls"]
        assert response.requested_by == "bob"
        assert response.max_retries == scheduled.retry_policy.max_retries
