"""API schemas for deployment and schedule endpoints."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

from deployguard.domain.models.artifacts import (
    ArtifactBundle,
    DeploymentOptions,
    DeploymentRequest,
)
from deployguard.domain.models.deployment import DeploymentOutcome
from deployguard.domain.models.review import ImprovementProposal, ProposalMetadata
from deployguard.domain.models.scheduling import (
    NotificationFlags,
    RetryPolicy,
    ScheduledDeployment,
    ScheduledStatus,
)


class DeployRequest(BaseModel):
    target: str = Field(..., min_length=1, max_length=255)
    sources: dict[str, str] = Field(default_factory=dict)
    metadata: dict[str, str] = Field(default_factory=dict)
    options: DeploymentOptions = Field(default_factory=DeploymentOptions)
    requested_by: str = ""
    description: str = Field(default="", max_length=1000)

    def to_domain(self) -> DeploymentRequest:
        return DeploymentRequest(
            artifacts=ArtifactBundle(sources=self.sources, metadata=self.metadata),
            target=self.target,
            options=self.options,
            requested_by=self.requested_by,
            description=self.description,
        )


class ScheduleRequest(DeployRequest):
    scheduled_time: datetime
    max_retries: int | None = Field(default=None, ge=0)
    retry_enabled: bool = True
    notify_before: bool = True
    notify_after: bool = True

    def retry_policy(self) -> RetryPolicy | None:
        """``None`` leaves the scheduler default in place."""
        if self.max_retries is None and self.retry_enabled:
            return None
        if self.max_retries is None:
            return RetryPolicy(enabled=False)
        return RetryPolicy(enabled=self.retry_enabled, max_retries=self.max_retries)

    def notifications(self) -> NotificationFlags:
        return NotificationFlags(notify_before=self.notify_before, notify_after=self.notify_after)


class ImprovementRequest(BaseModel):
    class_name: str = Field(..., min_length=1)
    original_code: str = ""
    improved_code: str = Field(..., min_length=1)
    improvements: list[str] = Field(default_factory=list)
    metadata: ProposalMetadata = Field(default_factory=ProposalMetadata)
    file_extension: str = ".cls"

    def to_domain(self) -> ImprovementProposal:
        return ImprovementProposal(**self.model_dump())


class DeployImprovementRequest(BaseModel):
    target: str = Field(..., min_length=1)
    proposal: ImprovementRequest
    options: DeploymentOptions = Field(default_factory=DeploymentOptions)
    skip_quality_gate: bool = False
    requested_by: str = ""


class DeployImprovementBatchRequest(BaseModel):
    target: str = Field(..., min_length=1)
    proposals: list[ImprovementRequest] = Field(..., min_length=1)
    options: DeploymentOptions = Field(default_factory=DeploymentOptions)


class RollbackRequest(BaseModel):
    target: str = Field(..., min_length=1)
    snapshot_id: str | None = None


class ScheduledDeploymentResponse(BaseModel):
    id: str
    target: str
    status: ScheduledStatus
    scheduled_time: datetime
    next_attempt_at: datetime | None = None
    requested_by: str
    description: str
    artifacts: list[str]
    retry_count: int
    max_retries: int
    last_deployment_id: str | None = None
    last_outcome: DeploymentOutcome | None = None
    last_error: str = ""
    attempt_deployment_ids: list[str] = Field(default_factory=list)
    completed_at: datetime | None = None
    cancelled_at: datetime | None = None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def of(cls, scheduled: ScheduledDeployment) -> ScheduledDeploymentResponse:
        return cls(
            id=scheduled.id,
            target=scheduled.target,
            status=scheduled.status,
            scheduled_time=scheduled.scheduled_time,
            next_attempt_at=scheduled.next_attempt_at,
            requested_by=scheduled.request.requested_by,
            description=scheduled.request.description,
            artifacts=scheduled.request.artifacts.names,
            retry_count=scheduled.retry_policy.retry_count,
            max_retries=scheduled.retry_policy.max_retries,
            last_deployment_id=scheduled.last_deployment_id,
            last_outcome=scheduled.last_outcome,
            last_error=scheduled.last_error,
            attempt_deployment_ids=scheduled.attempt_deployment_ids,
            completed_at=scheduled.completed_at,
            cancelled_at=scheduled.cancelled_at,
            created_at=scheduled.created_at,
            updated_at=scheduled.updated_at,
        )


class CleanupResponse(BaseModel):
    removed: int


class WindowStatusResponse(BaseModel):
    target: str
    environment_class: str
    allowed_now: bool
    reason: str
    next_window_start: datetime | None = None
    next_window_end: datetime | None = None
