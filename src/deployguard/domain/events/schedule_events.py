"""Scheduled deployment domain events."""

from __future__ import annotations

from datetime import datetime

from deployguard.domain.models.base import DomainEvent


class DeploymentScheduled(DomainEvent):
    """Emitted when a deployment is accepted for a future time."""

    scheduled_id: str
    target: str
    scheduled_time: datetime
    event_type: str = "deployment.scheduled"


class DeploymentReminder(DomainEvent):
    """Emitted shortly before a scheduled deployment fires."""

    scheduled_id: str
    target: str
    scheduled_time: datetime
    requested_by: str = ""
    event_type: str = "deployment.reminder"


class ScheduledDeploymentStarted(DomainEvent):
    scheduled_id: str
    attempt: int
    event_type: str = "deployment.started"


class ScheduledDeploymentCompleted(DomainEvent):
    scheduled_id: str
    deployment_id: str
    target: str
    requested_by: str = ""
    event_type: str = "deployment.completed"


class ScheduledDeploymentFailed(DomainEvent):
    scheduled_id: str
    deployment_id: str | None
    target: str
    outcome: str
    error_message: str
    requested_by: str = ""
    event_type: str = "deployment.failed"


class DeploymentRetryScheduled(DomainEvent):
    scheduled_id: str
    retry_count: int
    max_retries: int
    next_attempt_at: datetime
    event_type: str = "deployment.retry_scheduled"


class ScheduledDeploymentCancelled(DomainEvent):
    scheduled_id: str
    event_type: str = "deployment.cancelled"


class ScheduledDeploymentMissed(DomainEvent):
    scheduled_id: str
    due_at: datetime
    event_type: str = "deployment.missed"
