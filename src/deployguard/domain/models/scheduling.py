"""Scheduled deployment aggregate and deployment windows."""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import Field, field_validator, model_validator

from deployguard.domain.errors import InvalidScheduleTransitionError
from deployguard.domain.events.schedule_events import (
    DeploymentRetryScheduled,
    DeploymentScheduled,
    ScheduledDeploymentCancelled,
    ScheduledDeploymentCompleted,
    ScheduledDeploymentFailed,
    ScheduledDeploymentMissed,
    ScheduledDeploymentStarted,
)
from deployguard.domain.models.artifacts import DeploymentRequest
from deployguard.domain.models.base import (
    AggregateRoot,
    ensure_utc,
    generate_id,
    utc_now,
    ValueObject,
)
from deployguard.domain.models.deployment import DeploymentOutcome, DeploymentResult


class EnvironmentClass(str, Enum):
    """Environment classes that carry their own deployment window."""

    DEVELOPMENT = "development"
    UAT = "uat"
    PRODUCTION = "production"


class DeploymentWindow(ValueObject):
    """Allowed weekdays (0=Monday) and hour range ``[start_hour, end_hour)``."""

    enabled: bool = True
    days: list[int] = Field(default_factory=lambda: [0, 1, 2, 3, 4])
    start_hour: int = Field(default=6, ge=0, le=23)
    end_hour: int = Field(default=22, ge=1, le=24)

    @field_validator("days")
    @classmethod
    def _valid_days(cls, days: list[int]) -> list[int]:
        if any(day < 0 or day > 6 for day in days):
            raise ValueError("days must be weekday numbers between 0 (Monday) and 6 (Sunday)")
        return sorted(set(days))

    @model_validator(mode="after")
    def _ordered_hours(self) -> DeploymentWindow:
        if self.start_hour >= self.end_hour:
            raise ValueError("start_hour must be before end_hour")
        return self


class WindowCheck(ValueObject):
    allowed: bool
    reason: str
    environment_class: EnvironmentClass


class NextWindow(ValueObject):
    """``available`` is true when ``at`` itself is inside a window."""

    available: bool
    environment_class: EnvironmentClass
    start: datetime | None = None
    end: datetime | None = None
    reason: str = ""


class ScheduledStatus(str, Enum):
    SCHEDULED = "scheduled"
    EXECUTING = "executing"
    COMPLETED = "completed"
    FAILED = "failed"
    RETRY_SCHEDULED = "retry_scheduled"
    CANCELLED = "cancelled"
    MISSED = "missed"


SCHEDULE_VALID_TRANSITIONS: dict[ScheduledStatus, set[ScheduledStatus]] = {
    ScheduledStatus.SCHEDULED: {
        ScheduledStatus.EXECUTING, ScheduledStatus.CANCELLED, ScheduledStatus.MISSED,
    },
    ScheduledStatus.EXECUTING: {
        ScheduledStatus.COMPLETED, ScheduledStatus.FAILED, ScheduledStatus.RETRY_SCHEDULED,
    },
    ScheduledStatus.RETRY_SCHEDULED: {ScheduledStatus.EXECUTING, ScheduledStatus.MISSED},
    ScheduledStatus.COMPLETED: set(),
    ScheduledStatus.FAILED: set(),
    ScheduledStatus.CANCELLED: set(),
    ScheduledStatus.MISSED: set(),
}

PENDING_STATUSES = frozenset({ScheduledStatus.SCHEDULED, ScheduledStatus.RETRY_SCHEDULED})


class RetryPolicy(ValueObject):
    enabled: bool = True
    max_retries: int = Field(default=3, ge=0)
    retry_count: int = Field(default=0, ge=0)

    @property
    def exhausted(self) -> bool:
        return self.retry_count >= self.max_retries

    def next(self) -> RetryPolicy:
        return self.model_copy(update={"retry_count": self.retry_count + 1})


class NotificationFlags(ValueObject):
    notify_before: bool = True
    notify_after: bool = True


class ScheduledDeployment(AggregateRoot):
    """A deployment request waiting for (or working through) its time slot."""

    id: str = Field(default_factory=lambda: generate_id("scheduled"))
    request: DeploymentRequest
    scheduled_time: datetime
    retry_policy: RetryPolicy = Field(default_factory=RetryPolicy)
    notifications: NotificationFlags = Field(default_factory=NotificationFlags)
    status: ScheduledStatus = ScheduledStatus.SCHEDULED
    next_attempt_at: datetime | None = None
    completed_at: datetime | None = None
    cancelled_at: datetime | None = None
    last_deployment_id: str | None = None
    last_outcome: DeploymentOutcome | None = None
    last_error: str = ""
    attempt_deployment_ids: list[str] = Field(default_factory=list)

    @field_validator("scheduled_time", "next_attempt_at")
    @classmethod
    def _utc(cls, value: datetime | None) -> datetime | None:
        return ensure_utc(value) if value is not None else None

    @property
    def target(self) -> str:
        return self.request.target

    @property
    def due_at(self) -> datetime:
        """When the next execution should fire."""
        if self.status == ScheduledStatus.RETRY_SCHEDULED and self.next_attempt_at:
            return self.next_attempt_at
        return self.scheduled_time

    @property
    def is_pending(self) -> bool:
        return self.status in PENDING_STATUSES

    @property
    def can_retry(self) -> bool:
        return self.retry_policy.enabled and not self.retry_policy.exhausted

    @property
    def is_terminal(self) -> bool:
        return not SCHEDULE_VALID_TRANSITIONS[self.status]

    def _transition_to(self, new_status: ScheduledStatus) -> None:
        valid = SCHEDULE_VALID_TRANSITIONS.get(self.status, set())
        if new_status not in valid:
            raise InvalidScheduleTransitionError(
                f"Scheduled deployment {self.id} cannot transition from "
                f"{self.status.value} to {new_status.value}"
            )
        self.status = new_status
        self.touch()

    def mark_scheduled(self) -> None:
        self.add_event(DeploymentScheduled(
            scheduled_id=self.id,
            target=self.target,
            scheduled_time=self.scheduled_time,
        ))

    def start_execution(self) -> None:
        self._transition_to(ScheduledStatus.EXECUTING)
        self.add_event(ScheduledDeploymentStarted(
            scheduled_id=self.id,
            attempt=self.retry_policy.retry_count + 1,
        ))

    def record_attempt(self, result: DeploymentResult) -> None:
        self.last_deployment_id = result.deployment_id
        self.last_outcome = result.outcome
        self.last_error = result.error_message
        self.attempt_deployment_ids = [*self.attempt_deployment_ids, result.deployment_id]
        self.touch()

    def complete(self, at: datetime | None = None) -> None:
        self._transition_to(ScheduledStatus.COMPLETED)
        self.completed_at = ensure_utc(at) if at else utc_now()
        self.next_attempt_at = None
        self.add_event(ScheduledDeploymentCompleted(
            scheduled_id=self.id,
            deployment_id=self.last_deployment_id or "",
            target=self.target,
            requested_by=self.request.requested_by,
        ))

    def fail(self, error_message: str = "", at: datetime | None = None) -> None:
        self._transition_to(ScheduledStatus.FAILED)
        if error_message:
            self.last_error = error_message
        self.completed_at = ensure_utc(at) if at else utc_now()
        self.next_attempt_at = None
        self.add_event(ScheduledDeploymentFailed(
            scheduled_id=self.id,
            deployment_id=self.last_deployment_id,
            target=self.target,
            outcome=(self.last_outcome or DeploymentOutcome.FAILED).value,
            error_message=self.last_error,
            requested_by=self.request.requested_by,
        ))

    def schedule_retry(self, next_attempt_at: datetime) -> None:
        if not self.can_retry:
            raise InvalidScheduleTransitionError(
                f"Scheduled deployment {self.id} has no retries left "
                f"({self.retry_policy.retry_count}/{self.retry_policy.max_retries})"
            )
        self._transition_to(ScheduledStatus.RETRY_SCHEDULED)
        self.retry_policy = self.retry_policy.next()
        self.next_attempt_at = ensure_utc(next_attempt_at)
        self.add_event(DeploymentRetryScheduled(
            scheduled_id=self.id,
            retry_count=self.retry_policy.retry_count,
            max_retries=self.retry_policy.max_retries,
            next_attempt_at=self.next_attempt_at,
        ))

    def cancel(self, at: datetime | None = None) -> None:
        if self.status != ScheduledStatus.SCHEDULED:
            raise InvalidScheduleTransitionError(
                f"Scheduled deployment {self.id} is not in scheduled state "
                f"(current status: {self.status.value})"
            )
        self._transition_to(ScheduledStatus.CANCELLED)
        self.cancelled_at = ensure_utc(at) if at else utc_now()
        self.add_event(ScheduledDeploymentCancelled(scheduled_id=self.id))

    def mark_missed(self) -> None:
        due = self.due_at
        self._transition_to(ScheduledStatus.MISSED)
        self.add_event(ScheduledDeploymentMissed(scheduled_id=self.id, due_at=due))


class ScheduleStatistics(ValueObject):
    total: int
    by_status: dict[str, int] = Field(default_factory=dict)
    upcoming_count: int = 0
    completed_today: int = 0
    failed_today: int = 0


class RecoveryReport(ValueObject):
    """What the scheduler did with persisted work at startup."""

    rearmed: list[str] = Field(default_factory=list)
    missed: list[str] = Field(default_factory=list)
    interrupted: list[str] = Field(default_factory=list)
