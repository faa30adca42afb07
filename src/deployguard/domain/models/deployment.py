"""Deployment attempt records and results."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import Field

from deployguard.domain.models.artifacts import ArtifactBundle
from deployguard.domain.models.base import generate_id, utc_now, ValueObject
from deployguard.domain.models.review import QualityGateReview
from deployguard.domain.models.risk import Finding


class PipelineStage(str, Enum):
    """Pipeline stages, in execution order."""

    START = "start"
    BREAKER_CHECK = "breaker_check"
    WINDOW_CHECK = "window_check"
    TARGET_VALIDATE = "target_validate"
    TARGET_LOCK = "target_lock"
    SNAPSHOT = "snapshot"
    PACKAGE = "package"
    QUALITY_GATE = "quality_gate"
    STATIC_VALIDATE = "static_validate"
    PUSH = "push"
    VERIFY = "verify"
    ROLLBACK = "rollback"
    RECORD = "record"

    @property
    def is_mutating(self) -> bool:
        """Whether a failure at this stage may have changed the target."""
        return self in {PipelineStage.PUSH, PipelineStage.VERIFY}


class DeploymentOutcome(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    ROLLED_BACK = "rolled_back"
    ROLLBACK_FAILED = "rollback_failed"
    REJECTED = "rejected"
    BLOCKED = "blocked"


class ErrorKind(str, Enum):
    BLOCKED_TARGET = "blocked_target"
    CIRCUIT_OPEN = "circuit_open"
    TARGET_BUSY = "target_busy"
    OUTSIDE_WINDOW = "outside_window"
    SNAPSHOT_FAILED = "snapshot_failed"
    PACKAGING_FAILED = "packaging_failed"
    VALIDATION_FAILED = "validation_failed"
    QUALITY_GATE_REJECTED = "quality_gate_rejected"
    PUSH_FAILED = "push_failed"
    VERIFICATION_FAILED = "verification_failed"
    INTERNAL_ERROR = "internal_error"

    @property
    def retryable(self) -> bool:
        """Whether the scheduler may re-run the same request after this error."""
        return self in RETRYABLE_ERROR_KINDS


RETRYABLE_ERROR_KINDS: frozenset[ErrorKind] = frozenset({
    ErrorKind.CIRCUIT_OPEN,
    ErrorKind.TARGET_BUSY,
    ErrorKind.OUTSIDE_WINDOW,
    ErrorKind.SNAPSHOT_FAILED,
    ErrorKind.PUSH_FAILED,
    ErrorKind.VERIFICATION_FAILED,
    ErrorKind.INTERNAL_ERROR,
})


class FailureSeverity(str, Enum):
    NONE = "none"
    NORMAL = "normal"
    HIGH = "high"        # target mutated, nothing to restore from
    CRITICAL = "critical"  # restore attempted and failed


class DeploymentPackage(ValueObject):
    """Artifacts laid out for the remote deployer."""

    deployment_id: str
    root: str
    artifacts: ArtifactBundle
    components: list[str] = Field(default_factory=list)


class PushResult(ValueObject):
    success: bool
    id: str | None = None
    message: str = ""
    details: dict[str, Any] = Field(default_factory=dict)


class VerificationSummary(ValueObject):
    passed: bool
    tests_run: int = 0
    tests_passed: int = 0
    coverage: float | None = None
    duration_ms: int | None = None
    details: str = ""


class RollbackResult(ValueObject):
    snapshot_id: str
    target: str
    success: bool
    restored: list[str] = Field(default_factory=list)
    deleted: list[str] = Field(default_factory=list)
    failed: list[str] = Field(default_factory=list)
    error: str = ""
    timestamp: datetime = Field(default_factory=utc_now)


class DeploymentRecord(ValueObject):
    """Append-only history entry; one per executed attempt."""

    deployment_id: str
    snapshot_id: str | None = None
    target: str
    timestamp: datetime = Field(default_factory=utc_now)
    outcome: DeploymentOutcome
    stage: PipelineStage
    artifacts: list[str] = Field(default_factory=list)
    verification: VerificationSummary | None = None
    rollback: RollbackResult | None = None
    error_kind: ErrorKind | None = None
    error_message: str = ""
    details: dict[str, Any] = Field(default_factory=dict)
    scheduled_id: str | None = None
    request_id: str | None = None


class DeploymentResult(ValueObject):
    """Everything an operator needs to act on one attempt without reading logs."""

    deployment_id: str = Field(default_factory=lambda: generate_id("deploy"))
    target: str
    outcome: DeploymentOutcome
    stage: PipelineStage
    error_kind: ErrorKind | None = None
    error_message: str = ""
    severity: FailureSeverity = FailureSeverity.NONE
    snapshot_id: str | None = None
    rollback_attempted: bool = False
    rollback: RollbackResult | None = None
    push: PushResult | None = None
    verification: VerificationSummary | None = None
    warnings: list[Finding] = Field(default_factory=list)
    validation_errors: list[str] = Field(default_factory=list)
    target_warning: str | None = None
    review: QualityGateReview | None = None
    record: DeploymentRecord | None = None

    @property
    def deployed(self) -> bool:
        return self.outcome == DeploymentOutcome.SUCCEEDED

    @property
    def retryable(self) -> bool:
        return self.error_kind is not None and self.error_kind.retryable


class BatchDeploymentSummary(ValueObject):
    total: int
    approved: int
    rejected: int
    deployed: int
    failed: int
    results: list[DeploymentResult] = Field(default_factory=list)
