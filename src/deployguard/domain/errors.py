"""Domain error taxonomy.

Stage errors carry the :class:`ErrorKind` and :class:`PipelineStage` they map
to, so the pipeline can translate any of them into a deployment result
without a lookup table.
"""

from __future__ import annotations

from deployguard.domain.models.deployment import ErrorKind, PipelineStage


class DeploymentError(Exception):
    """Base class for failures raised by a pipeline stage."""

    kind: ErrorKind = ErrorKind.INTERNAL_ERROR
    stage: PipelineStage = PipelineStage.START

    def __init__(self, message: str, *, details: list[str] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = list(details or [])


class BlockedTargetError(DeploymentError):
    """Target is production-like or not allow-listed. Never retried."""

    kind = ErrorKind.BLOCKED_TARGET
    stage = PipelineStage.TARGET_VALIDATE

    def __init__(self, target: str, message: str) -> None:
        super().__init__(message)
        self.target = target


class CircuitOpenError(DeploymentError):
    kind = ErrorKind.CIRCUIT_OPEN
    stage = PipelineStage.BREAKER_CHECK


class OutsideWindowError(DeploymentError):
    kind = ErrorKind.OUTSIDE_WINDOW
    stage = PipelineStage.WINDOW_CHECK


class TargetBusyError(DeploymentError):
    kind = ErrorKind.TARGET_BUSY
    stage = PipelineStage.TARGET_LOCK


class SnapshotFailedError(DeploymentError):
    kind = ErrorKind.SNAPSHOT_FAILED
    stage = PipelineStage.SNAPSHOT


class PackagingError(DeploymentError):
    kind = ErrorKind.PACKAGING_FAILED
    stage = PipelineStage.PACKAGE


class ValidationFailedError(DeploymentError):
    """Risk scanner or remote syntax errors. Retry only with corrected artifacts."""

    kind = ErrorKind.VALIDATION_FAILED
    stage = PipelineStage.STATIC_VALIDATE


class QualityGateRejectedError(DeploymentError):
    kind = ErrorKind.QUALITY_GATE_REJECTED
    stage = PipelineStage.QUALITY_GATE


class PushFailedError(DeploymentError):
    kind = ErrorKind.PUSH_FAILED
    stage = PipelineStage.PUSH


class VerificationFailedError(DeploymentError):
    kind = ErrorKind.VERIFICATION_FAILED
    stage = PipelineStage.VERIFY


class SnapshotNotFoundError(Exception):
    """Raised when a snapshot id is unknown."""


class ScheduledDeploymentNotFoundError(Exception):
    """Raised when a scheduled deployment id is unknown."""


class InvalidScheduleTransitionError(Exception):
    """Raised when a scheduled deployment is moved along an illegal edge."""


class SchedulingError(Exception):
    """Raised when a schedule request is rejected before any timer exists."""


class ReviewerTimeoutError(Exception):
    """Raised by reviewer adapters when the external process exceeds its timeout."""


class RemoteCommandError(Exception):
    """Raised by remote adapters when the platform CLI cannot be run or parsed."""


class CodeGeneratorUnavailableError(Exception):
    """Raised when generation is requested but no generator is wired in."""
