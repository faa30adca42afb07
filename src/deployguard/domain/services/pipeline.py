"""Deployment pipeline: the staged state machine for one deployment attempt.

Stage order is fixed::

    breaker_check -> window_check -> target_validate -> target_lock -> snapshot
    -> package -> [quality_gate] -> static_validate -> push -> verify -> record

A failure before ``push`` aborts without touching the target. A failure at or
after ``push`` restores the snapshot when one exists. Every attempt that got
past target validation leaves exactly one :class:`DeploymentRecord`.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from datetime import datetime

import structlog

from deployguard.config import PipelineSettings
from deployguard.domain.errors import (
    CircuitOpenError,
    DeploymentError,
    OutsideWindowError,
    PackagingError,
    PushFailedError,
    QualityGateRejectedError,
    SnapshotNotFoundError,
    TargetBusyError,
    ValidationFailedError,
    VerificationFailedError,
)
from deployguard.domain.models.artifacts import (
    ArtifactBundle,
    DeploymentOptions,
    DeploymentRequest,
)
from deployguard.domain.models.base import generate_id, utc_now
from deployguard.domain.models.deployment import (
    BatchDeploymentSummary,
    DeploymentOutcome,
    DeploymentPackage,
    DeploymentRecord,
    DeploymentResult,
    ErrorKind,
    FailureSeverity,
    PipelineStage,
    PushResult,
    RollbackResult,
    VerificationSummary,
)
from deployguard.domain.models.review import ImprovementProposal, QualityGateReview
from deployguard.domain.models.risk import Finding
from deployguard.domain.models.snapshot import Snapshot, SnapshotSummary
from deployguard.domain.ports.repositories import DeploymentRecordRepository
from deployguard.domain.ports.services import (
    ArtifactPackager,
    DistributedLock,
    RemoteDeployer,
)
from deployguard.domain.services.circuit_breaker import CircuitBreaker, CircuitBreakerState
from deployguard.domain.services.deployment_windows import DeploymentWindowPolicy
from deployguard.domain.services.quality_gate import QualityGate
from deployguard.domain.services.risk_scanner import RiskScanner
from deployguard.domain.services.snapshot_store import SnapshotStore
from deployguard.domain.services.target_validator import TargetValidator
from deployguard.infrastructure.observability import metrics
from deployguard.infrastructure.observability.tracing import get_tracer, stage_span


logger = structlog.get_logger(__name__)

# Gate failures stop the attempt before anything ran on the target.
_GATE_KINDS = frozenset({
    ErrorKind.BLOCKED_TARGET,
    ErrorKind.CIRCUIT_OPEN,
    ErrorKind.OUTSIDE_WINDOW,
})

# Outcomes that do not count against the circuit breaker.
_NOT_COUNTED = frozenset({
    ErrorKind.CIRCUIT_OPEN,
    ErrorKind.TARGET_BUSY,
    ErrorKind.QUALITY_GATE_REJECTED,
})


class _Attempt:
    """Mutable working state of one pipeline run."""

    def __init__(
        self,
        request: DeploymentRequest,
        scheduled_id: str | None,
        proposal: ImprovementProposal | None,
    ) -> None:
        self.deployment_id = generate_id("deploy")
        self.request = request
        self.scheduled_id = scheduled_id
        self.proposal = proposal
        self.artifacts: ArtifactBundle = request.artifacts
        self.stage = PipelineStage.START
        self.validated = False
        self.lock_token: str | None = None
        self.snapshot: Snapshot | None = None
        self.package: DeploymentPackage | None = None
        self.review: QualityGateReview | None = None
        self.warnings: list[Finding] = []
        self.validation_errors: list[str] = []
        self.target_warning: str | None = None
        self.push: PushResult | None = None
        self.verification: VerificationSummary | None = None
        self.started = time.perf_counter()

    @property
    def target(self) -> str:
        return self.request.target

    @property
    def options(self) -> DeploymentOptions:
        return self.request.options


class DeploymentPipeline:
    """Sequences validation, snapshot, packaging, review, push and verification."""

    def __init__(
        self,
        *,
        validator: TargetValidator,
        breaker: CircuitBreaker,
        scanner: RiskScanner,
        snapshots: SnapshotStore,
        packager: ArtifactPackager,
        remote: RemoteDeployer,
        records: DeploymentRecordRepository,
        windows: DeploymentWindowPolicy,
        lock_service: DistributedLock,
        settings: PipelineSettings,
        quality_gate: QualityGate | None = None,
        batch_delay_seconds: float = 1.0,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._validator = validator
        self._breaker = breaker
        self._scanner = scanner
        self._snapshots = snapshots
        self._packager = packager
        self._remote = remote
        self._records = records
        self._windows = windows
        self._lock = lock_service
        self._settings = settings
        self._quality_gate = quality_gate
        self._batch_delay = batch_delay_seconds
        self._clock = clock
        self._tracer = get_tracer("deployguard.pipeline")

    @property
    def quality_gate_enabled(self) -> bool:
        return self._quality_gate is not None

    def breaker_state(self) -> CircuitBreakerState:
        return self._breaker.state()

    def reset_breaker(self) -> CircuitBreakerState:
        self._breaker.reset()
        self._update_breaker_metrics()
        return self._breaker.state()

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    async def deploy(
        self, request: DeploymentRequest, *, scheduled_id: str | None = None
    ) -> DeploymentResult:
        """Run one attempt. Never raises for stage failures; see the result."""
        return await self._run(_Attempt(request, scheduled_id, None))

    async def deploy_with_quality_gate(
        self,
        proposal: ImprovementProposal,
        target: str,
        options: DeploymentOptions | None = None,
        skip_quality_gate: bool = False,
        requested_by: str = "",
    ) -> DeploymentResult:
        """Deploy an AI-authored change, reviewed between packaging and push."""
        request = DeploymentRequest(
            artifacts=ArtifactBundle(sources={proposal.artifact_name: proposal.improved_code}),
            target=target,
            options=options or DeploymentOptions(),
            skip_quality_gate=skip_quality_gate,
            requested_by=requested_by,
            description=f"Improvement of {proposal.class_name}",
        )
        if skip_quality_gate or self._quality_gate is None:
            logger.warning(
                "quality_gate_bypassed",
                class_name=proposal.class_name,
                target=target,
                reason="skipped" if skip_quality_gate else "disabled",
            )
        return await self._run(_Attempt(request, None, proposal))

    async def deploy_batch_with_quality_gate(
        self,
        proposals: list[ImprovementProposal],
        target: str,
        options: DeploymentOptions | None = None,
    ) -> BatchDeploymentSummary:
        """Review and deploy proposals one at a time."""
        results: list[DeploymentResult] = []
        for index, proposal in enumerate(proposals):
            if index and self._batch_delay:
                await asyncio.sleep(self._batch_delay)
            results.append(await self.deploy_with_quality_gate(proposal, target, options))

        # A skipped or disabled review counts as approved
        rejected = sum(1 for r in results if r.outcome == DeploymentOutcome.REJECTED)
        approved = len(results) - rejected
        deployed = sum(1 for r in results if r.deployed)
        summary = BatchDeploymentSummary(
            total=len(results),
            approved=approved,
            rejected=rejected,
            deployed=deployed,
            failed=approved - deployed,
            results=results,
        )
        logger.info(
            "batch_deployment_completed",
            target=target,
            total=summary.total,
            deployed=summary.deployed,
            rejected=summary.rejected,
        )
        return summary

    async def rollback_to_snapshot(self, snapshot_id: str, target: str) -> RollbackResult:
        """Operator-initiated restore. The target is validated like any deployment."""
        self._validator.validate(target)
        lock_key = f"target:{target}"
        token: str | None = None
        if self._settings.serialize_per_target:
            token = await self._lock.acquire(lock_key, self._settings.target_lock_ttl_seconds)
            if token is None:
                raise TargetBusyError(f"Another deployment is in progress on {target}")
        try:
            result = await self._snapshots.restore(snapshot_id, target)
        finally:
            if token is not None:
                await self._lock.release(lock_key, token)
        metrics.ROLLBACKS_TOTAL.labels(result="success" if result.success else "failure").inc()
        return result

    async def rollback_to_previous(self, target: str) -> RollbackResult:
        latest = await self._snapshots.latest(target)
        if latest is None:
            raise SnapshotNotFoundError(f"No snapshot available for rollback on {target}")
        return await self.rollback_to_snapshot(latest.snapshot_id, target)

    async def list_snapshots(self, target: str | None = None) -> list[SnapshotSummary]:
        return await self._snapshots.list(target)

    async def history(self, target: str | None = None, limit: int = 50) -> list[DeploymentRecord]:
        return await self._records.list(target=target, limit=limit)

    # ------------------------------------------------------------------
    # Attempt execution
    # ------------------------------------------------------------------

    async def _run(self, attempt: _Attempt) -> DeploymentResult:
        log = logger.bind(deployment_id=attempt.deployment_id, target=attempt.target)
        log.info(
            "deployment_started",
            artifacts=attempt.artifacts.names,
            scheduled_id=attempt.scheduled_id,
        )
        metrics.ACTIVE_DEPLOYMENTS.inc()
        try:
            with self._tracer.start_as_current_span(
                "deployment.attempt",
                attributes={
                    "deployment.id": attempt.deployment_id,
                    "deployment.target": attempt.target,
                },
            ):
                try:
                    result = await self._execute(attempt)
                except DeploymentError as e:
                    result = await self._handle_failure(attempt, e)
                except Exception as e:
                    log.exception("deployment_internal_error", stage=attempt.stage.value)
                    error = DeploymentError(f"Internal error at {attempt.stage.value}: {e}")
                    result = await self._handle_failure(attempt, error)
        finally:
            await self._cleanup(attempt)
            metrics.ACTIVE_DEPLOYMENTS.dec()

        metrics.DEPLOYMENTS_TOTAL.labels(outcome=result.outcome.value, target=attempt.target).inc()
        metrics.DEPLOYMENT_DURATION.labels(outcome=result.outcome.value).observe(
            time.perf_counter() - attempt.started
        )
        log.info(
            "deployment_finished",
            outcome=result.outcome.value,
            stage=result.stage.value,
            error_kind=result.error_kind.value if result.error_kind else None,
            severity=result.severity.value,
        )
        return result

    @contextmanager
    def _stage(self, attempt: _Attempt, stage: PipelineStage) -> Iterator[None]:
        attempt.stage = stage
        with stage_span(self._tracer, stage.value, attempt.deployment_id, attempt.target):
            yield

    async def _execute(self, attempt: _Attempt) -> DeploymentResult:
        request = attempt.request
        options = attempt.options

        with self._stage(attempt, PipelineStage.BREAKER_CHECK):
            if not self._breaker.allow_attempt():
                raise CircuitOpenError(
                    "Circuit breaker is OPEN - deployments temporarily blocked "
                    f"due to repeated failures (retry in {self._breaker.retry_after():.0f}s)"
                )

        with self._stage(attempt, PipelineStage.WINDOW_CHECK):
            if self._settings.enforce_windows and not options.force_outside_window:
                check = self._windows.is_within_window(self._clock(), attempt.target)
                if not check.allowed:
                    raise OutsideWindowError(
                        f"Deployment blocked: outside allowed deployment window "
                        f"({check.reason}). Use force_outside_window to override."
                    )

        with self._stage(attempt, PipelineStage.TARGET_VALIDATE):
            validation = self._validator.validate(attempt.target)
            attempt.validated = True
            attempt.target_warning = validation.warning

        with self._stage(attempt, PipelineStage.TARGET_LOCK):
            if self._settings.serialize_per_target:
                attempt.lock_token = await self._lock.acquire(
                    f"target:{attempt.target}", self._settings.target_lock_ttl_seconds
                )
                if attempt.lock_token is None:
                    raise TargetBusyError(
                        f"Another deployment is in progress on {attempt.target}"
                    )

        if not options.skip_snapshot:
            with self._stage(attempt, PipelineStage.SNAPSHOT):
                attempt.snapshot = await self._snapshots.capture(
                    attempt.deployment_id, attempt.artifacts, attempt.target
                )
                metrics.SNAPSHOTS_TOTAL.inc()

        with self._stage(attempt, PipelineStage.PACKAGE):
            package = await self._package(attempt, attempt.artifacts)

        if (
            attempt.proposal is not None
            and self._quality_gate is not None
            and not request.skip_quality_gate
        ):
            with self._stage(attempt, PipelineStage.QUALITY_GATE):
                package = await self._review(
                    attempt, attempt.proposal, self._quality_gate, package
                )

        if not options.skip_validation:
            with self._stage(attempt, PipelineStage.STATIC_VALIDATE):
                await self._static_validate(attempt, package)

        with self._stage(attempt, PipelineStage.PUSH):
            attempt.push = await self._push(attempt, package)

        if not options.skip_tests:
            with self._stage(attempt, PipelineStage.VERIFY):
                attempt.verification = await self._verify(attempt)

        with self._stage(attempt, PipelineStage.RECORD):
            self._breaker.record_success()
            self._update_breaker_metrics()
            record = await self._record(attempt, DeploymentOutcome.SUCCEEDED)

        return self._result(attempt, DeploymentOutcome.SUCCEEDED, record=record)

    async def _package(self, attempt: _Attempt, artifacts: ArtifactBundle) -> DeploymentPackage:
        if artifacts.is_empty:
            raise PackagingError("Nothing to deploy: artifact set is empty")
        try:
            package = await self._packager.package(artifacts, attempt.deployment_id)
        except Exception as e:
            raise PackagingError(f"Could not build deployment package: {e}") from e
        attempt.package = package
        return package

    async def _review(
        self,
        attempt: _Attempt,
        proposal: ImprovementProposal,
        gate: QualityGate,
        package: DeploymentPackage,
    ) -> DeploymentPackage:
        review = await gate.review(proposal)
        attempt.review = review
        if not review.approved:
            raise QualityGateRejectedError(
                f"Quality gate rejected {proposal.class_name}: {review.reason}",
                details=review.changes,
            )
        if review.final_code and review.final_code != proposal.improved_code:
            # The refined body supersedes the proposal for every later stage
            attempt.artifacts = attempt.artifacts.with_source(
                proposal.artifact_name, review.final_code
            )
            await self._packager.discard(package)
            attempt.package = None
            package = await self._package(attempt, attempt.artifacts)
            logger.info(
                "quality_gate_refined_code_applied",
                deployment_id=attempt.deployment_id,
                class_name=proposal.class_name,
                changes=len(review.changes),
            )
        return package

    async def _static_validate(self, attempt: _Attempt, package: DeploymentPackage) -> None:
        report = self._scanner.scan(attempt.artifacts)
        attempt.warnings = report.warnings
        for finding in report.findings:
            metrics.RISK_FINDINGS_TOTAL.labels(
                rule=finding.rule, severity=finding.severity.value
            ).inc()

        errors = [str(finding) for finding in report.blocking_errors]
        timeout = self._settings.remote_timeout_seconds
        try:
            errors.extend(await asyncio.wait_for(
                self._remote.validate(package, attempt.target), timeout=timeout
            ))
        except asyncio.TimeoutError:
            errors.append(f"Remote validation timed out after {timeout:g}s")
        except Exception as e:
            errors.append(f"Remote validation could not run: {e}")

        attempt.validation_errors = errors
        for warning in report.warnings:
            logger.warning(
                "validation_warning",
                deployment_id=attempt.deployment_id,
                rule=warning.rule,
                detail=str(warning),
            )
        if errors:
            raise ValidationFailedError(
                f"Validation failed with {len(errors)} error(s): {'; '.join(errors)}",
                details=errors,
            )

    async def _push(self, attempt: _Attempt, package: DeploymentPackage) -> PushResult:
        timeout = self._settings.push_timeout_seconds
        try:
            result = await asyncio.wait_for(
                self._remote.push(package, attempt.target), timeout=timeout
            )
        except asyncio.TimeoutError as e:
            raise PushFailedError(f"Push timed out after {timeout:g}s") from e
        except Exception as e:
            raise PushFailedError(f"Push failed: {e}") from e
        attempt.push = result
        if not result.success:
            raise PushFailedError(f"Push failed: {result.message or 'unknown error'}")
        return result

    async def _verify(self, attempt: _Attempt) -> VerificationSummary:
        timeout = self._settings.verify_timeout_seconds
        try:
            summary = await asyncio.wait_for(
                self._remote.run_verification(attempt.target), timeout=timeout
            )
        except asyncio.TimeoutError as e:
            raise VerificationFailedError(f"Verification timed out after {timeout:g}s") from e
        except Exception as e:
            raise VerificationFailedError(f"Verification could not run: {e}") from e
        attempt.verification = summary
        if not summary.passed:
            raise VerificationFailedError(
                f"Post-deployment tests failed ({summary.tests_passed}/{summary.tests_run} passed)"
            )
        return summary

    # ------------------------------------------------------------------
    # Failure handling
    # ------------------------------------------------------------------

    async def _handle_failure(self, attempt: _Attempt, error: DeploymentError) -> DeploymentResult:
        kind = error.kind
        stage = attempt.stage
        log = logger.bind(deployment_id=attempt.deployment_id, target=attempt.target)
        metrics.STAGE_FAILURES_TOTAL.labels(stage=stage.value, error_kind=kind.value).inc()

        if kind not in _NOT_COUNTED:
            self._breaker.record_failure()
            self._update_breaker_metrics()
        if kind == ErrorKind.BLOCKED_TARGET:
            metrics.BLOCKED_TARGETS_TOTAL.inc()

        rollback: RollbackResult | None = None
        rollback_attempted = False
        if kind in _GATE_KINDS:
            outcome = DeploymentOutcome.BLOCKED
            severity = FailureSeverity.NORMAL
        elif kind == ErrorKind.QUALITY_GATE_REJECTED:
            outcome = DeploymentOutcome.REJECTED
            severity = FailureSeverity.NONE
        elif stage.is_mutating and attempt.snapshot is not None:
            rollback_attempted = True
            log.warning("auto_rollback_started", snapshot_id=attempt.snapshot.snapshot_id)
            rollback = await self._auto_rollback(attempt, attempt.snapshot)
            if rollback.success:
                outcome = DeploymentOutcome.ROLLED_BACK
                severity = FailureSeverity.NORMAL
            else:
                outcome = DeploymentOutcome.ROLLBACK_FAILED
                severity = FailureSeverity.CRITICAL
                log.critical(
                    "auto_rollback_failed",
                    snapshot_id=attempt.snapshot.snapshot_id,
                    error=rollback.error,
                )
        elif stage.is_mutating:
            outcome = DeploymentOutcome.FAILED
            severity = FailureSeverity.HIGH
            log.error("deployment_failed_without_snapshot", stage=stage.value)
        else:
            outcome = DeploymentOutcome.FAILED
            severity = FailureSeverity.NORMAL

        log.warning(
            "deployment_stage_failed",
            stage=stage.value,
            error_kind=kind.value,
            error=error.message,
        )

        record = None
        if attempt.validated:
            with self._stage(attempt, PipelineStage.RECORD):
                record = await self._record(
                    attempt, outcome, error=error, rollback=rollback, failed_stage=stage,
                )

        return self._result(
            attempt,
            outcome,
            error=error,
            severity=severity,
            failed_stage=stage,
            rollback=rollback,
            rollback_attempted=rollback_attempted,
            record=record,
        )

    async def _auto_rollback(self, attempt: _Attempt, snapshot: Snapshot) -> RollbackResult:
        with self._stage(attempt, PipelineStage.ROLLBACK):
            try:
                result = await self._snapshots.restore(snapshot.snapshot_id, attempt.target)
            except Exception as e:
                logger.exception("auto_rollback_error", deployment_id=attempt.deployment_id)
                result = RollbackResult(
                    snapshot_id=snapshot.snapshot_id,
                    target=attempt.target,
                    success=False,
                    error=str(e),
                )
        metrics.ROLLBACKS_TOTAL.labels(result="success" if result.success else "failure").inc()
        return result

    async def _record(
        self,
        attempt: _Attempt,
        outcome: DeploymentOutcome,
        *,
        error: DeploymentError | None = None,
        rollback: RollbackResult | None = None,
        failed_stage: PipelineStage | None = None,
    ) -> DeploymentRecord | None:
        details: dict[str, object] = {}
        if attempt.push is not None:
            details["push"] = attempt.push.model_dump(mode="json")
        if attempt.review is not None:
            details["review"] = {
                "verdict": attempt.review.verdict.value,
                "reason": attempt.review.reason,
                "changes": attempt.review.changes,
            }
        if error is not None and error.details:
            details["errors"] = error.details
        if attempt.target_warning:
            details["target_warning"] = attempt.target_warning

        record = DeploymentRecord(
            deployment_id=attempt.deployment_id,
            snapshot_id=attempt.snapshot.snapshot_id if attempt.snapshot else None,
            target=attempt.target,
            timestamp=self._clock(),
            outcome=outcome,
            stage=failed_stage or PipelineStage.RECORD,
            artifacts=attempt.artifacts.names,
            verification=attempt.verification,
            rollback=rollback,
            error_kind=error.kind if error else None,
            error_message=error.message if error else "",
            details=details,
            scheduled_id=attempt.scheduled_id,
            request_id=attempt.request.request_id,
        )
        try:
            return await self._records.append(record)
        except Exception:
            logger.exception("deployment_record_failed", deployment_id=attempt.deployment_id)
            return None

    def _result(
        self,
        attempt: _Attempt,
        outcome: DeploymentOutcome,
        *,
        error: DeploymentError | None = None,
        severity: FailureSeverity = FailureSeverity.NONE,
        failed_stage: PipelineStage | None = None,
        rollback: RollbackResult | None = None,
        rollback_attempted: bool = False,
        record: DeploymentRecord | None = None,
    ) -> DeploymentResult:
        return DeploymentResult(
            deployment_id=attempt.deployment_id,
            target=attempt.target,
            outcome=outcome,
            stage=failed_stage or PipelineStage.RECORD,
            error_kind=error.kind if error else None,
            error_message=error.message if error else "",
            severity=severity,
            snapshot_id=attempt.snapshot.snapshot_id if attempt.snapshot else None,
            rollback_attempted=rollback_attempted,
            rollback=rollback,
            push=attempt.push,
            verification=attempt.verification,
            warnings=attempt.warnings,
            validation_errors=attempt.validation_errors,
            target_warning=attempt.target_warning,
            review=attempt.review,
            record=record,
        )

    async def _cleanup(self, attempt: _Attempt) -> None:
        if attempt.package is not None:
            try:
                await self._packager.discard(attempt.package)
            except Exception:
                logger.warning("package_cleanup_failed", deployment_id=attempt.deployment_id)
        if attempt.lock_token is not None:
            await self._lock.release(f"target:{attempt.target}", attempt.lock_token)
            attempt.lock_token = None

    def _update_breaker_metrics(self) -> None:
        state = self._breaker.state()
        metrics.CIRCUIT_BREAKER_OPEN.set(1 if state.is_open else 0)
        metrics.CIRCUIT_BREAKER_FAILURES.set(state.failure_count)
