"""Deployment service: the entry point used by the API and CLI layers."""

from __future__ import annotations

from datetime import datetime
from typing import Any, TYPE_CHECKING

import structlog

from deployguard.domain.errors import CodeGeneratorUnavailableError
from deployguard.domain.models.artifacts import DeploymentOptions, DeploymentRequest
from deployguard.domain.models.deployment import (
    BatchDeploymentSummary,
    DeploymentRecord,
    DeploymentResult,
    RollbackResult,
)
from deployguard.domain.models.review import ImprovementProposal
from deployguard.domain.models.scheduling import (
    NotificationFlags,
    RetryPolicy,
    ScheduledDeployment,
)
from deployguard.domain.ports.services import CodeGenerator
from deployguard.domain.services.pipeline import DeploymentPipeline

if TYPE_CHECKING:
    from deployguard.workers.scheduler import DeploymentScheduler


logger = structlog.get_logger(__name__)


class DeploymentService:
    """Coordinates immediate and scheduled deployments.

    Immediate requests go straight to the pipeline; requests with a time are
    handed to the scheduler.
    """

    def __init__(
        self,
        pipeline: DeploymentPipeline,
        scheduler: DeploymentScheduler,
        code_generator: CodeGenerator | None = None,
    ) -> None:
        self._pipeline = pipeline
        self._scheduler = scheduler
        self._code_generator = code_generator

    @property
    def pipeline(self) -> DeploymentPipeline:
        return self._pipeline

    @property
    def scheduler(self) -> DeploymentScheduler:
        return self._scheduler

    async def submit(
        self,
        request: DeploymentRequest,
        when: datetime | None = None,
        retry_policy: RetryPolicy | None = None,
        notifications: NotificationFlags | None = None,
    ) -> DeploymentResult | ScheduledDeployment:
        """Deploy now, or schedule when ``when`` is given."""
        if when is None:
            return await self._pipeline.deploy(request)
        return await self._scheduler.schedule(request, when, retry_policy, notifications)

    async def generate_and_deploy(
        self,
        task_description: str,
        target: str,
        context: dict[str, Any] | None = None,
        options: DeploymentOptions | None = None,
        when: datetime | None = None,
        requested_by: str = "",
    ) -> DeploymentResult | ScheduledDeployment:
        """Ask the code generator for artifacts, then submit them."""
        if self._code_generator is None:
            raise CodeGeneratorUnavailableError("No code generator is configured")

        artifacts = await self._code_generator.generate(task_description, context or {})
        logger.info(
            "artifacts_generated",
            target=target,
            sources=len(artifacts.sources),
            metadata=len(artifacts.metadata),
        )
        request = DeploymentRequest(
            artifacts=artifacts,
            target=target,
            options=options or DeploymentOptions(),
            requested_by=requested_by,
            description=task_description,
        )
        return await self.submit(request, when)

    async def deploy_improvement(
        self,
        proposal: ImprovementProposal,
        target: str,
        options: DeploymentOptions | None = None,
        skip_quality_gate: bool = False,
        requested_by: str = "",
    ) -> DeploymentResult:
        return await self._pipeline.deploy_with_quality_gate(
            proposal, target, options, skip_quality_gate, requested_by
        )

    async def deploy_improvements(
        self,
        proposals: list[ImprovementProposal],
        target: str,
        options: DeploymentOptions | None = None,
    ) -> BatchDeploymentSummary:
        return await self._pipeline.deploy_batch_with_quality_gate(proposals, target, options)

    async def rollback(self, target: str, snapshot_id: str | None = None) -> RollbackResult:
        """Restore a specific snapshot, or the latest one for ``target``."""
        if snapshot_id is None:
            return await self._pipeline.rollback_to_previous(target)
        return await self._pipeline.rollback_to_snapshot(snapshot_id, target)

    async def history(self, target: str | None = None, limit: int = 50) -> list[DeploymentRecord]:
        return await self._pipeline.history(target, limit)
