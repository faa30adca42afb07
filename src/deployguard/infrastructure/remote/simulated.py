"""Simulated remote deployer for development and testing."""

from __future__ import annotations

from typing import Any

import structlog

from deployguard.domain.errors import RemoteCommandError
from deployguard.domain.models.artifacts import ArtifactKind
from deployguard.domain.models.deployment import (
    DeploymentPackage,
    PushResult,
    VerificationSummary,
)
from deployguard.domain.ports.services import RemoteDeployer


logger = structlog.get_logger(__name__)


class SimulatedRemoteDeployer(RemoteDeployer):
    """Keeps each target's components in memory.

    Pushes overwrite component content, deletes remove it, and every
    operation can be told to fail so pipeline failure paths can be driven
    without a real platform. ``seed`` sets up pre-existing components.
    """

    def __init__(self) -> None:
        self._targets: dict[str, dict[str, str]] = {}
        self.validation_errors: list[str] = []
        self.fail_push = False
        self.fail_push_after_apply = False
        self.fail_verification = False
        self.fail_retrieve = False
        self.fail_rollback_push = False
        self.undeletable: set[str] = set()
        self.calls: list[tuple[str, str]] = []

    def seed(self, target: str, components: dict[str, str]) -> None:
        self._targets.setdefault(target, {}).update(components)

    def state(self, target: str) -> dict[str, str]:
        """Copy of the components currently on ``target``."""
        return dict(self._targets.get(target, {}))

    async def validate(self, package: DeploymentPackage, target: str) -> list[str]:
        self.calls.append(("validate", target))
        logger.info("simulated_validate", target=target, deployment_id=package.deployment_id)
        return list(self.validation_errors)

    async def push(self, package: DeploymentPackage, target: str) -> PushResult:
        self.calls.append(("push", target))
        is_rollback = package.deployment_id.startswith("rollback-")
        if (self.fail_push and not is_rollback) or (self.fail_rollback_push and is_rollback):
            logger.warning("simulated_push_failed", target=target)
            return PushResult(success=False, message="Simulated deploy failure")

        components = self._targets.setdefault(target, {})
        for artifact in package.artifacts.iter_artifacts():
            components[artifact.name] = artifact.content
        logger.info(
            "simulated_push",
            target=target,
            deployment_id=package.deployment_id,
            components=len(package.artifacts.names),
        )
        if self.fail_push_after_apply and not is_rollback:
            return PushResult(success=False, message="Simulated partial deploy failure")
        details: dict[str, Any] = {"status": "Succeeded", "numberComponentsDeployed": len(components)}
        return PushResult(success=True, id=f"sim-{package.deployment_id}", details=details)

    async def run_verification(self, target: str) -> VerificationSummary:
        self.calls.append(("verify", target))
        if self.fail_verification:
            return VerificationSummary(
                passed=False, tests_run=10, tests_passed=7, coverage=71.0, details="Failed",
            )
        return VerificationSummary(
            passed=True, tests_run=10, tests_passed=10, coverage=85.0, duration_ms=1200,
            details="Passed",
        )

    async def retrieve(
        self, components: list[tuple[str, ArtifactKind]], target: str
    ) -> dict[str, str | None]:
        self.calls.append(("retrieve", target))
        if self.fail_retrieve:
            raise RemoteCommandError("Simulated retrieve failure")
        current = self._targets.get(target, {})
        return {name: current.get(name) for name, _ in components}

    async def delete(self, components: list[str], target: str) -> list[str]:
        self.calls.append(("delete", target))
        current = self._targets.setdefault(target, {})
        not_removed = []
        for name in components:
            if name in self.undeletable:
                not_removed.append(name)
            else:
                current.pop(name, None)
        return not_removed
