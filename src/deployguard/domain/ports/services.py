"""Service port interfaces (hexagonal architecture)."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from deployguard.domain.models.artifacts import ArtifactBundle, ArtifactKind
from deployguard.domain.models.base import ValueObject
from deployguard.domain.models.deployment import (
    DeploymentPackage,
    PushResult,
    VerificationSummary,
)
from deployguard.domain.models.scheduling import EnvironmentClass


class CodeGenerator(ABC):
    """Port for the code-generation layer that produces artifacts."""

    @abstractmethod
    async def generate(self, task_description: str, context: dict[str, Any]) -> ArtifactBundle:
        """Generate the artifacts for a task."""


class ArtifactPackager(ABC):
    """Port for laying artifacts out in the platform's project format."""

    @abstractmethod
    async def package(self, artifacts: ArtifactBundle, deployment_id: str) -> DeploymentPackage:
        """Build a deployable package."""

    @abstractmethod
    async def discard(self, package: DeploymentPackage) -> None:
        """Remove a package that is no longer needed."""


class RemoteDeployer(ABC):
    """Port for the platform-specific push and test execution."""

    @abstractmethod
    async def validate(self, package: DeploymentPackage, target: str) -> list[str]:
        """Check-only deploy. Returns syntax/package errors, empty when valid."""

    @abstractmethod
    async def push(self, package: DeploymentPackage, target: str) -> PushResult:
        """Push a package to the target."""

    @abstractmethod
    async def run_verification(self, target: str) -> VerificationSummary:
        """Run the post-deploy verification (remote tests)."""

    @abstractmethod
    async def retrieve(
        self, components: list[tuple[str, ArtifactKind]], target: str
    ) -> dict[str, str | None]:
        """Fetch current content of components; ``None`` for ones that do not exist."""

    @abstractmethod
    async def delete(self, components: list[str], target: str) -> list[str]:
        """Delete components from the target. Returns the ones that could not be removed."""


class ReviewerResponse(ValueObject):
    exit_code: int
    stdout: str = ""
    stderr: str = ""


class ExternalReviewer(ABC):
    """Port for the process that reviews proposed code."""

    @abstractmethod
    async def invoke(self, prompt: str, timeout_seconds: float) -> ReviewerResponse:
        """Send a prompt, wait for the answer. Raises ReviewerTimeoutError on timeout."""


class TargetMetadataSource(ABC):
    """Port for read-only lookup of a target's environment class."""

    @abstractmethod
    def environment_class(self, target: str) -> EnvironmentClass:
        """Classify a target name."""


class EventPublisher(ABC):
    """Port for publishing domain events and notifications."""

    @abstractmethod
    async def publish(self, event_type: str, payload: dict[str, Any]) -> None:
        """Publish an event."""

    @abstractmethod
    async def publish_batch(self, events: list[tuple[str, dict[str, Any]]]) -> None:
        """Publish a batch of events."""


class DistributedLock(ABC):
    """Port for locking a deployment target."""

    @abstractmethod
    async def acquire(self, resource_id: str, ttl_seconds: int = 30) -> str | None:
        """Acquire a lock without waiting.

        Returns the owner token, or ``None`` when the resource is held.
        """

    @abstractmethod
    async def release(self, resource_id: str, token: str) -> bool:
        """Release a lock, only if ``token`` still owns it."""

    @abstractmethod
    async def is_locked(self, resource_id: str) -> bool:
        """Check if a resource is locked."""
