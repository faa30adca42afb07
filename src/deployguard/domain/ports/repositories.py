"""Repository port interfaces (hexagonal architecture)."""

from __future__ import annotations

from abc import ABC, abstractmethod

from deployguard.domain.models.deployment import DeploymentRecord
from deployguard.domain.models.scheduling import ScheduledDeployment, ScheduledStatus
from deployguard.domain.models.snapshot import Snapshot


class DeploymentRecordRepository(ABC):
    """Port for the append-only deployment history."""

    @abstractmethod
    async def append(self, record: DeploymentRecord) -> DeploymentRecord:
        """Append a record. Concurrent appends must not be lost."""

    @abstractmethod
    async def get_by_id(self, deployment_id: str) -> DeploymentRecord | None:
        """Retrieve a record by deployment ID."""

    @abstractmethod
    async def list(self, target: str | None = None, limit: int = 50) -> list[DeploymentRecord]:
        """List records, newest first."""


class ScheduledDeploymentRepository(ABC):
    """Port for scheduled deployment persistence (upsert by scheduled ID)."""

    @abstractmethod
    async def save(self, scheduled: ScheduledDeployment) -> ScheduledDeployment:
        """Insert or replace a scheduled deployment."""

    @abstractmethod
    async def get_by_id(self, scheduled_id: str) -> ScheduledDeployment | None:
        """Retrieve a scheduled deployment by ID."""

    @abstractmethod
    async def list_all(self) -> list[ScheduledDeployment]:
        """List every persisted scheduled deployment."""

    @abstractmethod
    async def list_by_status(self, *statuses: ScheduledStatus) -> list[ScheduledDeployment]:
        """List scheduled deployments in any of the given statuses."""

    @abstractmethod
    async def delete(self, scheduled_ids: list[str]) -> int:
        """Delete scheduled deployments, returning how many were removed."""


class SnapshotRepository(ABC):
    """Port for snapshot persistence."""

    @abstractmethod
    async def save(self, snapshot: Snapshot) -> Snapshot:
        """Persist a snapshot."""

    @abstractmethod
    async def get_by_id(self, snapshot_id: str) -> Snapshot | None:
        """Retrieve a snapshot by ID."""

    @abstractmethod
    async def list(self, target: str | None = None) -> list[Snapshot]:
        """List snapshots, newest first."""
