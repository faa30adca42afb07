"""In-memory repository implementations for development and testing."""

from __future__ import annotations

from deployguard.domain.models.deployment import DeploymentRecord
from deployguard.domain.models.scheduling import ScheduledDeployment, ScheduledStatus
from deployguard.domain.models.snapshot import Snapshot
from deployguard.domain.ports.repositories import (
    DeploymentRecordRepository,
    ScheduledDeploymentRepository,
    SnapshotRepository,
)


# Shared by every instance; each repository class clears its own via clear().
_record_store: list[DeploymentRecord] = []
_scheduled_store: dict[str, ScheduledDeployment] = {}
_snapshot_store: dict[str, Snapshot] = {}


class InMemoryDeploymentRecordRepository(DeploymentRecordRepository):
    """Append-only deployment history held in a list."""

    def __init__(self) -> None:
        self._store = _record_store

    async def append(self, record: DeploymentRecord) -> DeploymentRecord:
        self._store.append(record)
        return record

    async def get_by_id(self, deployment_id: str) -> DeploymentRecord | None:
        return next((r for r in self._store if r.deployment_id == deployment_id), None)

    async def list(self, target: str | None = None, limit: int = 50) -> list[DeploymentRecord]:
        items = [r for r in self._store if target is None or r.target == target]
        return sorted(items, key=lambda r: r.timestamp, reverse=True)[:limit]

    @classmethod
    def clear(cls) -> None:
        """Clear the shared store. Used by test fixtures for isolation."""
        _record_store.clear()


class InMemoryScheduledDeploymentRepository(ScheduledDeploymentRepository):
    """Stores copies so callers cannot mutate persisted state by accident."""

    def __init__(self) -> None:
        self._store = _scheduled_store

    async def save(self, scheduled: ScheduledDeployment) -> ScheduledDeployment:
        self._store[scheduled.id] = scheduled.model_copy(deep=True)
        return scheduled

    async def get_by_id(self, scheduled_id: str) -> ScheduledDeployment | None:
        stored = self._store.get(scheduled_id)
        return stored.model_copy(deep=True) if stored else None

    async def list_all(self) -> list[ScheduledDeployment]:
        return [s.model_copy(deep=True) for s in self._store.values()]

    async def list_by_status(self, *statuses: ScheduledStatus) -> list[ScheduledDeployment]:
        return [s.model_copy(deep=True) for s in self._store.values() if s.status in statuses]

    async def delete(self, scheduled_ids: list[str]) -> int:
        removed = 0
        for scheduled_id in scheduled_ids:
            if self._store.pop(scheduled_id, None) is not None:
                removed += 1
        return removed

    @classmethod
    def clear(cls) -> None:
        _scheduled_store.clear()


class InMemorySnapshotRepository(SnapshotRepository):
    def __init__(self) -> None:
        self._store = _snapshot_store

    async def save(self, snapshot: Snapshot) -> Snapshot:
        self._store[snapshot.snapshot_id] = snapshot
        return snapshot

    async def get_by_id(self, snapshot_id: str) -> Snapshot | None:
        return self._store.get(snapshot_id)

    async def list(self, target: str | None = None) -> list[Snapshot]:
        items = [s for s in self._store.values() if target is None or s.target == target]
        return sorted(items, key=lambda s: s.created_at, reverse=True)

    @classmethod
    def clear(cls) -> None:
        _snapshot_store.clear()
