"""Repositories backed by :class:`JsonDocumentStore` files."""

from __future__ import annotations

from pathlib import Path

from deployguard.domain.models.deployment import DeploymentRecord
from deployguard.domain.models.scheduling import ScheduledDeployment, ScheduledStatus
from deployguard.domain.models.snapshot import Snapshot
from deployguard.domain.ports.repositories import (
    DeploymentRecordRepository,
    ScheduledDeploymentRepository,
    SnapshotRepository,
)
from deployguard.infrastructure.persistence.json_store import JsonDocumentStore


SCHEDULED_FILE = "scheduled.json"
HISTORY_FILE = "deployment-history.json"
SNAPSHOTS_FILE = "snapshots.json"


class JsonScheduledDeploymentRepository(ScheduledDeploymentRepository):
    """Scheduled deployments, upserted by id."""

    def __init__(self, data_dir: str | Path) -> None:
        self._store = JsonDocumentStore(Path(data_dir) / SCHEDULED_FILE)

    async def save(self, scheduled: ScheduledDeployment) -> ScheduledDeployment:
        await self._store.upsert("id", scheduled.model_dump(mode="json"))
        return scheduled

    async def get_by_id(self, scheduled_id: str) -> ScheduledDeployment | None:
        for document in await self._store.read():
            if document.get("id") == scheduled_id:
                return ScheduledDeployment.model_validate(document)
        return None

    async def list_all(self) -> list[ScheduledDeployment]:
        return [ScheduledDeployment.model_validate(d) for d in await self._store.read()]

    async def list_by_status(self, *statuses: ScheduledStatus) -> list[ScheduledDeployment]:
        wanted = {s.value for s in statuses}
        return [
            ScheduledDeployment.model_validate(d)
            for d in await self._store.read()
            if d.get("status") in wanted
        ]

    async def delete(self, scheduled_ids: list[str]) -> int:
        return await self._store.delete("id", set(scheduled_ids))


class JsonDeploymentRecordRepository(DeploymentRecordRepository):
    """Append-only deployment history."""

    def __init__(self, data_dir: str | Path) -> None:
        self._store = JsonDocumentStore(Path(data_dir) / HISTORY_FILE)

    async def append(self, record: DeploymentRecord) -> DeploymentRecord:
        await self._store.append(record.model_dump(mode="json"))
        return record

    async def get_by_id(self, deployment_id: str) -> DeploymentRecord | None:
        for document in await self._store.read():
            if document.get("deployment_id") == deployment_id:
                return DeploymentRecord.model_validate(document)
        return None

    async def list(self, target: str | None = None, limit: int = 50) -> list[DeploymentRecord]:
        records = [DeploymentRecord.model_validate(d) for d in await self._store.read()]
        if target is not None:
            records = [r for r in records if r.target == target]
        records.sort(key=lambda r: r.timestamp, reverse=True)
        return records[:limit]


class JsonSnapshotRepository(SnapshotRepository):
    def __init__(self, data_dir: str | Path) -> None:
        self._store = JsonDocumentStore(Path(data_dir) / SNAPSHOTS_FILE)

    async def save(self, snapshot: Snapshot) -> Snapshot:
        await self._store.upsert("snapshot_id", snapshot.model_dump(mode="json"))
        return snapshot

    async def get_by_id(self, snapshot_id: str) -> Snapshot | None:
        for document in await self._store.read():
            if document.get("snapshot_id") == snapshot_id:
                return Snapshot.model_validate(document)
        return None

    async def list(self, target: str | None = None) -> list[Snapshot]:
        snapshots = [Snapshot.model_validate(d) for d in await self._store.read()]
        if target is not None:
            snapshots = [s for s in snapshots if s.target == target]
        return sorted(snapshots, key=lambda s: s.created_at, reverse=True)
