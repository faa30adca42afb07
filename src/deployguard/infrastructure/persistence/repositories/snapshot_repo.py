"""Snapshot repository implementation."""

from __future__ import annotations

from sqlalchemy import select

from deployguard.domain.models.snapshot import Snapshot, SnapshotComponent
from deployguard.domain.ports.repositories import SnapshotRepository
from deployguard.infrastructure.persistence.database import DatabaseManager
from deployguard.infrastructure.persistence.models import SnapshotORM


class SqlSnapshotRepository(SnapshotRepository):
    def __init__(self, database: DatabaseManager) -> None:
        self._db = database

    async def save(self, snapshot: Snapshot) -> Snapshot:
        async with self._db.session() as session:
            session.add(self._to_orm(snapshot))
        return snapshot

    async def get_by_id(self, snapshot_id: str) -> Snapshot | None:
        async with self._db.session() as session:
            orm = await session.get(SnapshotORM, snapshot_id)
        return self._to_domain(orm) if orm else None

    async def list(self, target: str | None = None) -> list[Snapshot]:
        query = select(SnapshotORM)
        if target is not None:
            query = query.where(SnapshotORM.target == target)
        async with self._db.session() as session:
            result = await session.execute(query.order_by(SnapshotORM.created_at.desc()))
            return [self._to_domain(orm) for orm in result.scalars().all()]

    def _to_orm(self, snapshot: Snapshot) -> SnapshotORM:
        return SnapshotORM(
            snapshot_id=snapshot.snapshot_id,
            deployment_id=snapshot.deployment_id,
            target=snapshot.target,
            components_data=[c.model_dump(mode="json") for c in snapshot.components],
            created_at=snapshot.created_at,
        )

    def _to_domain(self, orm: SnapshotORM) -> Snapshot:
        return Snapshot(
            snapshot_id=orm.snapshot_id,
            deployment_id=orm.deployment_id,
            target=orm.target,
            components=[SnapshotComponent.model_validate(c) for c in orm.components_data or []],
            created_at=orm.created_at,
        )
