"""Scheduled deployment repository implementation."""

from __future__ import annotations

from sqlalchemy import delete, select

from deployguard.domain.models.scheduling import ScheduledDeployment, ScheduledStatus
from deployguard.domain.ports.repositories import ScheduledDeploymentRepository
from deployguard.infrastructure.persistence.database import DatabaseManager
from deployguard.infrastructure.persistence.models import ScheduledDeploymentORM


class SqlScheduledDeploymentRepository(ScheduledDeploymentRepository):
    """SQL implementation of ScheduledDeploymentRepository."""

    def __init__(self, database: DatabaseManager) -> None:
        self._db = database

    async def save(self, scheduled: ScheduledDeployment) -> ScheduledDeployment:
        async with self._db.session() as session:
            await session.merge(self._to_orm(scheduled))
        return scheduled

    async def get_by_id(self, scheduled_id: str) -> ScheduledDeployment | None:
        async with self._db.session() as session:
            orm = await session.get(ScheduledDeploymentORM, scheduled_id)
        return self._to_domain(orm) if orm else None

    async def list_all(self) -> list[ScheduledDeployment]:
        async with self._db.session() as session:
            result = await session.execute(
                select(ScheduledDeploymentORM).order_by(ScheduledDeploymentORM.scheduled_time)
            )
            return [self._to_domain(orm) for orm in result.scalars().all()]

    async def list_by_status(self, *statuses: ScheduledStatus) -> list[ScheduledDeployment]:
        async with self._db.session() as session:
            result = await session.execute(
                select(ScheduledDeploymentORM)
                .where(ScheduledDeploymentORM.status.in_([s.value for s in statuses]))
                .order_by(ScheduledDeploymentORM.scheduled_time)
            )
            return [self._to_domain(orm) for orm in result.scalars().all()]

    async def delete(self, scheduled_ids: list[str]) -> int:
        if not scheduled_ids:
            return 0
        async with self._db.session() as session:
            result = await session.execute(
                delete(ScheduledDeploymentORM)
                .where(ScheduledDeploymentORM.id.in_(scheduled_ids))
            )
            return result.rowcount or 0

    def _to_orm(self, scheduled: ScheduledDeployment) -> ScheduledDeploymentORM:
        return ScheduledDeploymentORM(
            id=scheduled.id,
            target=scheduled.target,
            status=scheduled.status.value,
            requested_by=scheduled.request.requested_by,
            scheduled_time=scheduled.scheduled_time,
            next_attempt_at=scheduled.next_attempt_at,
            scheduled_data=scheduled.model_dump(mode="json"),
            version=scheduled.version,
        )

    def _to_domain(self, orm: ScheduledDeploymentORM) -> ScheduledDeployment:
        return ScheduledDeployment.model_validate(orm.scheduled_data)
