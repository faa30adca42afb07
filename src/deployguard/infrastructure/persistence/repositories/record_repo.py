"""Deployment record repository implementation."""

from __future__ import annotations

from sqlalchemy import select

from deployguard.domain.models.deployment import DeploymentRecord
from deployguard.domain.ports.repositories import DeploymentRecordRepository
from deployguard.infrastructure.persistence.database import DatabaseManager
from deployguard.infrastructure.persistence.models import DeploymentRecordORM


class SqlDeploymentRecordRepository(DeploymentRecordRepository):
    """Append-only history; every append is its own transaction."""

    def __init__(self, database: DatabaseManager) -> None:
        self._db = database

    async def append(self, record: DeploymentRecord) -> DeploymentRecord:
        async with self._db.session() as session:
            session.add(self._to_orm(record))
        return record

    async def get_by_id(self, deployment_id: str) -> DeploymentRecord | None:
        async with self._db.session() as session:
            result = await session.execute(
                select(DeploymentRecordORM)
                .where(DeploymentRecordORM.deployment_id == deployment_id)
                .limit(1)
            )
            orm = result.scalar_one_or_none()
        return self._to_domain(orm) if orm else None

    async def list(self, target: str | None = None, limit: int = 50) -> list[DeploymentRecord]:
        query = select(DeploymentRecordORM)
        if target is not None:
            query = query.where(DeploymentRecordORM.target == target)
        query = query.order_by(DeploymentRecordORM.timestamp.desc()).limit(limit)
        async with self._db.session() as session:
            result = await session.execute(query)
            return [self._to_domain(orm) for orm in result.scalars().all()]

    def _to_orm(self, record: DeploymentRecord) -> DeploymentRecordORM:
        return DeploymentRecordORM(
            deployment_id=record.deployment_id,
            target=record.target,
            outcome=record.outcome.value,
            stage=record.stage.value,
            error_kind=record.error_kind.value if record.error_kind else None,
            error_message=record.error_message,
            record_data=record.model_dump(mode="json"),
            timestamp=record.timestamp,
        )

    def _to_domain(self, orm: DeploymentRecordORM) -> DeploymentRecord:
        return DeploymentRecord.model_validate(orm.record_data)
