"""Unit tests for SQL repository ORM mapping."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from deployguard.config import DatabaseSettings
from deployguard.domain.models.artifacts import ArtifactKind, DeploymentRequest
from deployguard.domain.models.deployment import (
    DeploymentOutcome,
    DeploymentRecord,
    ErrorKind,
    PipelineStage,
)
from deployguard.domain.models.scheduling import ScheduledDeployment
from deployguard.domain.models.snapshot import Snapshot, SnapshotComponent
from deployguard.infrastructure.persistence.database import DatabaseManager
from deployguard.infrastructure.persistence.repositories.record_repo import (
    SqlDeploymentRecordRepository,
)
from deployguard.infrastructure.persistence.repositories.scheduled_repo import (
    SqlScheduledDeploymentRepository,
)
from deployguard.infrastructure.persistence.repositories.snapshot_repo import SqlSnapshotRepository


T0 = datetime(2026, 10, 19, 9, 0, tzinfo=timezone.utc)


@pytest.fixture
def database() -> DatabaseManager:
    return DatabaseManager(DatabaseSettings())


class TestDatabaseManager:
    def test_url_from_settings(self) -> None:
        settings = DatabaseSettings(DB_HOST="db", DB_USER="svc", DB_PASSWORD="pw", DB_NAME="guard")
        assert settings.async_url == "postgresql+asyncpg://svc:pw@db:5432/guard"

    @pytest.mark.asyncio
    async def test_session_requires_initialize(self, database: DatabaseManager) -> None:
        with pytest.raises(RuntimeError):
            async with database.session():
                pass

    def test_engine_requires_initialize(self, database: DatabaseManager) -> None:
        with pytest.raises(RuntimeError):
            _ = database.engine

    @pytest.mark.asyncio
    async def test_ping_requires_initialize(self, database: DatabaseManager) -> None:
        with pytest.raises(RuntimeError):
            await database.ping()


class TestRecordMapping:
    def test_round_trip(self, database: DatabaseManager) -> None:
        repo = SqlDeploymentRecordRepository(database)
        record = DeploymentRecord(
            deployment_id="deploy-1",
            snapshot_id="snapshot-1",
            target="dev-sandbox",
            timestamp=T0,
            outcome=DeploymentOutcome.FAILED,
            stage=PipelineStage.STATIC_VALIDATE,
            error_kind=ErrorKind.VALIDATION_FAILED,
            error_message="Missing semicolon",
        )
        orm = repo._to_orm(record)

        assert orm.outcome == "failed"
        assert orm.error_kind == record.error_kind.value
        assert repo._to_domain(orm) == record


class TestScheduledMapping:
    def test_round_trip(self, database: DatabaseManager, safe_request: DeploymentRequest) -> None:
        repo = SqlScheduledDeploymentRepository(database)
        scheduled = ScheduledDeployment(request=safe_request, scheduled_time=T0)
        orm = repo._to_orm(scheduled)

        assert orm.id == scheduled.id
        assert orm.target == "dev-sandbox"
        assert orm.requested_by == "alice"
        assert orm.status == "scheduled"
        assert repo._to_domain(orm).model_dump() == scheduled.model_dump()


class TestSnapshotMapping:
    def test_round_trip(self, database: DatabaseManager) -> None:
        repo = SqlSnapshotRepository(database)
        snapshot = Snapshot(
            deployment_id="deploy-1",
            target="dev-sandbox",
            created_at=T0,
            components=[
                SnapshotComponent(
                    name="A.cls", kind=ArtifactKind.SOURCE, existed=True, content="class A {}"
                ),
            ],
        )
        orm = repo._to_orm(snapshot)

        assert orm.components_data[0]["name"] == "A.cls"
        assert repo._to_domain(orm) == snapshot
