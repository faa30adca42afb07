"""Unit tests for the JSON file repositories."""

from __future__ import annotations

import asyncio
import json
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from deployguard.domain.models.artifacts import ArtifactKind, DeploymentRequest
from deployguard.domain.models.deployment import (
    DeploymentOutcome,
    DeploymentRecord,
    ErrorKind,
    PipelineStage,
    VerificationSummary,
)
from deployguard.domain.models.scheduling import RetryPolicy, ScheduledDeployment, ScheduledStatus
from deployguard.domain.models.snapshot import Snapshot, SnapshotComponent
from deployguard.infrastructure.persistence.json_store import JsonDocumentStore
from deployguard.infrastructure.persistence.repositories.json_repo import (
    HISTORY_FILE,
    JsonDeploymentRecordRepository,
    JsonScheduledDeploymentRepository,
    JsonSnapshotRepository,
    SCHEDULED_FILE,
)


T0 = datetime(2026, 10, 19, 9, 0, tzinfo=timezone.utc)


class TestJsonDocumentStore:
    @pytest.mark.asyncio
    async def test_missing_file_reads_empty(self, tmp_path: Path) -> None:
        assert await JsonDocumentStore(tmp_path / "none.json").read() == []

    @pytest.mark.asyncio
    async def test_upsert_and_delete(self, tmp_path: Path) -> None:
        store = JsonDocumentStore(tmp_path / "docs.json")
        await store.upsert("id", {"id": "a", "v": 1})
        await store.upsert("id", {"id": "b", "v": 1})
        await store.upsert("id", {"id": "a", "v": 2})
        assert await store.read() == [{"id": "a", "v": 2}, {"id": "b", "v": 1}]
        assert await store.delete("id", {"a", "zzz"}) == 1
        assert await store.read() == [{"id": "b", "v": 1}]

    @pytest.mark.asyncio
    async def test_concurrent_appends_are_not_lost(self, tmp_path: Path) -> None:
        store = JsonDocumentStore(tmp_path / "history.json")
        await asyncio.gather(*(store.append({"n": i}) for i in range(20)))
        assert sorted(d["n"] for d in await store.read()) == list(range(20))

    @pytest.mark.asyncio
    async def test_no_temp_files_left(self, tmp_path: Path) -> None:
        store = JsonDocumentStore(tmp_path / "docs.json")
        await store.append({"n": 1})
        assert [p.name for p in tmp_path.iterdir()] == ["docs.json"]

    @pytest.mark.asyncio
    async def test_rejects_non_list(self, tmp_path: Path) -> None:
        path = tmp_path / "docs.json"
        path.write_text('{"not": "a list"}', encoding="utf-8")
        with pytest.raises(ValueError):
            await JsonDocumentStore(path).read()


class TestJsonScheduledDeploymentRepository:
    @pytest.mark.asyncio
    async def test_round_trip(self, tmp_path: Path, safe_request: DeploymentRequest) -> None:
        repo = JsonScheduledDeploymentRepository(tmp_path)
        scheduled = ScheduledDeployment(
            request=safe_request,
            scheduled_time=T0,
            retry_policy=RetryPolicy(max_retries=4),
        )
        scheduled.start_execution()
        scheduled.schedule_retry(T0 + timedelta(minutes=5))
        await repo.save(scheduled)

        loaded = await JsonScheduledDeploymentRepository(tmp_path).get_by_id(scheduled.id)

        assert loaded is not None
        assert loaded.model_dump() == scheduled.model_dump()
        assert loaded.due_at == T0 + timedelta(minutes=5)
        assert loaded.request.artifacts == safe_request.artifacts

    @pytest.mark.asyncio
    async def test_file_layout(self, tmp_path: Path, safe_request: DeploymentRequest) -> None:
        repo = JsonScheduledDeploymentRepository(tmp_path)
        scheduled = ScheduledDeployment(request=safe_request, scheduled_time=T0)
        await repo.save(scheduled)
        await repo.save(scheduled)
        documents = json.loads((tmp_path / SCHEDULED_FILE).read_text(encoding="utf-8"))
        assert len(documents) == 1
        assert documents[0]["status"] == "scheduled"

    @pytest.mark.asyncio
    async def test_list_by_status_and_delete(
        self, tmp_path: Path, safe_request: DeploymentRequest
    ) -> None:
        repo = JsonScheduledDeploymentRepository(tmp_path)
        keep = ScheduledDeployment(request=safe_request, scheduled_time=T0)
        drop = ScheduledDeployment(request=safe_request, scheduled_time=T0)
        drop.cancel()
        await repo.save(keep)
        await repo.save(drop)

        cancelled = await repo.list_by_status(ScheduledStatus.CANCELLED)
        assert [s.id for s in cancelled] == [drop.id]
        assert await repo.delete([drop.id]) == 1
        assert [s.id for s in await repo.list_all()] == [keep.id]


class TestJsonDeploymentRecordRepository:
    @pytest.mark.asyncio
    async def test_append_and_list(self, tmp_path: Path) -> None:
        repo = JsonDeploymentRecordRepository(tmp_path)
        failed = DeploymentRecord(
            deployment_id="deploy-1",
            target="dev-sandbox",
            timestamp=T0,
            outcome=DeploymentOutcome.ROLLED_BACK,
            stage=PipelineStage.VERIFY,
            error_kind=ErrorKind.VERIFICATION_FAILED,
            verification=VerificationSummary(passed=False, tests_run=10, tests_passed=7),
        )
        ok = DeploymentRecord(
            deployment_id="deploy-2",
            target="dev-sandbox",
            timestamp=T0 + timedelta(minutes=1),
            outcome=DeploymentOutcome.SUCCEEDED,
            stage=PipelineStage.RECORD,
        )
        await repo.append(failed)
        await repo.append(ok)

        assert [r.deployment_id for r in await repo.list()] == ["deploy-2", "deploy-1"]
        assert await repo.get_by_id("deploy-1") == failed
        assert (tmp_path / HISTORY_FILE).exists()
        assert await repo.list(target="test-sandbox") == []


class TestJsonSnapshotRepository:
    @pytest.mark.asyncio
    async def test_round_trip(self, tmp_path: Path) -> None:
        repo = JsonSnapshotRepository(tmp_path)
        snapshot = Snapshot(
            deployment_id="deploy-1",
            target="dev-sandbox",
            components=[
                SnapshotComponent(
                    name="A.cls", kind=ArtifactKind.SOURCE, existed=True, content="class A {}"
                ),
                SnapshotComponent(name="B.cls", kind=ArtifactKind.SOURCE, existed=False),
            ],
        )
        await repo.save(snapshot)
        assert await repo.get_by_id(snapshot.snapshot_id) == snapshot
        assert [s.snapshot_id for s in await repo.list("dev-sandbox")] == [snapshot.snapshot_id]
