"""Snapshot capture and restore: the unit of rollback."""

from __future__ import annotations

import asyncio

import structlog

from deployguard.domain.errors import SnapshotFailedError, SnapshotNotFoundError
from deployguard.domain.models.artifacts import ArtifactBundle, ArtifactKind
from deployguard.domain.models.deployment import RollbackResult
from deployguard.domain.models.snapshot import Snapshot, SnapshotComponent, SnapshotSummary
from deployguard.domain.ports.repositories import SnapshotRepository
from deployguard.domain.ports.services import ArtifactPackager, RemoteDeployer


logger = structlog.get_logger(__name__)


class SnapshotStore:
    """Captures the prior state of the components a deployment touches.

    Components that already exist on the target are restored on rollback;
    components the deployment creates are deleted. Every remote call is
    bounded; a timeout counts as a failure of that call.
    """

    def __init__(
        self,
        remote: RemoteDeployer,
        packager: ArtifactPackager,
        repository: SnapshotRepository,
        *,
        push_timeout_seconds: float = 600.0,
        remote_timeout_seconds: float = 300.0,
    ) -> None:
        self._remote = remote
        self._packager = packager
        self._repository = repository
        self._push_timeout = push_timeout_seconds
        self._remote_timeout = remote_timeout_seconds

    async def capture(
        self, deployment_id: str, artifacts: ArtifactBundle, target: str
    ) -> Snapshot:
        """Record the current state of every artifact's component on ``target``."""
        wanted = [(artifact.name, artifact.kind) for artifact in artifacts.iter_artifacts()]
        try:
            current = await asyncio.wait_for(
                self._remote.retrieve(wanted, target), timeout=self._remote_timeout
            )
        except asyncio.TimeoutError as e:
            logger.error("snapshot_capture_timed_out", deployment_id=deployment_id)
            raise SnapshotFailedError(
                f"Snapshot capture timed out after {self._remote_timeout:g}s"
            ) from e
        except Exception as e:
            logger.error("snapshot_capture_failed", deployment_id=deployment_id, error=str(e))
            raise SnapshotFailedError(f"Could not capture snapshot: {e}") from e

        components = [
            SnapshotComponent(
                name=name,
                kind=kind,
                existed=current.get(name) is not None,
                content=current.get(name),
            )
            for name, kind in wanted
        ]
        snapshot = Snapshot(deployment_id=deployment_id, target=target, components=components)
        try:
            await self._repository.save(snapshot)
        except Exception as e:
            logger.error("snapshot_persist_failed", deployment_id=deployment_id, error=str(e))
            raise SnapshotFailedError(f"Could not persist snapshot: {e}") from e

        logger.info(
            "snapshot_created",
            snapshot_id=snapshot.snapshot_id,
            deployment_id=deployment_id,
            target=target,
            existing=len(snapshot.existing),
            created=len(snapshot.created),
        )
        return snapshot

    async def get(self, snapshot_id: str) -> Snapshot:
        snapshot = await self._repository.get_by_id(snapshot_id)
        if snapshot is None:
            raise SnapshotNotFoundError(f"Snapshot not found: {snapshot_id}")
        return snapshot

    async def restore(self, snapshot_id: str, target: str) -> RollbackResult:
        """Put ``target`` back into the state recorded by the snapshot.

        Raises :class:`SnapshotNotFoundError` for unknown ids; every other
        failure is reported through ``RollbackResult.success``.
        """
        snapshot = await self.get(snapshot_id)
        logger.info("rollback_started", snapshot_id=snapshot_id, target=target)

        if snapshot.target != target:
            error = f"Snapshot was for target {snapshot.target}, not {target}"
            logger.error("rollback_target_mismatch", snapshot_id=snapshot_id, target=target)
            return RollbackResult(snapshot_id=snapshot_id, target=target, success=False, error=error)

        restored: list[str] = []
        deleted: list[str] = []
        failed: list[str] = []
        errors: list[str] = []

        existing = snapshot.existing
        if existing:
            bundle = ArtifactBundle(
                sources={
                    c.name: c.content or ""
                    for c in existing if c.kind == ArtifactKind.SOURCE
                },
                metadata={
                    c.name: c.content or ""
                    for c in existing if c.kind == ArtifactKind.METADATA
                },
            )
            names = [c.name for c in existing]
            try:
                package = await self._packager.package(bundle, f"rollback-{snapshot_id}")
                try:
                    push = await asyncio.wait_for(
                        self._remote.push(package, target), timeout=self._push_timeout
                    )
                finally:
                    await self._packager.discard(package)
                if push.success:
                    restored.extend(names)
                else:
                    failed.extend(names)
                    errors.append(push.message or "Rollback deployment failed")
            except asyncio.TimeoutError:
                failed.extend(names)
                errors.append(f"Rollback push timed out after {self._push_timeout:g}s")
            except Exception as e:
                failed.extend(names)
                errors.append(f"Rollback deployment failed: {e}")

        created = [c.name for c in snapshot.created]
        if created:
            try:
                not_removed = await asyncio.wait_for(
                    self._remote.delete(created, target), timeout=self._remote_timeout
                )
                deleted.extend(name for name in created if name not in not_removed)
                failed.extend(not_removed)
                if not_removed:
                    errors.append(f"Could not delete {', '.join(not_removed)}")
            except asyncio.TimeoutError:
                failed.extend(created)
                errors.append(
                    f"Deleting created components timed out after {self._remote_timeout:g}s"
                )
            except Exception as e:
                failed.extend(created)
                errors.append(f"Deleting created components failed: {e}")

        result = RollbackResult(
            snapshot_id=snapshot_id,
            target=target,
            success=not failed,
            restored=restored,
            deleted=deleted,
            failed=failed,
            error="; ".join(errors),
        )
        log = logger.info if result.success else logger.error
        log(
            "rollback_completed",
            snapshot_id=snapshot_id,
            success=result.success,
            restored=len(restored),
            deleted=len(deleted),
            failed=len(failed),
        )
        return result

    async def list(self, target: str | None = None) -> list[SnapshotSummary]:
        """Snapshot summaries, newest first."""
        snapshots = await self._repository.list(target)
        return [SnapshotSummary.of(s) for s in snapshots]

    async def latest(self, target: str) -> Snapshot | None:
        snapshots = await self._repository.list(target)
        return snapshots[0] if snapshots else None
