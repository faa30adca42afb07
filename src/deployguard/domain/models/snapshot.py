"""Point-in-time backups of a target's affected components."""

from __future__ import annotations

from datetime import datetime

from pydantic import Field

from deployguard.domain.models.artifacts import ArtifactKind
from deployguard.domain.models.base import generate_id, utc_now, ValueObject


class SnapshotComponent(ValueObject):
    """Prior state of one component. ``existed=False`` means the deploy creates it."""

    name: str
    kind: ArtifactKind
    existed: bool
    content: str | None = None


class Snapshot(ValueObject):
    """Never mutated after creation; the unit of rollback."""

    snapshot_id: str = Field(default_factory=lambda: generate_id("snapshot"))
    deployment_id: str
    target: str
    components: list[SnapshotComponent] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utc_now)

    @property
    def existing(self) -> list[SnapshotComponent]:
        return [c for c in self.components if c.existed]

    @property
    def created(self) -> list[SnapshotComponent]:
        return [c for c in self.components if not c.existed]


class SnapshotSummary(ValueObject):
    snapshot_id: str
    deployment_id: str
    target: str
    created_at: datetime
    component_count: int

    @classmethod
    def of(cls, snapshot: Snapshot) -> SnapshotSummary:
        return cls(
            snapshot_id=snapshot.snapshot_id,
            deployment_id=snapshot.deployment_id,
            target=snapshot.target,
            created_at=snapshot.created_at,
            component_count=len(snapshot.components),
        )
