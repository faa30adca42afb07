"""Repository implementations."""

from deployguard.infrastructure.persistence.repositories.in_memory import (
    InMemoryDeploymentRecordRepository,
    InMemoryScheduledDeploymentRepository,
    InMemorySnapshotRepository,
)
from deployguard.infrastructure.persistence.repositories.json_repo import (
    JsonDeploymentRecordRepository,
    JsonScheduledDeploymentRepository,
    JsonSnapshotRepository,
)
from deployguard.infrastructure.persistence.repositories.record_repo import (
    SqlDeploymentRecordRepository,
)
from deployguard.infrastructure.persistence.repositories.scheduled_repo import (
    SqlScheduledDeploymentRepository,
)
from deployguard.infrastructure.persistence.repositories.snapshot_repo import (
    SqlSnapshotRepository,
)


__all__ = [
    "InMemoryDeploymentRecordRepository",
    "InMemoryScheduledDeploymentRepository",
    "InMemorySnapshotRepository",
    "JsonDeploymentRecordRepository",
    "JsonScheduledDeploymentRepository",
    "JsonSnapshotRepository",
    "SqlDeploymentRecordRepository",
    "SqlScheduledDeploymentRepository",
    "SqlSnapshotRepository",
]
