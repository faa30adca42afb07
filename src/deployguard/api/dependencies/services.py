"""Service dependencies for FastAPI dependency injection."""

from __future__ import annotations

import structlog

from deployguard.config import get_settings, Settings, StorageBackend
from deployguard.domain.ports.repositories import (
    DeploymentRecordRepository,
    ScheduledDeploymentRepository,
    SnapshotRepository,
)
from deployguard.domain.ports.services import (
    ArtifactPackager,
    DistributedLock,
    EventPublisher,
    RemoteDeployer,
)
from deployguard.domain.services.circuit_breaker import CircuitBreaker
from deployguard.domain.services.deployment_service import DeploymentService
from deployguard.domain.services.deployment_windows import DeploymentWindowPolicy
from deployguard.domain.services.pipeline import DeploymentPipeline
from deployguard.domain.services.quality_gate import QualityGate
from deployguard.domain.services.risk_scanner import RiskScanner
from deployguard.domain.services.snapshot_store import SnapshotStore
from deployguard.domain.services.target_validator import TargetValidator
from deployguard.infrastructure.locking.in_memory_lock import InMemoryDistributedLock
from deployguard.infrastructure.locking.redis_lock import create_redis_client, RedisDistributedLock
from deployguard.infrastructure.messaging.event_publisher import (
    InMemoryEventPublisher,
    log_notification,
)
from deployguard.infrastructure.metadata.target_metadata import NamePatternMetadataSource
from deployguard.infrastructure.persistence.database import DatabaseManager
from deployguard.infrastructure.persistence.repositories import (
    InMemoryDeploymentRecordRepository,
    InMemoryScheduledDeploymentRepository,
    InMemorySnapshotRepository,
    JsonDeploymentRecordRepository,
    JsonScheduledDeploymentRepository,
    JsonSnapshotRepository,
    SqlDeploymentRecordRepository,
    SqlScheduledDeploymentRepository,
    SqlSnapshotRepository,
)
from deployguard.infrastructure.remote.project_packager import SourceProjectPackager
from deployguard.infrastructure.remote.sf_cli import SalesforceCliDeployer
from deployguard.infrastructure.remote.simulated import SimulatedRemoteDeployer
from deployguard.infrastructure.reviewer.cli_reviewer import SubprocessReviewer
from deployguard.workers.scheduler import DeploymentScheduler


logger = structlog.get_logger(__name__)


class ServiceContainer:
    """Simple dependency injection container.

    Composition root: picks adapters from settings and wires one pipeline,
    one scheduler and one circuit breaker for the whole process.
    """

    _instance: ServiceContainer | None = None

    def __init__(self, settings: Settings | None = None) -> None:
        self._settings = settings or get_settings()
        s = self._settings

        self._database: DatabaseManager | None = None
        self._records, self._scheduled, self._snapshots_repo = self._build_repositories()

        self._event_publisher = InMemoryEventPublisher()
        self._event_publisher.subscribe("notification.*", log_notification)
        self._lock_service = self._build_lock()
        self._remote: RemoteDeployer = (
            SimulatedRemoteDeployer()
            if s.remote.simulated
            else SalesforceCliDeployer(s.remote.cli_binary, s.remote.test_wait_minutes)
        )
        self._packager: ArtifactPackager = SourceProjectPackager(
            s.pipeline.work_dir, s.remote.api_version
        )

        self._windows = DeploymentWindowPolicy(
            s.windows.as_mapping(), NamePatternMetadataSource(), s.windows.timezone
        )
        self._breaker = CircuitBreaker(
            threshold=s.circuit_breaker.threshold,
            reset_timeout_seconds=s.circuit_breaker.reset_timeout_seconds,
        )
        quality_gate = None
        if s.quality_gate.enabled:
            quality_gate = QualityGate(
                SubprocessReviewer(s.quality_gate.command),
                timeout_seconds=s.quality_gate.timeout_seconds,
                batch_delay_seconds=s.quality_gate.batch_delay_seconds,
            )

        self._pipeline = DeploymentPipeline(
            validator=TargetValidator(s.safety),
            breaker=self._breaker,
            scanner=RiskScanner(),
            snapshots=SnapshotStore(
                self._remote,
                self._packager,
                self._snapshots_repo,
                push_timeout_seconds=s.pipeline.push_timeout_seconds,
                remote_timeout_seconds=s.pipeline.remote_timeout_seconds,
            ),
            packager=self._packager,
            remote=self._remote,
            records=self._records,
            windows=self._windows,
            lock_service=self._lock_service,
            settings=s.pipeline,
            quality_gate=quality_gate,
            batch_delay_seconds=s.quality_gate.batch_delay_seconds,
        )
        self._scheduler = DeploymentScheduler(
            pipeline=self._pipeline,
            repository=self._scheduled,
            windows=self._windows,
            event_publisher=self._event_publisher,
            settings=s.scheduler,
            max_concurrent=s.pipeline.max_concurrent_deployments,
        )
        self._deployment_service = DeploymentService(self._pipeline, self._scheduler)

    @classmethod
    def get_instance(cls) -> ServiceContainer:
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    @classmethod
    def reset(cls) -> None:
        cls._instance = None

    def _build_repositories(
        self,
    ) -> tuple[DeploymentRecordRepository, ScheduledDeploymentRepository, SnapshotRepository]:
        storage = self._settings.storage
        if storage.backend == StorageBackend.POSTGRES:
            self._database = DatabaseManager(self._settings.database)
            return (
                SqlDeploymentRecordRepository(self._database),
                SqlScheduledDeploymentRepository(self._database),
                SqlSnapshotRepository(self._database),
            )
        if storage.backend == StorageBackend.JSON:
            return (
                JsonDeploymentRecordRepository(storage.data_dir),
                JsonScheduledDeploymentRepository(storage.data_dir),
                JsonSnapshotRepository(storage.data_dir),
            )
        return (
            InMemoryDeploymentRecordRepository(),
            InMemoryScheduledDeploymentRepository(),
            InMemorySnapshotRepository(),
        )

    def _build_lock(self) -> DistributedLock:
        if self._settings.redis.enabled:
            return RedisDistributedLock(create_redis_client(self._settings.redis))
        return InMemoryDistributedLock()

    async def startup(self) -> None:
        """Open storage and re-arm persisted schedules."""
        if self._database is not None:
            await self._database.initialize()
        report = await self._scheduler.recover()
        logger.info(
            "services_started",
            storage=self._settings.storage.backend.value,
            remote="simulated" if self._settings.remote.simulated else self._settings.remote.cli_binary,
            rearmed=len(report.rearmed),
            missed=len(report.missed),
        )

    async def shutdown(self) -> None:
        await self._scheduler.shutdown(wait=True)
        if self._database is not None:
            await self._database.close()

    @property
    def settings(self) -> Settings:
        return self._settings

    @property
    def database(self) -> DatabaseManager | None:
        return self._database

    @property
    def event_publisher(self) -> EventPublisher:
        return self._event_publisher

    @property
    def lock_service(self) -> DistributedLock:
        return self._lock_service

    @property
    def remote(self) -> RemoteDeployer:
        return self._remote

    @property
    def windows(self) -> DeploymentWindowPolicy:
        return self._windows

    @property
    def pipeline(self) -> DeploymentPipeline:
        return self._pipeline

    @property
    def scheduler(self) -> DeploymentScheduler:
        return self._scheduler

    @property
    def deployment_service(self) -> DeploymentService:
        return self._deployment_service


def get_service_container() -> ServiceContainer:
    return ServiceContainer.get_instance()


def get_deployment_service() -> DeploymentService:
    return ServiceContainer.get_instance().deployment_service
