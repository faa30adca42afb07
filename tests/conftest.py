"""Shared test fixtures."""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

from deployguard.config import (
    Environment,
    PipelineSettings,
    SafetySettings,
    SchedulerSettings,
    Settings,
)
from deployguard.domain.errors import ReviewerTimeoutError
from deployguard.domain.models.artifacts import ArtifactBundle, DeploymentRequest
from deployguard.domain.models.scheduling import DeploymentWindow, EnvironmentClass
from deployguard.domain.ports.services import ExternalReviewer, ReviewerResponse
from deployguard.domain.services.circuit_breaker import CircuitBreaker
from deployguard.domain.services.deployment_windows import DeploymentWindowPolicy
from deployguard.domain.services.pipeline import DeploymentPipeline
from deployguard.domain.services.quality_gate import QualityGate
from deployguard.domain.services.risk_scanner import RiskScanner
from deployguard.domain.services.snapshot_store import SnapshotStore
from deployguard.domain.services.target_validator import TargetValidator
from deployguard.infrastructure.locking.in_memory_lock import InMemoryDistributedLock
from deployguard.infrastructure.messaging.event_publisher import InMemoryEventPublisher
from deployguard.infrastructure.metadata.target_metadata import NamePatternMetadataSource
from deployguard.infrastructure.persistence.repositories.in_memory import (
    InMemoryDeploymentRecordRepository,
    InMemoryScheduledDeploymentRepository,
    InMemorySnapshotRepository,
)
from deployguard.infrastructure.remote.project_packager import SourceProjectPackager
from deployguard.infrastructure.remote.simulated import SimulatedRemoteDeployer


SAFE_CLASS = """public with sharing class AccountService {
    public static Integer total(List<Integer> values) {
        Integer sum = 0;
        for (Integer v : values) { sum += v; }
        return sum;
    }
}"""

PREVIOUS_CLASS = """public with sharing class AccountService {
    public static Integer total(List<Integer> values) {
        return 0;
    }
}"""

MUTATION_IN_LOOP_CLASS = """public with sharing class ContactUpdater {
    public static void run(List<Contact> contacts) {
        for (Contact c : contacts) {
            update c;
        }
    }
}"""


class FakeClock:
    """Monotonic clock the tests move by hand."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeReviewer(ExternalReviewer):
    """Returns a canned response, or raises, and remembers every prompt."""

    def __init__(
        self,
        stdout: str = "",
        exit_code: int = 0,
        stderr: str = "",
        error: Exception | None = None,
    ) -> None:
        self.stdout = stdout
        self.exit_code = exit_code
        self.stderr = stderr
        self.error = error
        self.prompts: list[str] = []

    async def invoke(self, prompt: str, timeout_seconds: float) -> ReviewerResponse:
        self.prompts.append(prompt)
        if self.error is not None:
            raise self.error
        return ReviewerResponse(exit_code=self.exit_code, stdout=self.stdout, stderr=self.stderr)


class TimingOutReviewer(FakeReviewer):
    def __init__(self) -> None:
        super().__init__(error=ReviewerTimeoutError("timed out"))


@pytest.fixture(autouse=True)
def clear_stores() -> None:
    """Clear in-memory stores before each test."""
    InMemoryDeploymentRecordRepository.clear()
    InMemoryScheduledDeploymentRepository.clear()
    InMemorySnapshotRepository.clear()


@pytest.fixture
def settings() -> Settings:
    return Settings(environment=Environment.TESTING, debug=True)


@pytest.fixture
def safety_settings() -> SafetySettings:
    return SafetySettings()


@pytest.fixture
def validator(safety_settings: SafetySettings) -> TargetValidator:
    return TargetValidator(safety_settings)


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def breaker(fake_clock: FakeClock) -> CircuitBreaker:
    return CircuitBreaker(threshold=3, reset_timeout_seconds=60.0, clock=fake_clock)


@pytest.fixture
def scanner() -> RiskScanner:
    return RiskScanner()


@pytest.fixture
def remote() -> SimulatedRemoteDeployer:
    return SimulatedRemoteDeployer()


@pytest.fixture
def packager(tmp_path: Path) -> SourceProjectPackager:
    return SourceProjectPackager(tmp_path / "work", api_version="60.0")


@pytest.fixture
def record_repo() -> InMemoryDeploymentRecordRepository:
    return InMemoryDeploymentRecordRepository()


@pytest.fixture
def snapshot_repo() -> InMemorySnapshotRepository:
    return InMemorySnapshotRepository()


@pytest.fixture
def scheduled_repo() -> InMemoryScheduledDeploymentRepository:
    return InMemoryScheduledDeploymentRepository()


@pytest.fixture
def snapshot_store(
    remote: SimulatedRemoteDeployer,
    packager: SourceProjectPackager,
    snapshot_repo: InMemorySnapshotRepository,
) -> SnapshotStore:
    return SnapshotStore(remote, packager, snapshot_repo)


@pytest.fixture
def lock_service() -> InMemoryDistributedLock:
    return InMemoryDistributedLock()


@pytest.fixture
def event_publisher() -> InMemoryEventPublisher:
    return InMemoryEventPublisher()


@pytest.fixture
def open_windows() -> DeploymentWindowPolicy:
    """Every environment class may deploy at any time."""
    always = DeploymentWindow(days=list(range(7)), start_hour=0, end_hour=24)
    return DeploymentWindowPolicy(
        {env_class: always for env_class in EnvironmentClass},
        NamePatternMetadataSource(),
    )


@pytest.fixture
def reviewer() -> FakeReviewer:
    return FakeReviewer(
        stdout='```json\n{"approved": true, "reason": "Looks good", "changes": [], "finalCode": null}\n```'
    )


@pytest.fixture
def make_pipeline(
    validator: TargetValidator,
    breaker: CircuitBreaker,
    scanner: RiskScanner,
    snapshot_store: SnapshotStore,
    packager: SourceProjectPackager,
    remote: SimulatedRemoteDeployer,
    record_repo: InMemoryDeploymentRecordRepository,
    open_windows: DeploymentWindowPolicy,
    lock_service: InMemoryDistributedLock,
) -> Callable[..., DeploymentPipeline]:
    """Build a pipeline from the shared fakes; keyword overrides replace parts."""

    def _make(**overrides: Any) -> DeploymentPipeline:
        parts: dict[str, Any] = {
            "validator": validator,
            "breaker": breaker,
            "scanner": scanner,
            "snapshots": snapshot_store,
            "packager": packager,
            "remote": remote,
            "records": record_repo,
            "windows": open_windows,
            "lock_service": lock_service,
            "settings": PipelineSettings(push_timeout_seconds=5, verify_timeout_seconds=5),
            "quality_gate": None,
            "batch_delay_seconds": 0,
        }
        parts.update(overrides)
        return DeploymentPipeline(**parts)

    return _make


@pytest.fixture
def pipeline(make_pipeline: Callable[..., DeploymentPipeline]) -> DeploymentPipeline:
    return make_pipeline()


@pytest.fixture
def gated_pipeline(
    make_pipeline: Callable[..., DeploymentPipeline], reviewer: FakeReviewer
) -> DeploymentPipeline:
    return make_pipeline(quality_gate=QualityGate(reviewer, timeout_seconds=5, batch_delay_seconds=0))


@pytest.fixture
def scheduler_settings() -> SchedulerSettings:
    return SchedulerSettings(
        retry_delay_seconds=0.05,
        default_max_retries=2,
        reminder_lead_seconds=0,
    )


@pytest.fixture
def safe_bundle() -> ArtifactBundle:
    return ArtifactBundle(sources={"AccountService.cls": SAFE_CLASS})


@pytest.fixture
def safe_request(safe_bundle: ArtifactBundle) -> DeploymentRequest:
    return DeploymentRequest(artifacts=safe_bundle, target="dev-sandbox", requested_by="alice")
