"""Unit tests for the deployment scheduler."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Callable
from datetime import datetime, timedelta
from typing import Any

import pytest
import pytest_asyncio

from deployguard.config import SchedulerSettings
from deployguard.domain.errors import (
    InvalidScheduleTransitionError,
    ScheduledDeploymentNotFoundError,
    SchedulingError,
)
from deployguard.domain.models.artifacts import (
    ArtifactBundle,
    DeploymentOptions,
    DeploymentRequest,
)
from deployguard.domain.models.base import utc_now
from deployguard.domain.models.deployment import DeploymentOutcome
from deployguard.domain.models.scheduling import (
    DeploymentWindow,
    EnvironmentClass,
    NotificationFlags,
    RetryPolicy,
    ScheduledDeployment,
    ScheduledStatus,
)
from deployguard.domain.services.deployment_windows import DeploymentWindowPolicy
from deployguard.domain.services.pipeline import DeploymentPipeline
from deployguard.infrastructure.messaging.event_publisher import InMemoryEventPublisher
from deployguard.infrastructure.metadata.target_metadata import NamePatternMetadataSource
from deployguard.infrastructure.persistence.repositories.in_memory import (
    InMemoryDeploymentRecordRepository,
    InMemoryScheduledDeploymentRepository,
)
from deployguard.infrastructure.remote.simulated import SimulatedRemoteDeployer
from deployguard.workers.scheduler import DeploymentScheduler

from conftest import MUTATION_IN_LOOP_CLASS


MakeScheduler = Callable[..., DeploymentScheduler]


def _soon(seconds: float = 0.05) -> datetime:
    return utc_now() + timedelta(seconds=seconds)


async def _wait_until(predicate: Callable[[], bool], timeout: float = 3.0) -> None:
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.01)


@pytest_asyncio.fixture
async def make_scheduler(
    pipeline: DeploymentPipeline,
    scheduled_repo: InMemoryScheduledDeploymentRepository,
    open_windows: DeploymentWindowPolicy,
    event_publisher: InMemoryEventPublisher,
    scheduler_settings: SchedulerSettings,
) -> AsyncIterator[MakeScheduler]:
    created: list[DeploymentScheduler] = []

    def _make(**overrides: Any) -> DeploymentScheduler:
        parts: dict[str, Any] = {
            "pipeline": pipeline,
            "repository": scheduled_repo,
            "windows": open_windows,
            "event_publisher": event_publisher,
            "settings": scheduler_settings,
        }
        parts.update(overrides)
        scheduler = DeploymentScheduler(**parts)
        created.append(scheduler)
        return scheduler

    yield _make
    for scheduler in created:
        await scheduler.shutdown()


@pytest.fixture
def scheduler(make_scheduler: MakeScheduler) -> DeploymentScheduler:
    return make_scheduler()


class TestSchedule:
    @pytest.mark.asyncio
    async def test_rejects_past_time(
        self, scheduler: DeploymentScheduler, safe_request: DeploymentRequest
    ) -> None:
        with pytest.raises(SchedulingError, match="must be in the future"):
            await scheduler.schedule(safe_request, utc_now() - timedelta(minutes=1))
        assert scheduler.pending_timer_count == 0

    @pytest.mark.asyncio
    async def test_rejects_time_outside_window(
        self, make_scheduler: MakeScheduler, safe_request: DeploymentRequest
    ) -> None:
        closed = DeploymentWindowPolicy(
            {EnvironmentClass.DEVELOPMENT: DeploymentWindow(days=[])},
            NamePatternMetadataSource(),
        )
        scheduler = make_scheduler(windows=closed)
        with pytest.raises(SchedulingError, match="outside deployment window for dev-sandbox"):
            await scheduler.schedule(safe_request, _soon(3600))
        assert scheduler.pending_timer_count == 0

        forced = safe_request.model_copy(
            update={"options": DeploymentOptions(force_outside_window=True)}
        )
        scheduled = await scheduler.schedule(forced, _soon(3600))
        assert scheduled.status == ScheduledStatus.SCHEDULED

    @pytest.mark.asyncio
    async def test_persists_and_arms_timer(
        self,
        scheduler: DeploymentScheduler,
        scheduled_repo: InMemoryScheduledDeploymentRepository,
        event_publisher: InMemoryEventPublisher,
        safe_request: DeploymentRequest,
    ) -> None:
        scheduled = await scheduler.schedule(safe_request, _soon(3600))

        assert scheduler.has_timer(scheduled.id)
        stored = await scheduled_repo.get_by_id(scheduled.id)
        assert stored is not None
        assert stored.status == ScheduledStatus.SCHEDULED
        assert stored.retry_policy.max_retries == 2
        assert event_publisher.events_of("deployment.scheduled")[0]["scheduled_id"] == scheduled.id

    @pytest.mark.asyncio
    async def test_explicit_retry_policy(
        self, scheduler: DeploymentScheduler, safe_request: DeploymentRequest
    ) -> None:
        scheduled = await scheduler.schedule(
            safe_request, _soon(3600), retry_policy=RetryPolicy(max_retries=7)
        )
        assert scheduled.retry_policy.max_retries == 7


class TestExecution:
    @pytest.mark.asyncio
    async def test_fires_and_completes(
        self,
        scheduler: DeploymentScheduler,
        record_repo: InMemoryDeploymentRecordRepository,
        event_publisher: InMemoryEventPublisher,
        safe_request: DeploymentRequest,
    ) -> None:
        scheduled = await scheduler.schedule(safe_request, _soon())

        await _wait_until(lambda: scheduled.status == ScheduledStatus.COMPLETED)

        assert scheduled.completed_at is not None
        assert scheduled.last_outcome == DeploymentOutcome.SUCCEEDED
        assert not scheduler.has_timer(scheduled.id)
        record = await record_repo.get_by_id(scheduled.last_deployment_id or "")
        assert record is not None
        assert record.scheduled_id == scheduled.id

        kinds = [kind for kind, _ in event_publisher.published_events]
        assert kinds.index("deployment.started") < kinds.index("deployment.completed")
        notice = event_publisher.events_of("notification.deployment_complete")[0]
        assert notice["success"] is True
        assert notice["deployment_id"] == scheduled.last_deployment_id

    @pytest.mark.asyncio
    async def test_retries_transient_failure(
        self,
        scheduler: DeploymentScheduler,
        remote: SimulatedRemoteDeployer,
        event_publisher: InMemoryEventPublisher,
        safe_request: DeploymentRequest,
    ) -> None:
        remote.fail_verification = True

        async def heal(payload: dict[str, Any]) -> None:
            remote.fail_verification = False

        event_publisher.subscribe("deployment.retry_scheduled", heal)
        scheduled = await scheduler.schedule(safe_request, _soon())

        await _wait_until(lambda: scheduled.status == ScheduledStatus.COMPLETED)

        assert scheduled.retry_policy.retry_count == 1
        assert len(scheduled.attempt_deployment_ids) == 2
        assert len(event_publisher.events_of("deployment.retry_scheduled")) == 1

    @pytest.mark.asyncio
    async def test_fails_when_retries_exhausted(
        self,
        scheduler: DeploymentScheduler,
        remote: SimulatedRemoteDeployer,
        event_publisher: InMemoryEventPublisher,
        safe_request: DeploymentRequest,
    ) -> None:
        remote.fail_verification = True
        scheduled = await scheduler.schedule(safe_request, _soon())

        await _wait_until(lambda: scheduled.status == ScheduledStatus.FAILED)

        assert scheduled.retry_policy.retry_count == 2
        assert len(scheduled.attempt_deployment_ids) == 3
        assert scheduled.last_outcome == DeploymentOutcome.ROLLED_BACK
        assert "7/10 passed" in scheduled.last_error
        failed = event_publisher.events_of("deployment.failed")[0]
        assert failed["outcome"] == "rolled_back"
        notice = event_publisher.events_of("notification.deployment_complete")[-1]
        assert notice["success"] is False

    @pytest.mark.asyncio
    async def test_non_retryable_failure_is_final(
        self, scheduler: DeploymentScheduler
    ) -> None:
        request = DeploymentRequest(
            artifacts=ArtifactBundle(sources={"ContactUpdater.cls": MUTATION_IN_LOOP_CLASS}),
            target="dev-sandbox",
        )
        scheduled = await scheduler.schedule(request, _soon())

        await _wait_until(lambda: scheduled.status == ScheduledStatus.FAILED)

        assert scheduled.retry_policy.retry_count == 0
        assert len(scheduled.attempt_deployment_ids) == 1

    @pytest.mark.asyncio
    async def test_retry_disabled(
        self,
        scheduler: DeploymentScheduler,
        remote: SimulatedRemoteDeployer,
        safe_request: DeploymentRequest,
    ) -> None:
        remote.fail_push = True
        scheduled = await scheduler.schedule(
            safe_request, _soon(), retry_policy=RetryPolicy(enabled=False)
        )
        await _wait_until(lambda: scheduled.status == ScheduledStatus.FAILED)
        assert len(scheduled.attempt_deployment_ids) == 1

    @pytest.mark.asyncio
    async def test_no_notification_when_disabled(
        self,
        scheduler: DeploymentScheduler,
        event_publisher: InMemoryEventPublisher,
        safe_request: DeploymentRequest,
    ) -> None:
        scheduled = await scheduler.schedule(
            safe_request, _soon(), notifications=NotificationFlags(notify_after=False)
        )
        await _wait_until(lambda: scheduled.status == ScheduledStatus.COMPLETED)
        assert event_publisher.events_of("notification.deployment_complete") == []


class TestCancel:
    @pytest.mark.asyncio
    async def test_cancel_pending(
        self,
        scheduler: DeploymentScheduler,
        scheduled_repo: InMemoryScheduledDeploymentRepository,
        safe_request: DeploymentRequest,
    ) -> None:
        scheduled = await scheduler.schedule(safe_request, _soon(3600))

        cancelled = await scheduler.cancel(scheduled.id)

        assert cancelled.status == ScheduledStatus.CANCELLED
        assert not scheduler.has_timer(scheduled.id)
        stored = await scheduled_repo.get_by_id(scheduled.id)
        assert stored is not None and stored.status == ScheduledStatus.CANCELLED

    @pytest.mark.asyncio
    async def test_cancel_twice(
        self, scheduler: DeploymentScheduler, safe_request: DeploymentRequest
    ) -> None:
        scheduled = await scheduler.schedule(safe_request, _soon(3600))
        await scheduler.cancel(scheduled.id)
        with pytest.raises(InvalidScheduleTransitionError, match="not in scheduled state"):
            await scheduler.cancel(scheduled.id)

    @pytest.mark.asyncio
    async def test_cancel_unknown(self, scheduler: DeploymentScheduler) -> None:
        with pytest.raises(ScheduledDeploymentNotFoundError):
            await scheduler.cancel("scheduled-missing")

    @pytest.mark.asyncio
    async def test_cancel_rejected_once_executing(
        self,
        scheduler: DeploymentScheduler,
        event_publisher: InMemoryEventPublisher,
        safe_request: DeploymentRequest,
    ) -> None:
        errors: list[Exception] = []

        async def try_cancel(payload: dict[str, Any]) -> None:
            try:
                await scheduler.cancel(payload["scheduled_id"])
            except InvalidScheduleTransitionError as e:
                errors.append(e)

        event_publisher.subscribe("deployment.started", try_cancel)
        scheduled = await scheduler.schedule(safe_request, _soon())

        await _wait_until(lambda: scheduled.status == ScheduledStatus.COMPLETED)
        assert len(errors) == 1
        assert "current status: executing" in str(errors[0])

    @pytest.mark.asyncio
    async def test_cancelled_never_fires(
        self,
        scheduler: DeploymentScheduler,
        remote: SimulatedRemoteDeployer,
        safe_request: DeploymentRequest,
    ) -> None:
        scheduled = await scheduler.schedule(safe_request, _soon(0.05))
        await scheduler.cancel(scheduled.id)
        await asyncio.sleep(0.15)
        assert remote.calls == []
        assert scheduled.status == ScheduledStatus.CANCELLED


class TestQueries:
    @pytest.mark.asyncio
    async def test_list_filters(
        self, scheduler: DeploymentScheduler, safe_request: DeploymentRequest
    ) -> None:
        first = await scheduler.schedule(safe_request, _soon(7200))
        other = DeploymentRequest(
            artifacts=safe_request.artifacts, target="test-sandbox", requested_by="bob"
        )
        second = await scheduler.schedule(other, _soon(3600))
        await scheduler.cancel(first.id)

        assert [d.id for d in await scheduler.list()] == [second.id, first.id]
        assert [d.id for d in await scheduler.list(status=ScheduledStatus.CANCELLED)] == [first.id]
        assert [d.id for d in await scheduler.list(target="test-sandbox")] == [second.id]
        assert [d.id for d in await scheduler.list(requested_by="alice")] == [first.id]
        assert (await scheduler.get(second.id)).target == "test-sandbox"

    @pytest.mark.asyncio
    async def test_statistics(
        self, scheduler: DeploymentScheduler, safe_request: DeploymentRequest
    ) -> None:
        done = await scheduler.schedule(safe_request, _soon())
        await scheduler.schedule(safe_request, _soon(3600))
        await _wait_until(lambda: done.status == ScheduledStatus.COMPLETED)

        stats = await scheduler.statistics()

        assert stats.total == 2
        assert stats.by_status == {"completed": 1, "scheduled": 1}
        assert stats.upcoming_count == 1
        assert stats.completed_today == 1
        assert stats.failed_today == 0

    @pytest.mark.asyncio
    async def test_cleanup_removes_old_terminal_entries(
        self,
        scheduler: DeploymentScheduler,
        make_scheduler: MakeScheduler,
        scheduled_repo: InMemoryScheduledDeploymentRepository,
        safe_request: DeploymentRequest,
    ) -> None:
        old = await scheduler.schedule(safe_request, _soon(3600))
        await scheduler.cancel(old.id)
        pending = await scheduler.schedule(safe_request, _soon(3600))

        assert await scheduler.cleanup(older_than_days=30) == 0

        later = make_scheduler(clock=lambda: utc_now() + timedelta(days=40))
        assert await later.cleanup(older_than_days=30) == 1
        assert await scheduled_repo.get_by_id(old.id) is None
        assert await scheduled_repo.get_by_id(pending.id) is not None

    @pytest.mark.asyncio
    async def test_statistics_and_cleanup_follow_scheduler_clock(
        self, make_scheduler: MakeScheduler, safe_request: DeploymentRequest
    ) -> None:
        offset = timedelta(days=3)
        scheduler = make_scheduler(clock=lambda: utc_now() + offset)
        done = await scheduler.schedule(safe_request, utc_now() + offset + timedelta(seconds=0.05))
        cancelled = await scheduler.schedule(safe_request, utc_now() + offset + timedelta(hours=1))
        await scheduler.cancel(cancelled.id)
        await _wait_until(lambda: done.status == ScheduledStatus.COMPLETED)

        assert done.completed_at is not None
        assert done.completed_at.date() == (utc_now() + offset).date()
        assert cancelled.cancelled_at is not None
        assert cancelled.cancelled_at > utc_now() + timedelta(days=2)
        assert (await scheduler.statistics()).completed_today == 1
        assert await scheduler.cleanup(older_than_days=1) == 0

    @pytest.mark.asyncio
    async def test_window_queries(
        self, scheduler: DeploymentScheduler
    ) -> None:
        assert scheduler.is_within_window(utc_now(), "dev-sandbox").allowed is True
        assert scheduler.next_window("dev-sandbox").available is True


class TestReminders:
    @pytest.mark.asyncio
    async def test_reminder_before_execution(
        self,
        make_scheduler: MakeScheduler,
        event_publisher: InMemoryEventPublisher,
        safe_request: DeploymentRequest,
    ) -> None:
        scheduler = make_scheduler(
            settings=SchedulerSettings(reminder_lead_seconds=0.2, retry_delay_seconds=0.05)
        )
        scheduled = await scheduler.schedule(safe_request, _soon(0.3))

        await _wait_until(lambda: scheduled.status == ScheduledStatus.COMPLETED)

        reminders = event_publisher.events_of("deployment.reminder")
        assert len(reminders) == 1
        assert reminders[0]["scheduled_id"] == scheduled.id
        assert event_publisher.events_of("notification.deployment_reminder")
        kinds = [kind for kind, _ in event_publisher.published_events]
        assert kinds.index("deployment.reminder") < kinds.index("deployment.started")

    @pytest.mark.asyncio
    async def test_no_reminder_when_disabled(
        self,
        make_scheduler: MakeScheduler,
        event_publisher: InMemoryEventPublisher,
        safe_request: DeploymentRequest,
    ) -> None:
        scheduler = make_scheduler(settings=SchedulerSettings(reminder_lead_seconds=0.2))
        scheduled = await scheduler.schedule(
            safe_request, _soon(0.3), notifications=NotificationFlags(notify_before=False)
        )
        await _wait_until(lambda: scheduled.status == ScheduledStatus.COMPLETED)
        assert event_publisher.events_of("deployment.reminder") == []


class TestRecovery:
    @staticmethod
    async def _store(
        repo: InMemoryScheduledDeploymentRepository,
        request: DeploymentRequest,
        when: datetime,
        status: ScheduledStatus = ScheduledStatus.SCHEDULED,
        retry_policy: RetryPolicy | None = None,
        next_attempt_at: datetime | None = None,
    ) -> ScheduledDeployment:
        scheduled = ScheduledDeployment(
            request=request,
            scheduled_time=when,
            status=status,
            retry_policy=retry_policy or RetryPolicy(max_retries=2),
            next_attempt_at=next_attempt_at,
        )
        await repo.save(scheduled)
        return scheduled

    @pytest.mark.asyncio
    async def test_rearms_future_and_marks_missed(
        self,
        scheduler: DeploymentScheduler,
        scheduled_repo: InMemoryScheduledDeploymentRepository,
        safe_request: DeploymentRequest,
    ) -> None:
        future = await self._store(scheduled_repo, safe_request, _soon(3600))
        past = await self._store(scheduled_repo, safe_request, utc_now() - timedelta(hours=1))
        done = await self._store(
            scheduled_repo, safe_request, utc_now() - timedelta(hours=2),
            status=ScheduledStatus.COMPLETED,
        )

        report = await scheduler.recover()

        assert report.rearmed == [future.id]
        assert report.missed == [past.id]
        assert scheduler.has_timer(future.id)
        assert not scheduler.has_timer(done.id)
        stored = await scheduled_repo.get_by_id(past.id)
        assert stored is not None and stored.status == ScheduledStatus.MISSED

    @pytest.mark.asyncio
    async def test_interrupted_execution(
        self,
        scheduler: DeploymentScheduler,
        scheduled_repo: InMemoryScheduledDeploymentRepository,
        safe_request: DeploymentRequest,
    ) -> None:
        retryable = await self._store(
            scheduled_repo, safe_request, utc_now() - timedelta(minutes=1),
            status=ScheduledStatus.EXECUTING,
        )
        exhausted = await self._store(
            scheduled_repo, safe_request, utc_now() - timedelta(minutes=1),
            status=ScheduledStatus.EXECUTING,
            retry_policy=RetryPolicy(max_retries=0),
        )

        report = await scheduler.recover()

        assert set(report.interrupted) == {retryable.id, exhausted.id}
        assert report.rearmed == [retryable.id]
        failed = await scheduled_repo.get_by_id(exhausted.id)
        assert failed is not None
        assert failed.status == ScheduledStatus.FAILED
        assert failed.last_error == "Execution interrupted by process restart"

        recovered = await scheduler.get(retryable.id)
        await _wait_until(lambda: recovered.status == ScheduledStatus.COMPLETED)
        assert recovered.retry_policy.retry_count == 1

    @pytest.mark.asyncio
    async def test_missed_retry_caught_up_when_enabled(
        self,
        make_scheduler: MakeScheduler,
        scheduled_repo: InMemoryScheduledDeploymentRepository,
        safe_request: DeploymentRequest,
    ) -> None:
        stale = await self._store(
            scheduled_repo, safe_request, utc_now() - timedelta(hours=2),
            status=ScheduledStatus.RETRY_SCHEDULED,
            retry_policy=RetryPolicy(max_retries=3, retry_count=1),
            next_attempt_at=utc_now() - timedelta(hours=1),
        )
        scheduler = make_scheduler(
            settings=SchedulerSettings(catch_up_missed_retries=True, reminder_lead_seconds=0)
        )

        report = await scheduler.recover()

        assert report.rearmed == [stale.id]
        recovered = await scheduler.get(stale.id)
        await _wait_until(lambda: recovered.status == ScheduledStatus.COMPLETED)

    @pytest.mark.asyncio
    async def test_missed_retry_marked_missed_by_default(
        self,
        scheduler: DeploymentScheduler,
        scheduled_repo: InMemoryScheduledDeploymentRepository,
        safe_request: DeploymentRequest,
    ) -> None:
        stale = await self._store(
            scheduled_repo, safe_request, utc_now() - timedelta(hours=2),
            status=ScheduledStatus.RETRY_SCHEDULED,
            retry_policy=RetryPolicy(max_retries=3, retry_count=1),
            next_attempt_at=utc_now() - timedelta(hours=1),
        )
        report = await scheduler.recover()
        assert report.missed == [stale.id]

    @pytest.mark.asyncio
    async def test_survives_restart(
        self,
        make_scheduler: MakeScheduler,
        scheduled_repo: InMemoryScheduledDeploymentRepository,
        safe_request: DeploymentRequest,
    ) -> None:
        first = make_scheduler()
        scheduled = await first.schedule(safe_request, _soon(0.2))
        await first.shutdown(wait=False)
        assert first.pending_timer_count == 0

        second = make_scheduler()
        report = await second.recover()
        assert report.rearmed == [scheduled.id]

        restored = await second.get(scheduled.id)
        await _wait_until(lambda: restored.status == ScheduledStatus.COMPLETED)
        stored = await scheduled_repo.get_by_id(scheduled.id)
        assert stored is not None and stored.status == ScheduledStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_restart_does_not_republish_events(
        self,
        make_scheduler: MakeScheduler,
        event_publisher: InMemoryEventPublisher,
        safe_request: DeploymentRequest,
    ) -> None:
        first = make_scheduler()
        scheduled = await first.schedule(safe_request, _soon(3600))
        await first.shutdown(wait=False)

        second = make_scheduler()
        await second.recover()
        await second.cancel(scheduled.id)

        assert len(event_publisher.events_of("deployment.scheduled")) == 1
        assert len(event_publisher.events_of("deployment.cancelled")) == 1

    @pytest.mark.asyncio
    async def test_stored_copies_carry_no_pending_events(
        self,
        scheduler: DeploymentScheduler,
        scheduled_repo: InMemoryScheduledDeploymentRepository,
        safe_request: DeploymentRequest,
    ) -> None:
        scheduled = await scheduler.schedule(safe_request, _soon(3600))
        stored = await scheduled_repo.get_by_id(scheduled.id)
        assert stored is not None
        assert stored.pending_events == []
