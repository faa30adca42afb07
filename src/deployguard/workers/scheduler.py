"""Deployment scheduler: timed, persisted and retried pipeline executions."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Any

import structlog

from deployguard.config import SchedulerSettings
from deployguard.domain.errors import (
    ScheduledDeploymentNotFoundError,
    SchedulingError,
)
from deployguard.domain.events.schedule_events import DeploymentReminder
from deployguard.domain.models.artifacts import DeploymentRequest
from deployguard.domain.models.base import DomainEvent, ensure_utc, utc_now
from deployguard.domain.models.deployment import DeploymentResult
from deployguard.domain.models.scheduling import (
    NextWindow,
    NotificationFlags,
    RecoveryReport,
    RetryPolicy,
    ScheduledDeployment,
    ScheduledStatus,
    ScheduleStatistics,
    WindowCheck,
)
from deployguard.domain.ports.repositories import ScheduledDeploymentRepository
from deployguard.domain.ports.services import EventPublisher
from deployguard.domain.services.deployment_windows import DeploymentWindowPolicy
from deployguard.domain.services.pipeline import DeploymentPipeline
from deployguard.infrastructure.observability.metrics import (
    SCHEDULED_DEPLOYMENTS,
    SCHEDULED_RETRIES_TOTAL,
)


logger = structlog.get_logger(__name__)


class DeploymentScheduler:
    """Holds deployment requests until their time, then runs them through the pipeline.

    Every pending deployment owns one timer task. Status changes are made on
    the in-memory aggregate inside a synchronous section and then persisted
    before anything else happens, so a restart can rebuild the timers with
    :meth:`recover`.
    """

    def __init__(
        self,
        pipeline: DeploymentPipeline,
        repository: ScheduledDeploymentRepository,
        windows: DeploymentWindowPolicy,
        event_publisher: EventPublisher,
        settings: SchedulerSettings,
        max_concurrent: int = 5,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._pipeline = pipeline
        self._repository = repository
        self._windows = windows
        self._event_publisher = event_publisher
        self._settings = settings
        self._clock = clock
        self._semaphore = asyncio.Semaphore(max_concurrent)
        self._deployments: dict[str, ScheduledDeployment] = {}
        self._timers: dict[str, asyncio.Task[None]] = {}
        self._reminders: dict[str, asyncio.Task[None]] = {}
        self._background_tasks: set[asyncio.Task[None]] = set()
        self._running = True

    @property
    def pending_timer_count(self) -> int:
        return len(self._timers)

    def has_timer(self, scheduled_id: str) -> bool:
        return scheduled_id in self._timers

    # ------------------------------------------------------------------
    # Windows
    # ------------------------------------------------------------------

    def is_within_window(self, at: datetime, target: str) -> WindowCheck:
        return self._windows.is_within_window(at, target)

    def next_window(self, target: str) -> NextWindow:
        return self._windows.next_window(target, after=self._clock())

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def schedule(
        self,
        request: DeploymentRequest,
        when: datetime,
        retry_policy: RetryPolicy | None = None,
        notifications: NotificationFlags | None = None,
    ) -> ScheduledDeployment:
        """Accept a deployment for a future time.

        Raises :class:`SchedulingError` before any timer exists when ``when``
        is not in the future, or falls outside the target's window without
        ``force_outside_window``.
        """
        when = ensure_utc(when)
        now = self._clock()
        if when <= now:
            raise SchedulingError("Scheduled time must be in the future")

        if not request.options.force_outside_window:
            check = self._windows.is_within_window(when, request.target)
            if not check.allowed:
                raise SchedulingError(
                    f"Scheduled time is outside deployment window for "
                    f"{request.target}. {check.reason}"
                )

        scheduled = ScheduledDeployment(
            request=request,
            scheduled_time=when,
            retry_policy=retry_policy
            or RetryPolicy(max_retries=self._settings.default_max_retries),
            notifications=notifications or NotificationFlags(),
        )
        scheduled.mark_scheduled()
        await self._persist(scheduled)
        self._deployments[scheduled.id] = scheduled
        self._arm(scheduled)

        logger.info(
            "deployment_scheduled",
            scheduled_id=scheduled.id,
            target=scheduled.target,
            scheduled_time=when.isoformat(),
        )
        return scheduled

    async def cancel(self, scheduled_id: str) -> ScheduledDeployment:
        """Cancel a deployment that has not started executing.

        The status change and the timer cancellation happen without an
        ``await`` in between, so a timer that already claimed the deployment
        makes this fail instead.
        """
        scheduled = await self._load(scheduled_id)

        scheduled.cancel(at=self._clock())
        timer = self._timers.pop(scheduled_id, None)
        if timer is not None:
            timer.cancel()
        reminder = self._reminders.pop(scheduled_id, None)
        if reminder is not None:
            reminder.cancel()

        await self._persist(scheduled)
        logger.info("scheduled_deployment_cancelled", scheduled_id=scheduled_id)
        return scheduled

    async def get(self, scheduled_id: str) -> ScheduledDeployment:
        return await self._load(scheduled_id)

    async def list(
        self,
        status: ScheduledStatus | None = None,
        target: str | None = None,
        requested_by: str | None = None,
    ) -> list[ScheduledDeployment]:
        """Scheduled deployments matching every given filter, earliest first."""
        items = await self._all()
        if status is not None:
            items = [d for d in items if d.status == status]
        if target is not None:
            items = [d for d in items if d.target == target]
        if requested_by is not None:
            items = [d for d in items if d.request.requested_by == requested_by]
        return sorted(items, key=lambda d: d.scheduled_time)

    async def statistics(self) -> ScheduleStatistics:
        items = await self._all()
        today = self._clock().date()
        by_status: dict[str, int] = {}
        completed_today = failed_today = 0
        for d in items:
            by_status[d.status.value] = by_status.get(d.status.value, 0) + 1
            if d.completed_at is not None and d.completed_at.date() == today:
                if d.status == ScheduledStatus.COMPLETED:
                    completed_today += 1
                elif d.status == ScheduledStatus.FAILED:
                    failed_today += 1
        return ScheduleStatistics(
            total=len(items),
            by_status=by_status,
            upcoming_count=sum(1 for d in items if d.is_pending),
            completed_today=completed_today,
            failed_today=failed_today,
        )

    async def cleanup(self, older_than_days: int = 30) -> int:
        """Delete terminal deployments that finished before the cutoff."""
        cutoff = self._clock() - timedelta(days=older_than_days)
        stale = []
        for d in await self._all():
            finished = d.completed_at or d.cancelled_at or d.updated_at
            if d.is_terminal and finished < cutoff:
                stale.append(d.id)
        if not stale:
            return 0
        removed = await self._repository.delete(stale)
        for scheduled_id in stale:
            self._deployments.pop(scheduled_id, None)
        self._refresh_gauges()
        logger.info("scheduled_deployments_cleaned_up", removed=removed)
        return removed

    async def recover(self) -> RecoveryReport:
        """Rebuild timers from durable storage after a restart.

        Future ``scheduled``/``retry_scheduled`` work is re-armed, past work is
        marked ``missed`` (or, with ``catch_up_missed_retries``, collapsed into
        a single immediate retry). Executions interrupted by the restart are
        retried when retries remain and failed otherwise.
        """
        now = self._clock()
        rearmed: list[str] = []
        missed: list[str] = []
        interrupted: list[str] = []

        for scheduled in await self._repository.list_all():
            self._deployments[scheduled.id] = scheduled
            if scheduled.id in self._timers:
                continue

            if scheduled.status == ScheduledStatus.EXECUTING:
                interrupted.append(scheduled.id)
                message = "Execution interrupted by process restart"
                if scheduled.can_retry:
                    scheduled.last_error = message
                    scheduled.schedule_retry(self._retry_time(scheduled, now))
                    await self._persist(scheduled)
                    self._arm(scheduled)
                    rearmed.append(scheduled.id)
                else:
                    scheduled.fail(message, at=now)
                    await self._persist(scheduled)
                continue

            if not scheduled.is_pending:
                continue

            if scheduled.due_at > now:
                self._arm(scheduled)
                rearmed.append(scheduled.id)
            elif (
                scheduled.status == ScheduledStatus.RETRY_SCHEDULED
                and self._settings.catch_up_missed_retries
            ):
                scheduled.next_attempt_at = now
                await self._persist(scheduled)
                self._arm(scheduled)
                rearmed.append(scheduled.id)
            else:
                scheduled.mark_missed()
                await self._persist(scheduled)
                missed.append(scheduled.id)
                logger.warning(
                    "scheduled_deployment_missed",
                    scheduled_id=scheduled.id,
                    due_at=scheduled.due_at.isoformat(),
                )

        self._refresh_gauges()
        logger.info(
            "scheduler_recovered",
            rearmed=len(rearmed),
            missed=len(missed),
            interrupted=len(interrupted),
        )
        return RecoveryReport(rearmed=rearmed, missed=missed, interrupted=interrupted)

    async def shutdown(self, wait: bool = True) -> None:
        """Stop all timers. In-flight executions are awaited when ``wait`` is set."""
        self._running = False
        for task in [*self._timers.values(), *self._reminders.values()]:
            task.cancel()
        self._timers.clear()
        self._reminders.clear()

        if wait and self._background_tasks:
            await asyncio.gather(*self._background_tasks, return_exceptions=True)
        else:
            for task in self._background_tasks:
                task.cancel()
        logger.info("scheduler_stopped")

    # ------------------------------------------------------------------
    # Timers
    # ------------------------------------------------------------------

    def _spawn(self, coro: Any) -> asyncio.Task[None]:
        task = asyncio.create_task(coro)
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)
        return task

    def _arm(self, scheduled: ScheduledDeployment) -> None:
        if not self._running:
            return
        self._timers[scheduled.id] = self._spawn(self._fire(scheduled.id, scheduled.due_at))

        if (
            scheduled.status == ScheduledStatus.SCHEDULED
            and scheduled.notifications.notify_before
        ):
            remind_at = scheduled.scheduled_time - timedelta(
                seconds=self._settings.reminder_lead_seconds
            )
            if remind_at > self._clock():
                self._reminders[scheduled.id] = self._spawn(
                    self._remind(scheduled.id, remind_at)
                )

    def _delay_until(self, at: datetime) -> float:
        return max((at - self._clock()).total_seconds(), 0.0)

    async def _remind(self, scheduled_id: str, at: datetime) -> None:
        await asyncio.sleep(self._delay_until(at))
        self._reminders.pop(scheduled_id, None)
        scheduled = self._deployments.get(scheduled_id)
        if scheduled is None or scheduled.status != ScheduledStatus.SCHEDULED:
            return
        event = DeploymentReminder(
            scheduled_id=scheduled_id,
            target=scheduled.target,
            scheduled_time=scheduled.scheduled_time,
            requested_by=scheduled.request.requested_by,
        )
        try:
            await self._event_publisher.publish(event.event_type, event.model_dump(mode="json"))
            await self._notify("deployment_reminder", scheduled, {
                "message": (
                    f"Reminder: deployment {scheduled_id} will start at "
                    f"{scheduled.scheduled_time.isoformat()}."
                ),
            })
        except Exception:
            logger.exception("reminder_publish_failed", scheduled_id=scheduled_id)

    async def _fire(self, scheduled_id: str, due_at: datetime) -> None:
        await asyncio.sleep(self._delay_until(due_at))

        scheduled = self._deployments.get(scheduled_id)
        if scheduled is None or not scheduled.is_pending:
            return
        if self._timers.get(scheduled_id) is asyncio.current_task():
            del self._timers[scheduled_id]
        # Claimed: from here on cancel() is rejected
        scheduled.start_execution()

        try:
            await self._persist(scheduled)
            await self._execute(scheduled)
        except Exception:
            logger.exception("scheduled_execution_error", scheduled_id=scheduled_id)

    async def _execute(self, scheduled: ScheduledDeployment) -> None:
        log = logger.bind(scheduled_id=scheduled.id, target=scheduled.target)
        log.info("scheduled_deployment_executing", attempt=scheduled.retry_policy.retry_count + 1)

        result: DeploymentResult | None = None
        error = ""
        async with self._semaphore:
            try:
                result = await self._pipeline.deploy(scheduled.request, scheduled_id=scheduled.id)
            except Exception as e:
                log.exception("scheduled_pipeline_error")
                error = f"Pipeline error: {e}"

        if result is not None:
            scheduled.record_attempt(result)
            error = result.error_message

        retryable = result is None or result.retryable
        if result is not None and result.deployed:
            scheduled.complete(at=self._clock())
        elif scheduled.can_retry and retryable:
            scheduled.schedule_retry(self._retry_time(scheduled, self._clock()))
            SCHEDULED_RETRIES_TOTAL.inc()
            log.info(
                "scheduled_retry_planned",
                retry_count=scheduled.retry_policy.retry_count,
                max_retries=scheduled.retry_policy.max_retries,
                next_attempt_at=scheduled.due_at.isoformat(),
            )
        else:
            scheduled.fail(error, at=self._clock())

        await self._persist(scheduled)

        if scheduled.notifications.notify_after:
            success = result is not None and result.deployed
            await self._notify("deployment_complete", scheduled, {
                "success": success,
                "deployment_id": result.deployment_id if result else None,
                "outcome": result.outcome.value if result else None,
                "message": (
                    f"Deployment {scheduled.id} completed successfully."
                    if success
                    else f"Deployment {scheduled.id} failed: {error}"
                ),
            })

        if scheduled.status == ScheduledStatus.RETRY_SCHEDULED:
            self._arm(scheduled)

    def _retry_time(self, scheduled: ScheduledDeployment, now: datetime) -> datetime:
        """Fixed backoff, pushed to the next window start when it lands outside one."""
        at = now + timedelta(seconds=self._settings.retry_delay_seconds)
        if scheduled.request.options.force_outside_window:
            return at
        if self._windows.is_within_window(at, scheduled.target).allowed:
            return at
        window = self._windows.next_window(scheduled.target, after=at)
        return window.start or at

    # ------------------------------------------------------------------
    # Persistence and notifications
    # ------------------------------------------------------------------

    async def _load(self, scheduled_id: str) -> ScheduledDeployment:
        scheduled = self._deployments.get(scheduled_id)
        if scheduled is not None:
            return scheduled
        stored = await self._repository.get_by_id(scheduled_id)
        if stored is None:
            raise ScheduledDeploymentNotFoundError(
                f"Scheduled deployment not found: {scheduled_id}"
            )
        return self._deployments.setdefault(scheduled_id, stored)

    async def _all(self) -> list[ScheduledDeployment]:
        stored = {d.id: d for d in await self._repository.list_all()}
        stored.update(self._deployments)
        return list(stored.values())

    async def _persist(self, scheduled: ScheduledDeployment) -> None:
        # Collected first so stored copies never carry pending events
        events = scheduled.collect_events()
        await self._repository.save(scheduled)
        await self._publish_events(events)
        self._refresh_gauges()

    async def _publish_events(self, events: list[DomainEvent]) -> None:
        for event in events:
            try:
                await self._event_publisher.publish(
                    event.event_type, event.model_dump(mode="json")
                )
            except Exception:
                logger.exception("event_publish_failed", event_type=event.event_type)

    async def _notify(
        self, kind: str, scheduled: ScheduledDeployment, payload: dict[str, Any]
    ) -> None:
        try:
            await self._event_publisher.publish(f"notification.{kind}", {
                "type": kind,
                "scheduled_id": scheduled.id,
                "target": scheduled.target,
                "requested_by": scheduled.request.requested_by,
                **payload,
            })
        except Exception:
            logger.exception("notification_failed", scheduled_id=scheduled.id, kind=kind)

    def _refresh_gauges(self) -> None:
        counts = {status: 0 for status in ScheduledStatus}
        for d in self._deployments.values():
            counts[d.status] += 1
        for status, count in counts.items():
            SCHEDULED_DEPLOYMENTS.labels(status=status.value).set(count)
