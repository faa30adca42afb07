"""Domain events package."""

from deployguard.domain.events.schedule_events import (
    DeploymentReminder,
    DeploymentRetryScheduled,
    DeploymentScheduled,
    ScheduledDeploymentCancelled,
    ScheduledDeploymentCompleted,
    ScheduledDeploymentFailed,
    ScheduledDeploymentMissed,
    ScheduledDeploymentStarted,
)


__all__ = [
    "DeploymentReminder",
    "DeploymentRetryScheduled",
    "DeploymentScheduled",
    "ScheduledDeploymentCancelled",
    "ScheduledDeploymentCompleted",
    "ScheduledDeploymentFailed",
    "ScheduledDeploymentMissed",
    "ScheduledDeploymentStarted",
]
