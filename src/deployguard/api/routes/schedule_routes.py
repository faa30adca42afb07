"""Scheduled deployment API routes."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query, status

from deployguard.api.dependencies.services import get_deployment_service
from deployguard.api.schemas.deployment_schemas import (
    CleanupResponse,
    ScheduledDeploymentResponse,
    ScheduleRequest,
    WindowStatusResponse,
)
from deployguard.domain.errors import (
    InvalidScheduleTransitionError,
    ScheduledDeploymentNotFoundError,
    SchedulingError,
)
from deployguard.domain.models.base import utc_now
from deployguard.domain.models.scheduling import ScheduledStatus, ScheduleStatistics
from deployguard.domain.services.deployment_service import DeploymentService


router = APIRouter(prefix="/schedules", tags=["schedules"])

Service = Annotated[DeploymentService, Depends(get_deployment_service)]


@router.post("", response_model=ScheduledDeploymentResponse, status_code=status.HTTP_201_CREATED)
async def schedule_deployment(
    request: ScheduleRequest, service: Service
) -> ScheduledDeploymentResponse:
    """Accept a deployment for a future time inside the target's window."""
    try:
        scheduled = await service.scheduler.schedule(
            request.to_domain(),
            request.scheduled_time,
            request.retry_policy(),
            request.notifications(),
        )
    except SchedulingError as e:
        raise HTTPException(status_code=422, detail=str(e)) from e
    return ScheduledDeploymentResponse.of(scheduled)


@router.get("", response_model=list[ScheduledDeploymentResponse])
async def list_scheduled(
    service: Service,
    status_filter: Annotated[ScheduledStatus | None, Query(alias="status")] = None,
    target: str | None = None,
    requested_by: str | None = None,
) -> list[ScheduledDeploymentResponse]:
    items = await service.scheduler.list(status_filter, target, requested_by)
    return [ScheduledDeploymentResponse.of(d) for d in items]


@router.get("/statistics", response_model=ScheduleStatistics)
async def schedule_statistics(service: Service) -> ScheduleStatistics:
    return await service.scheduler.statistics()


@router.get("/windows/{target}", response_model=WindowStatusResponse)
async def window_status(target: str, service: Service) -> WindowStatusResponse:
    """Whether ``target`` may be deployed to right now, and when its next window opens."""
    check = service.scheduler.is_within_window(utc_now(), target)
    upcoming = service.scheduler.next_window(target)
    return WindowStatusResponse(
        target=target,
        environment_class=check.environment_class.value,
        allowed_now=check.allowed,
        reason=check.reason,
        next_window_start=upcoming.start,
        next_window_end=upcoming.end,
    )


@router.post("/cleanup", response_model=CleanupResponse)
async def cleanup_scheduled(
    service: Service,
    older_than_days: Annotated[int, Query(ge=0)] = 30,
) -> CleanupResponse:
    return CleanupResponse(removed=await service.scheduler.cleanup(older_than_days))


@router.get("/{scheduled_id}", response_model=ScheduledDeploymentResponse)
async def get_scheduled(scheduled_id: str, service: Service) -> ScheduledDeploymentResponse:
    try:
        scheduled = await service.scheduler.get(scheduled_id)
    except ScheduledDeploymentNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e)) from e
    return ScheduledDeploymentResponse.of(scheduled)


@router.post("/{scheduled_id}/cancel", response_model=ScheduledDeploymentResponse)
async def cancel_scheduled(scheduled_id: str, service: Service) -> ScheduledDeploymentResponse:
    try:
        scheduled = await service.scheduler.cancel(scheduled_id)
    except ScheduledDeploymentNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e)) from e
    except InvalidScheduleTransitionError as e:
        raise HTTPException(status_code=409, detail=str(e)) from e
    return ScheduledDeploymentResponse.of(scheduled)
