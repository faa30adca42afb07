"""Deployment API routes."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query, status

from deployguard.api.dependencies.services import get_deployment_service
from deployguard.api.schemas.deployment_schemas import (
    DeployImprovementBatchRequest,
    DeployImprovementRequest,
    DeployRequest,
    RollbackRequest,
)
from deployguard.domain.errors import (
    BlockedTargetError,
    SnapshotNotFoundError,
    TargetBusyError,
)
from deployguard.domain.models.deployment import (
    BatchDeploymentSummary,
    DeploymentRecord,
    DeploymentResult,
    RollbackResult,
)
from deployguard.domain.models.snapshot import SnapshotSummary
from deployguard.domain.services.circuit_breaker import CircuitBreakerState
from deployguard.domain.services.deployment_service import DeploymentService


router = APIRouter(prefix="/deployments", tags=["deployments"])

Service = Annotated[DeploymentService, Depends(get_deployment_service)]


@router.post("", response_model=DeploymentResult)
async def deploy(request: DeployRequest, service: Service) -> DeploymentResult:
    """Run the deployment pipeline now. Stage failures are reported in the body."""
    return await service.pipeline.deploy(request.to_domain())


@router.post("/improvements", response_model=DeploymentResult)
async def deploy_improvement(
    request: DeployImprovementRequest, service: Service
) -> DeploymentResult:
    """Review an AI-authored change through the quality gate, then deploy it."""
    return await service.deploy_improvement(
        request.proposal.to_domain(),
        request.target,
        request.options,
        request.skip_quality_gate,
        request.requested_by,
    )


@router.post("/improvements/batch", response_model=BatchDeploymentSummary)
async def deploy_improvement_batch(
    request: DeployImprovementBatchRequest, service: Service
) -> BatchDeploymentSummary:
    return await service.deploy_improvements(
        [p.to_domain() for p in request.proposals], request.target, request.options
    )


@router.get("/history", response_model=list[DeploymentRecord])
async def deployment_history(
    service: Service,
    target: str | None = None,
    limit: Annotated[int, Query(ge=1, le=500)] = 50,
) -> list[DeploymentRecord]:
    return await service.history(target, limit)


@router.get("/snapshots", response_model=list[SnapshotSummary])
async def list_snapshots(service: Service, target: str | None = None) -> list[SnapshotSummary]:
    return await service.pipeline.list_snapshots(target)


@router.post("/rollback", response_model=RollbackResult)
async def rollback(request: RollbackRequest, service: Service) -> RollbackResult:
    """Restore a snapshot, or the latest one for the target."""
    try:
        return await service.rollback(request.target, request.snapshot_id)
    except SnapshotNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e)) from e
    except BlockedTargetError as e:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=e.message) from e
    except TargetBusyError as e:
        raise HTTPException(status_code=409, detail=e.message) from e


@router.get("/circuit-breaker", response_model=CircuitBreakerState)
async def circuit_breaker_state(service: Service) -> CircuitBreakerState:
    return service.pipeline.breaker_state()


@router.post("/circuit-breaker/reset", response_model=CircuitBreakerState)
async def reset_circuit_breaker(service: Service) -> CircuitBreakerState:
    return service.pipeline.reset_breaker()
