"""Health check and metrics routes."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Annotated, Any

from fastapi import APIRouter, Depends, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from deployguard.api.dependencies.services import get_service_container, ServiceContainer


router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check() -> dict[str, Any]:
    """Basic health check endpoint."""
    return {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "version": "0.4.0",
    }


@router.get("/health/ready")
async def readiness_check(
    container: Annotated[ServiceContainer, Depends(get_service_container)],
) -> dict[str, Any]:
    """Readiness: storage reachable and the circuit breaker closed."""
    checks: dict[str, str] = {}
    if container.database is not None:
        try:
            await container.database.ping()
            checks["database"] = "ok"
        except Exception as e:
            checks["database"] = f"error: {e}"
    try:
        await container.deployment_service.history(limit=1)
        checks["storage"] = "ok"
    except Exception as e:
        checks["storage"] = f"error: {e}"
    try:
        await container.lock_service.is_locked("health-probe")
        checks["lock"] = "ok"
    except Exception as e:
        checks["lock"] = f"error: {e}"
    breaker = container.pipeline.breaker_state()
    checks["circuit_breaker"] = "open" if breaker.is_open else "ok"

    all_ok = all(v == "ok" for v in checks.values())
    return {
        "status": "ready" if all_ok else "not_ready",
        "checks": checks,
        "quality_gate": "enabled" if container.pipeline.quality_gate_enabled else "disabled",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@router.get("/health/live")
async def liveness_check() -> dict[str, str]:
    """Liveness check - verifies the service is running."""
    return {"status": "alive"}


@router.get("/metrics")
async def metrics() -> Response:
    """Prometheus scrape endpoint."""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
