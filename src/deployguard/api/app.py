"""FastAPI application factory."""

from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from deployguard.api.dependencies.services import ServiceContainer
from deployguard.api.middleware.correlation import CorrelationIdMiddleware
from deployguard.api.routes import deployment_routes, health_routes, schedule_routes
from deployguard.config import get_settings, Settings
from deployguard.infrastructure.observability.tracing import setup_tracing


logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
    """Start the container (storage, schedule recovery) and stop it on shutdown."""
    container = ServiceContainer.get_instance()
    settings = container.settings
    logger.info(
        "application_starting",
        environment=settings.environment.value,
        debug=settings.debug,
    )
    setup_tracing(settings.observability, settings.environment.value)

    await container.startup()

    yield

    logger.info("application_shutting_down")
    await container.shutdown()
    logger.info("application_shutdown_complete")


def create_app(settings: Settings | None = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    if settings is None:
        settings = get_settings()

    app = FastAPI(
        title="DeployGuard",
        description="Guarded deployment pipeline and scheduler for sandbox targets",
        version="0.4.0",
        docs_url=f"{settings.api_prefix}/docs",
        redoc_url=f"{settings.api_prefix}/redoc",
        openapi_url=f"{settings.api_prefix}/openapi.json",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if settings.debug else [],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(CorrelationIdMiddleware)

    app.include_router(health_routes.router)
    app.include_router(deployment_routes.router, prefix=settings.api_prefix)
    app.include_router(schedule_routes.router, prefix=settings.api_prefix)

    return app
