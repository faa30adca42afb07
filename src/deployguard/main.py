"""Service entrypoint: ``deployguard`` runs the API and the scheduler in one process."""

from __future__ import annotations

import structlog
import uvicorn

from deployguard.api.app import create_app
from deployguard.config import Environment, get_settings
from deployguard.infrastructure.observability.logging import setup_logging


logger = structlog.get_logger(__name__)

app = create_app()


def main() -> None:
    settings = get_settings()
    setup_logging(
        settings.observability.log_level,
        json_output=settings.environment != Environment.DEVELOPMENT,
    )
    logger.info(
        "deployguard_starting",
        environment=settings.environment.value,
        storage=settings.storage.backend.value,
        strict_mode=settings.safety.strict_mode,
        windows_enforced=settings.pipeline.enforce_windows,
    )

    # A single worker: timers and the circuit breaker live in process memory.
    uvicorn.run(
        "deployguard.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_level=settings.observability.log_level.lower(),
    )


if __name__ == "__main__":
    main()
