"""OpenTelemetry tracing for deployment attempts and pipeline stages."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager

import structlog
from opentelemetry import trace
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import (
    BatchSpanProcessor,
    ConsoleSpanExporter,
)
from opentelemetry.semconv.resource import ResourceAttributes

from deployguard.config import ObservabilitySettings


logger = structlog.get_logger(__name__)


def setup_tracing(
    settings: ObservabilitySettings, environment: str = "development"
) -> TracerProvider | None:
    """Install a tracer provider when tracing is enabled.

    Spans go to the OTLP collector at ``settings.otlp_endpoint`` when the
    ``otlp`` extra is installed, and to stdout otherwise.
    """
    if not settings.tracing_enabled:
        return None

    resource = Resource.create({
        ResourceAttributes.SERVICE_NAME: settings.service_name,
        ResourceAttributes.SERVICE_VERSION: "0.4.0",
        ResourceAttributes.DEPLOYMENT_ENVIRONMENT: environment,
    })
    provider = TracerProvider(resource=resource)

    try:
        from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
    except ImportError:
        logger.warning("otlp_exporter_missing", fallback="console")
        provider.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter()))
    else:
        exporter = OTLPSpanExporter(endpoint=settings.otlp_endpoint)
        provider.add_span_processor(BatchSpanProcessor(exporter))

    trace.set_tracer_provider(provider)
    logger.info("tracing_configured", service=settings.service_name, environment=environment)
    return provider


def get_tracer(name: str = "deployguard") -> trace.Tracer:
    return trace.get_tracer(name)


@contextmanager
def stage_span(
    tracer: trace.Tracer, stage: str, deployment_id: str, target: str
) -> Iterator[trace.Span]:
    """Span for one pipeline stage; exceptions are recorded on it and re-raised."""
    with tracer.start_as_current_span(
        f"pipeline.{stage}",
        attributes={
            "deployment.id": deployment_id,
            "deployment.target": target,
            "pipeline.stage": stage,
        },
    ) as span:
        yield span
