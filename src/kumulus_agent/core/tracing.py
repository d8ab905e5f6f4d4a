"""OpenTelemetry configuration for request and telemetry-loop tracing."""

import logging
from typing import TYPE_CHECKING, Any

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter

from kumulus_agent import __version__
from kumulus_agent.core.config import Settings

if TYPE_CHECKING:
    from fastapi import FastAPI

logger = logging.getLogger(__name__)


def resource_attributes(settings: Settings, provider_address: str | None = None) -> dict[str, Any]:
    """Build the resource attributes attached to every span of this agent.

    Args:
        settings: Application settings
        provider_address: Signing address of the provider, if an identity is configured

    Returns:
        Attribute mapping for ``Resource.create``
    """
    attributes: dict[str, Any] = {
        "service.name": settings.otel_service_name,
        "service.version": __version__,
        "deployment.environment": settings.environment,
        "kumulus.container_engine": settings.container_engine,
        "kumulus.ssh_port_range": (
            f"{settings.ssh_port_start}-{settings.ssh_port_start + settings.ssh_port_range - 1}"
        ),
    }
    if provider_address:
        attributes["kumulus.provider.address"] = provider_address
    return attributes


def setup_tracing(
    app: "FastAPI",
    settings: Settings,
    provider_address: str | None = None,
) -> bool:
    """Configure OpenTelemetry tracing for the agent.

    Spans from the control API (FastAPI instrumentation), ``environment.create``
    and ``telemetry.tick`` are exported to the console in debug development
    runs and over OTLP everywhere else.

    Args:
        app: FastAPI application instance
        settings: Application settings
        provider_address: Signing address to tag spans with, if known

    Returns:
        True if tracing was configured
    """
    if not settings.otel_enabled:
        logger.info("OpenTelemetry disabled")
        return False

    provider = TracerProvider(resource=Resource.create(resource_attributes(settings, provider_address)))

    if settings.environment != "development":
        try:
            exporter = OTLPSpanExporter(endpoint=settings.otel_exporter_endpoint)
            provider.add_span_processor(BatchSpanProcessor(exporter))
        except Exception as e:
            logger.warning(f"Failed to configure OTLP exporter: {e}")
    elif settings.debug:
        provider.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter()))

    trace.set_tracer_provider(provider)
    FastAPIInstrumentor.instrument_app(app)

    logger.info(
        f"OpenTelemetry configured: service={settings.otel_service_name}, "
        f"environment={settings.environment}, provider={provider_address or 'unknown'}"
    )
    return True


def get_tracer(name: str) -> trace.Tracer:
    """Get a tracer for the given module name."""
    return trace.get_tracer(name)
