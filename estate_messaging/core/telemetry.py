"""OpenTelemetry setup for tracing backend calls."""

import logging

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor

from estate_messaging import __version__
from estate_messaging.config import settings

logger = logging.getLogger(__name__)


def setup_telemetry() -> bool:
    """Configure OpenTelemetry tracing for the messaging core.

    This sets up:
    - TracerProvider with service name resource
    - OTLP exporter to send traces to the collector
    - httpx and SQLAlchemy instrumentation when installed

    Returns:
        True if a tracer provider was installed
    """
    if not settings.OTEL_EXPORTER_OTLP_ENDPOINT:
        logger.info("Telemetry disabled: OTEL_EXPORTER_OTLP_ENDPOINT not configured")
        return False

    try:
        resource = Resource.create(
            {
                "service.name": settings.OTEL_SERVICE_NAME,
                "service.version": __version__,
                "deployment.environment": "development" if settings.DEBUG else "production",
            }
        )

        tracer_provider = TracerProvider(resource=resource)
        trace.set_tracer_provider(tracer_provider)

        otlp_exporter = OTLPSpanExporter(
            endpoint=settings.OTEL_EXPORTER_OTLP_ENDPOINT,
            insecure=True,  # Set to False for production with TLS
        )
        tracer_provider.add_span_processor(BatchSpanProcessor(otlp_exporter))

        logger.info(
            f"Telemetry enabled: exporting to {settings.OTEL_EXPORTER_OTLP_ENDPOINT}"
        )
    except Exception as e:
        logger.warning(f"Failed to setup telemetry: {e}")
        return False

    instrument_httpx()
    instrument_sqlalchemy()
    return True


def get_tracer(name: str) -> trace.Tracer:
    """Get a tracer instance for manual span creation.

    Args:
        name: Name of the module/component creating spans

    Returns:
        Tracer instance

    Example:
        tracer = get_tracer(__name__)
        with tracer.start_as_current_span("operation_name") as span:
            span.set_attribute("key", "value")
    """
    return trace.get_tracer(name)


def instrument_httpx() -> None:
    """Instrument httpx for outbound HTTP tracing."""
    try:
        from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor

        HTTPXClientInstrumentor().instrument()
        logger.info("httpx instrumentation enabled")
    except ImportError:
        logger.debug("httpx instrumentation not available")


def instrument_sqlalchemy() -> None:
    """Instrument SQLAlchemy for database tracing."""
    try:
        from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor

        SQLAlchemyInstrumentor().instrument(enable_commenter=True)
        logger.info("SQLAlchemy instrumentation enabled")
    except ImportError:
        logger.debug("SQLAlchemy instrumentation not available")
