"""
OpenTelemetry distributed tracing configuration.

Spans are created around the expensive steps of an advice request
(context.build, advice.generate, llm.chat, orchestrator.run). Export goes
through OTLP; Jaeger and other collectors can receive OTLP directly.

Configuration:
- OTEL_SERVICE_NAME: Service name (default: advisor_ai)
- OTEL_EXPORTER_OTLP_ENDPOINT: OTLP gRPC endpoint (e.g. http://localhost:4317)
- OTEL_TRACES_SAMPLER_ARG: Sampling rate (default: 1.0)

When tracing is not configured, the OpenTelemetry API hands out no-op
tracers, so instrumented code runs unchanged in tests.
"""
import os
from typing import Any, Optional

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.sdk.trace.sampling import TraceIdRatioBased
from opentelemetry.trace import Span, Status, StatusCode, Tracer

from .logging import get_logger

logger = get_logger(__name__)

_tracer_provider: Optional[TracerProvider] = None

TRACER_NAME = "advisor"


def configure_tracing(
    service_name: Optional[str] = None,
    otlp_endpoint: Optional[str] = None,
    sampling_rate: float = 1.0,
) -> None:
    """
    Configure OpenTelemetry tracing with an OTLP exporter.

    Args:
        service_name: Service name (defaults to OTEL_SERVICE_NAME or advisor_ai)
        otlp_endpoint: OTLP endpoint (defaults to OTEL_EXPORTER_OTLP_ENDPOINT);
            spans are still created but not exported when unset
        sampling_rate: Sampling rate in [0.0, 1.0]
    """
    global _tracer_provider

    service_name = service_name or os.getenv("OTEL_SERVICE_NAME", "advisor_ai")
    otlp_endpoint = otlp_endpoint or os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT")
    sampling_rate = float(os.getenv("OTEL_TRACES_SAMPLER_ARG", str(sampling_rate)))

    resource = Resource.create({
        "service.name": service_name,
        "service.version": "0.1.0",
    })

    if sampling_rate < 1.0:
        _tracer_provider = TracerProvider(
            resource=resource, sampler=TraceIdRatioBased(sampling_rate)
        )
    else:
        _tracer_provider = TracerProvider(resource=resource)

    if otlp_endpoint:
        try:
            exporter = OTLPSpanExporter(endpoint=otlp_endpoint)
            _tracer_provider.add_span_processor(BatchSpanProcessor(exporter))
            logger.info(
                "tracing_otlp_configured",
                endpoint=otlp_endpoint,
                sampling_rate=sampling_rate,
            )
        except Exception as e:
            logger.warning(
                "tracing_otlp_configuration_failed",
                endpoint=otlp_endpoint,
                error=str(e),
                error_type=type(e).__name__,
                message="Tracing will continue without OTLP export",
            )

    trace.set_tracer_provider(_tracer_provider)
    logger.info(
        "tracing_configured",
        service_name=service_name,
        sampling_rate=sampling_rate,
        otlp_enabled=bool(otlp_endpoint),
    )


def get_tracer() -> Tracer:
    """Tracer from the global provider (no-op until configure_tracing runs)."""
    return trace.get_tracer(TRACER_NAME)


def set_span_attribute(span: Optional[Span], key: str, value: Any) -> None:
    """Set an attribute on a span, ignoring None spans and None values."""
    if span is None or value is None:
        return
    if not isinstance(value, (str, bool, int, float)):
        value = str(value)
    span.set_attribute(key, value)


def record_exception(span: Optional[Span], exception: BaseException) -> None:
    """Record an exception on a span and mark the span as failed."""
    if span is None:
        return
    span.record_exception(exception)
    span.set_status(Status(StatusCode.ERROR, str(exception)))


def shutdown_tracing() -> None:
    """Flush and shut down the tracer provider."""
    global _tracer_provider
    if _tracer_provider is not None:
        try:
            _tracer_provider.shutdown()
            logger.info("tracing_shutdown")
        except Exception as e:
            logger.warning(
                "tracing_shutdown_failed",
                error=str(e),
                error_type=type(e).__name__,
            )
        _tracer_provider = None
