"""OpenTelemetry wiring: one tracer provider per process, instrumentation per app."""

import logging

from fastapi import FastAPI
from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import (  # type: ignore[attr-defined]
    OTLPSpanExporter as OTLPGrpcExporter,
)
from opentelemetry.exporter.otlp.proto.http.trace_exporter import (  # type: ignore[attr-defined]
    OTLPSpanExporter as OTLPHttpExporter,
)
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, SpanExporter
from opentelemetry.sdk.trace.sampling import ParentBased, TraceIdRatioBased

from .config import ServiceSettings

SERVICE_NAMESPACE = "ecommerce"
SERVICE_VERSION = "1.0.0"
NO_TRACE = "-"
UNTRACED_URLS = "health,metrics"

_LOGGER = logging.getLogger(__name__)
_INSTRUMENTED_APPS: set[int] = set()
_HTTPX_INSTRUMENTED = False


def current_trace_ids() -> tuple[str, str]:
    """Return the active (trace_id, span_id) as hex, or placeholders outside a span."""

    context = trace.get_current_span().get_span_context()
    if not context.is_valid:
        return NO_TRACE, NO_TRACE
    return format(context.trace_id, "032x"), format(context.span_id, "016x")


def _exporter_for(settings: ServiceSettings) -> SpanExporter | None:
    endpoint = settings.tracing_endpoint
    if endpoint is None:
        return None
    if settings.tracing_protocol == "grpc":
        return OTLPGrpcExporter(endpoint=endpoint, insecure=settings.tracing_insecure)
    return OTLPHttpExporter(endpoint=endpoint)


def _sdk_provider(settings: ServiceSettings) -> TracerProvider:
    existing = trace.get_tracer_provider()
    if isinstance(existing, TracerProvider):
        return existing

    provider = TracerProvider(
        resource=Resource.create(
            {
                "service.name": settings.app_name,
                "service.namespace": SERVICE_NAMESPACE,
                "service.version": SERVICE_VERSION,
                "deployment.environment": settings.environment,
            }
        ),
        # Follow the upstream sampling decision so gateway -> inventory traces stay whole.
        sampler=ParentBased(TraceIdRatioBased(settings.tracing_sample_rate)),
    )
    exporter = _exporter_for(settings)
    if exporter is None:
        _LOGGER.warning("Tracing enabled for %s without tracing_endpoint; spans stay local", settings.app_name)
    else:
        provider.add_span_processor(BatchSpanProcessor(exporter))
    trace.set_tracer_provider(provider)
    return provider


def configure_tracing(app: FastAPI, settings: ServiceSettings) -> None:
    """Instrument the app and outbound httpx calls when tracing is enabled."""

    global _HTTPX_INSTRUMENTED
    if not settings.enable_tracing:
        return

    provider = _sdk_provider(settings)
    if id(app) not in _INSTRUMENTED_APPS:
        FastAPIInstrumentor().instrument_app(app, tracer_provider=provider, excluded_urls=UNTRACED_URLS)
        _INSTRUMENTED_APPS.add(id(app))
    if not _HTTPX_INSTRUMENTED:
        HTTPXClientInstrumentor().instrument(tracer_provider=provider)
        _HTTPX_INSTRUMENTED = True


def flush_tracing(timeout_millis: int = 5000) -> bool:
    """Push buffered spans to the exporter; used on shutdown."""

    provider = trace.get_tracer_provider()
    if not isinstance(provider, TracerProvider):
        return True
    return provider.force_flush(timeout_millis)
