from __future__ import annotations

from fastapi import FastAPI
from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor

from ..core.config import settings
from .logging import get_logger

logger = get_logger("observability.otel")

tracer = trace.get_tracer("resume_chat")


def init_otel(app: FastAPI) -> None:
    """
    Initialize OpenTelemetry tracing.

    Traces are exported via OTLP gRPC to Grafana Alloy,
    which then forwards them to Tempo. Disabled with RESUME_CHAT_OTEL_ENABLED=false.
    """
    otel_settings = settings.otel
    if not otel_settings.enabled:
        logger.info("OpenTelemetry tracing disabled")
        return

    resource = Resource(
        attributes={
            "service.name": otel_settings.service_name,
            "service.environment": settings.app.env.value,
        }
    )

    tracer_provider = TracerProvider(resource=resource)
    trace.set_tracer_provider(tracer_provider)

    span_exporter = OTLPSpanExporter(
        endpoint=otel_settings.exporter_otlp_endpoint,
        insecure=True,
    )

    span_processor = BatchSpanProcessor(span_exporter)
    tracer_provider.add_span_processor(span_processor)

    # Instrument FastAPI + Uvicorn
    FastAPIInstrumentor.instrument_app(app, tracer_provider=tracer_provider)
