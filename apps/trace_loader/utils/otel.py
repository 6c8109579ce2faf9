"""
OpenTelemetry setup for the Scylla trace loader.

- Configures the exporter reconstructed spans are shipped through
  (OTLP gRPC to a collector, or the console for local runs).
- Configures Python logging, with trace ids injected by the
  OpenTelemetry logging instrumentation.
"""

from __future__ import annotations

import logging
from typing import Optional

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.logging import LoggingInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import (
    BatchSpanProcessor,
    ConsoleSpanExporter,
    SpanExporter,
)

from ..config import Settings

logger = logging.getLogger("traceloader.otel")

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"


def _build_exporter(settings: Settings) -> SpanExporter:
    if settings.EXPORTER == "console":
        return ConsoleSpanExporter()

    # OTLP gRPC exporter expects host:port (no http:// or https://)
    endpoint = settings.OTEL_ENDPOINT.replace("http://", "").replace("https://", "")
    logger.info("[OTEL] Configuring OTLP gRPC exporter -> %s", endpoint)
    return OTLPSpanExporter(endpoint=endpoint, insecure=settings.OTEL_INSECURE)


def setup_tracer_provider(
    settings: Settings,
    exporter: Optional[SpanExporter] = None,
    set_global: bool = True,
) -> TracerProvider:
    """
    Build the TracerProvider reconstructed spans are emitted through.

    The resource names the traced database (service.name defaults to
    "scylla"), not this loader: the spans describe work Scylla did.
    """
    # 1) TracerProvider with resource
    resource = Resource.create(
        {
            "service.name": settings.OTEL_SERVICE_NAME,
            "db.system": "scylladb",
            "scylla.keyspace": settings.SCYLLA_KEYSPACE,
        }
    )
    provider = TracerProvider(resource=resource)

    # 2) Exporter + batch processor
    span_exporter = exporter or _build_exporter(settings)
    provider.add_span_processor(BatchSpanProcessor(span_exporter))

    if set_global:
        trace.set_tracer_provider(provider)

    logger.info(
        "[OTEL] Tracer provider ready: service=%s exporter=%s",
        settings.OTEL_SERVICE_NAME,
        settings.EXPORTER if exporter is None else type(exporter).__name__,
    )
    return provider


def configure_logging(level: str = "INFO") -> None:
    """Root logging config shared by the CLI and the HTTP service."""
    LoggingInstrumentor().instrument(set_logging_format=False)
    logging.basicConfig(level=level.upper(), format=LOG_FORMAT)
