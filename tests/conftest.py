"""Pytest configuration and fixtures."""

import sys
from pathlib import Path

import pytest
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import SimpleSpanProcessor
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter

# Make `apps` and `tests.factories` importable without an install.
ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(ROOT))
sys.path.insert(0, str(Path(__file__).parent))

from factories import RecordingBackend  # noqa: E402

from apps.trace_loader.backend.otel_backend import OtelTracingBackend  # noqa: E402
from apps.trace_loader.config import Settings  # noqa: E402


@pytest.fixture
def backend():
    """Recording fake backend."""
    return RecordingBackend()


@pytest.fixture
def span_exporter():
    return InMemorySpanExporter()


@pytest.fixture
def otel_backend(span_exporter):
    """OpenTelemetry backend exporting synchronously into memory."""
    provider = TracerProvider()
    provider.add_span_processor(SimpleSpanProcessor(span_exporter))
    yield OtelTracingBackend(provider)
    provider.shutdown()


@pytest.fixture
def settings():
    cfg = Settings()
    cfg.MODE = "hierarchical"
    cfg.CONTEXT_KEY = "traceparent"
    cfg.SESSION_LIMIT = 0
    return cfg
