import os
from typing import List


_MODES = ("hierarchical", "flat")
_EXPORTERS = ("otlp", "console")


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("1", "true", "yes", "y")


class Settings:
    """
    Centralized trace loader configuration.

    Backed by environment variables so the same image can be pointed at a
    different cluster or collector without changing code.

    Source (Scylla / Cassandra):
      - SCYLLA_CONTACT_POINTS: comma separated list of hosts
      - SCYLLA_PORT: native protocol port
      - SCYLLA_KEYSPACE: keyspace holding the sessions/events tables
      - SCYLLA_USERNAME / SCYLLA_PASSWORD: optional plain-text auth

    Sink (OpenTelemetry):
      - OTEL_SERVICE_NAME: service.name resource attribute
      - OTEL_EXPORTER_OTLP_ENDPOINT: OTLP gRPC collector endpoint
      - TRACE_LOADER_EXPORTER: otlp | console

    Loader behavior:
      - TRACE_LOADER_MODE: hierarchical | flat
      - TRACE_LOADER_CONTEXT_KEY: session parameter holding a propagated
        trace context
      - TRACE_LOADER_SESSION_LIMIT: max sessions per run (0 = all)
      - TRACE_LOADER_LOG_LEVEL
      - PORT: HTTP port when run as a service
    """

    # ------------------------------------------------------------------
    # Source
    # ------------------------------------------------------------------
    SCYLLA_CONTACT_POINTS: str = os.getenv("SCYLLA_CONTACT_POINTS", "localhost")
    SCYLLA_PORT: int = int(os.getenv("SCYLLA_PORT", "9042"))
    SCYLLA_KEYSPACE: str = os.getenv("SCYLLA_KEYSPACE", "system_traces")
    SCYLLA_USERNAME: str = os.getenv("SCYLLA_USERNAME", "")
    SCYLLA_PASSWORD: str = os.getenv("SCYLLA_PASSWORD", "")

    # ------------------------------------------------------------------
    # Sink
    # ------------------------------------------------------------------
    OTEL_SERVICE_NAME: str = os.getenv("OTEL_SERVICE_NAME", "scylla")
    OTEL_ENDPOINT: str = os.getenv(
        "OTEL_EXPORTER_OTLP_ENDPOINT",
        "http://localhost:4317",
    )
    OTEL_INSECURE: bool = _env_bool("OTEL_EXPORTER_OTLP_INSECURE", "true")
    EXPORTER: str = os.getenv("TRACE_LOADER_EXPORTER", "otlp").lower()

    # ------------------------------------------------------------------
    # Loader
    # ------------------------------------------------------------------
    MODE: str = os.getenv("TRACE_LOADER_MODE", "hierarchical").lower()
    CONTEXT_KEY: str = os.getenv("TRACE_LOADER_CONTEXT_KEY", "traceparent")
    SESSION_LIMIT: int = int(os.getenv("TRACE_LOADER_SESSION_LIMIT", "0"))
    LOG_LEVEL: str = os.getenv("TRACE_LOADER_LOG_LEVEL", "INFO")
    PORT: int = int(os.getenv("PORT", "8080"))

    def __init__(self) -> None:
        # Unknown values fall back to defaults instead of failing a run.
        if self.MODE not in _MODES:
            self.MODE = "hierarchical"
        if self.EXPORTER not in _EXPORTERS:
            self.EXPORTER = "otlp"
        if self.SESSION_LIMIT < 0:
            self.SESSION_LIMIT = 0

    @property
    def contact_points(self) -> List[str]:
        return [h.strip() for h in self.SCYLLA_CONTACT_POINTS.split(",") if h.strip()]

    @property
    def flat_mode(self) -> bool:
        return self.MODE == "flat"


settings = Settings()
