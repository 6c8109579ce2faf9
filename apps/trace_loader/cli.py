"""
Command line entry point.

    scylla-trace-loader --contact-points 10.0.0.1,10.0.0.2 --limit 100
    scylla-trace-loader --jsonl-sessions sessions.jsonl --jsonl-events events.jsonl --exporter console
"""

from __future__ import annotations

import argparse
import logging
import sys
from typing import List, Optional

from .backend.otel_backend import OtelTracingBackend
from .config import Settings
from .services.trace_loader import TraceLoader
from .sources.base import RecordSource
from .sources.jsonl_source import JsonlRecordSource
from .sources.scylla_source import ScyllaRecordSource
from .utils.otel import configure_logging, setup_tracer_provider

logger = logging.getLogger("traceloader.cli")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="scylla-trace-loader",
        description="Rebuild span trees from Scylla system_traces and export them as OpenTelemetry traces.",
    )
    parser.add_argument("--contact-points", help="Comma separated Scylla hosts")
    parser.add_argument("--port", type=int, help="Scylla native protocol port")
    parser.add_argument("--keyspace", help="Keyspace holding sessions/events")
    parser.add_argument("--limit", type=int, help="Max sessions to load (0 = all)")
    parser.add_argument("--mode", choices=["hierarchical", "flat"])
    parser.add_argument("--exporter", choices=["otlp", "console"])
    parser.add_argument("--endpoint", help="OTLP gRPC collector endpoint")
    parser.add_argument("--service-name", help="service.name for emitted spans")
    parser.add_argument("--jsonl-sessions", help="Replay sessions from a JSONL export")
    parser.add_argument("--jsonl-events", help="Replay events from a JSONL export")
    parser.add_argument("--log-level", help="Logging level (default INFO)")
    return parser


def settings_from_args(args: argparse.Namespace) -> Settings:
    cfg = Settings()
    if args.contact_points:
        cfg.SCYLLA_CONTACT_POINTS = args.contact_points
    if args.port:
        cfg.SCYLLA_PORT = args.port
    if args.keyspace:
        cfg.SCYLLA_KEYSPACE = args.keyspace
    if args.limit is not None:
        cfg.SESSION_LIMIT = max(args.limit, 0)
    if args.mode:
        cfg.MODE = args.mode
    if args.exporter:
        cfg.EXPORTER = args.exporter
    if args.endpoint:
        cfg.OTEL_ENDPOINT = args.endpoint
    if args.service_name:
        cfg.OTEL_SERVICE_NAME = args.service_name
    if args.log_level:
        cfg.LOG_LEVEL = args.log_level
    return cfg


def build_source(args: argparse.Namespace, cfg: Settings) -> RecordSource:
    if args.jsonl_sessions or args.jsonl_events:
        if not (args.jsonl_sessions and args.jsonl_events):
            raise SystemExit("--jsonl-sessions and --jsonl-events must be given together")
        return JsonlRecordSource(args.jsonl_sessions, args.jsonl_events)
    return ScyllaRecordSource.from_settings(cfg)


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    cfg = settings_from_args(args)
    configure_logging(cfg.LOG_LEVEL)

    provider = setup_tracer_provider(cfg)
    backend = OtelTracingBackend(provider)

    try:
        with build_source(args, cfg) as source:
            summary = TraceLoader(source, backend, cfg).run()
    finally:
        # Flush the batch processor before exiting.
        provider.shutdown()

    print(summary.model_dump_json(indent=2))
    return 0 if summary.ok else 1


if __name__ == "__main__":
    sys.exit(main())
