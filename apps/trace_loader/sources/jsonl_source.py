from __future__ import annotations

import json
import logging
from collections import defaultdict
from typing import Dict, List
from uuid import UUID

from ..models.trace_models import TraceEvent, TraceSession
from .base import RecordSource

logger = logging.getLogger("traceloader.sources.jsonl")


class JsonlRecordSource(RecordSource):
    """
    Offline replay of exported tracing tables.

    Two JSONL files, one JSON object per line: sessions and events, using the
    same column names as the Scylla tables (scylla_span_id/scylla_parent_id
    or span_id/parent_span_id). Blank lines are skipped; a line that does not
    parse is an error, not silently dropped.
    """

    def __init__(self, sessions_path: str, events_path: str) -> None:
        self.sessions_path = sessions_path
        self.events_path = events_path
        self._events: Dict[UUID, List[TraceEvent]] = {}
        self._loaded = False

    @staticmethod
    def _read_lines(path: str) -> List[dict]:
        records = []
        with open(path, "r", encoding="utf-8") as f:
            for lineno, line in enumerate(f, start=1):
                line = line.strip()
                if not line:
                    continue
                try:
                    records.append(json.loads(line))
                except json.JSONDecodeError as exc:
                    raise ValueError(f"{path}:{lineno}: invalid JSON: {exc}") from exc
        return records

    def _load_events(self) -> None:
        grouped: Dict[UUID, List[TraceEvent]] = defaultdict(list)
        for record in self._read_lines(self.events_path):
            if "scylla_span_id" in record:
                record["span_id"] = record.pop("scylla_span_id")
            if "scylla_parent_id" in record:
                record["parent_span_id"] = record.pop("scylla_parent_id")
            event = TraceEvent.model_validate(record)
            grouped[event.session_id].append(event)

        for events in grouped.values():
            events.sort(key=lambda e: e.event_time_micros() or 0)

        self._events = dict(grouped)
        self._loaded = True
        logger.info(
            "Loaded %d events for %d sessions from %s",
            sum(len(v) for v in self._events.values()),
            len(self._events),
            self.events_path,
        )

    def fetch_sessions(self, limit: int = 0) -> List[TraceSession]:
        sessions: List[TraceSession] = []
        for record in self._read_lines(self.sessions_path):
            if record.get("started_at") is None:
                # Same rule as the live source: still being written.
                logger.debug("Skipping incomplete session row: %s", record.get("session_id"))
                continue
            sessions.append(TraceSession.model_validate(record))
        if limit > 0:
            sessions = sessions[:limit]
        return sessions

    def fetch_events(self, session_id: UUID) -> List[TraceEvent]:
        if not self._loaded:
            self._load_events()
        return list(self._events.get(session_id, []))
