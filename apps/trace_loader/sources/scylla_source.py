"""
Record source backed by a live Scylla / Cassandra cluster.

Reads the tracing tables Scylla fills when tracing is enabled on a request:

  CREATE TABLE system_traces.sessions (session_id uuid PRIMARY KEY, client inet,
      command text, coordinator inet, duration int, parameters map<text, text>,
      request text, request_size int, response_size int, started_at timestamp)

  CREATE TABLE system_traces.events (session_id uuid, event_id timeuuid,
      activity text, scylla_parent_id bigint, scylla_span_id bigint,
      source inet, source_elapsed int, thread text,
      PRIMARY KEY (session_id, event_id))
"""

from __future__ import annotations

import logging
import re
from typing import Any, Dict, List, Optional
from uuid import UUID

from cassandra.auth import PlainTextAuthProvider
from cassandra.cluster import Cluster
from cassandra.query import dict_factory

from ..config import Settings
from ..models.trace_models import TraceEvent, TraceSession
from .base import RecordSource

logger = logging.getLogger("traceloader.sources.scylla")

_KEYSPACE_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def session_from_row(row: Dict[str, Any]) -> TraceSession:
    data = dict(row)
    # map<text, text> comes back as the driver's own mapping type
    data["parameters"] = dict(data.get("parameters") or {})
    return TraceSession.model_validate(data)


def event_from_row(row: Dict[str, Any]) -> TraceEvent:
    data = dict(row)
    data["span_id"] = data.pop("scylla_span_id", None)
    data["parent_span_id"] = data.pop("scylla_parent_id", None)
    return TraceEvent.model_validate(data)


class ScyllaRecordSource(RecordSource):
    """
    Pulls sessions and events with the DataStax driver.

    The events query is prepared once and bound per session.
    """

    def __init__(
        self,
        contact_points: List[str],
        port: int = 9042,
        keyspace: str = "system_traces",
        username: Optional[str] = None,
        password: Optional[str] = None,
        cluster: Optional[Cluster] = None,
    ) -> None:
        if not _KEYSPACE_RE.match(keyspace):
            raise ValueError(f"Invalid keyspace name: {keyspace!r}")
        self.keyspace = keyspace

        if cluster is None:
            auth = PlainTextAuthProvider(username, password) if username else None
            cluster = Cluster(contact_points=contact_points, port=port, auth_provider=auth)
        self.cluster = cluster

        logger.info("Connecting to %s (keyspace=%s)", ",".join(contact_points), keyspace)
        self.session = self.cluster.connect(keyspace)
        self.session.row_factory = dict_factory
        self._select_events = self.session.prepare(
            f"SELECT * FROM {keyspace}.events WHERE session_id = ?"
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> "ScyllaRecordSource":
        return cls(
            contact_points=settings.contact_points,
            port=settings.SCYLLA_PORT,
            keyspace=settings.SCYLLA_KEYSPACE,
            username=settings.SCYLLA_USERNAME or None,
            password=settings.SCYLLA_PASSWORD or None,
        )

    def fetch_sessions(self, limit: int = 0) -> List[TraceSession]:
        query = f"SELECT * FROM {self.keyspace}.sessions"
        if limit > 0:
            query += f" LIMIT {int(limit)}"

        sessions: List[TraceSession] = []
        for row in self.session.execute(query):
            if row.get("started_at") is None:
                # Sessions are written when the request finishes; a row
                # without a start time is still being written.
                logger.debug("Skipping incomplete session row: %s", row.get("session_id"))
                continue
            sessions.append(session_from_row(row))

        logger.info("Fetched %d sessions", len(sessions))
        return sessions

    def fetch_events(self, session_id: UUID) -> List[TraceEvent]:
        rows = self.session.execute(self._select_events, (session_id,))
        events = [event_from_row(row) for row in rows]
        logger.debug("Fetched %d events for session %s", len(events), session_id)
        return events

    def close(self) -> None:
        self.cluster.shutdown()
