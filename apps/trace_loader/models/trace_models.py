"""
Pydantic models for rows read from the `system_traces` keyspace.

  sessions: session_id | client | command | coordinator | duration |
            parameters | request | request_size | response_size | started_at
  events:   session_id | event_id | activity | scylla_parent_id |
            scylla_span_id | source | source_elapsed | thread

The upstream tables use span id 0 to mean "no span / no parent"; the models
normalize that to None so nothing downstream has to know about the sentinel.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, Optional
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

# 100ns intervals between 1582-10-15 (UUID epoch) and 1970-01-01.
_UUID_EPOCH_OFFSET = 0x01B21DD213814000

_UNIX_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def timeuuid_to_micros(value: Optional[UUID]) -> Optional[int]:
    """
    Microseconds since the Unix epoch embedded in a version-1 UUID,
    or None for anything that isn't a time-based UUID.
    """
    if value is None or value.version != 1:
        return None
    return (value.time - _UUID_EPOCH_OFFSET) // 10


def datetime_to_micros(value: datetime) -> int:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    delta = value - _UNIX_EPOCH
    return (delta.days * 86_400 + delta.seconds) * 1_000_000 + delta.microseconds


def _inet_to_str(value: Any) -> Any:
    # cassandra-driver hands inet columns back as str already, but
    # ipaddress objects show up when rows are built by hand.
    if value is None or isinstance(value, str):
        return value
    return str(value)


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------

class TraceEvent(BaseModel):
    """One row of `system_traces.events`."""

    session_id: UUID
    event_id: Optional[UUID] = Field(
        default=None,
        description="timeuuid; its embedded timestamp is the event time",
    )
    activity: str = ""
    span_id: Optional[int] = Field(
        default=None,
        description="Span the event belongs to; None for session-level events",
    )
    parent_span_id: Optional[int] = Field(
        default=None,
        description="Parent of span_id; None when the span is top-level",
    )
    source: Optional[str] = None
    source_elapsed: Optional[int] = Field(
        default=None,
        description="Microseconds since the session started",
    )
    thread: Optional[str] = None

    @field_validator("span_id", "parent_span_id")
    @classmethod
    def _zero_is_absent(cls, value: Optional[int]) -> Optional[int]:
        # Runs after int coercion so "0" from a JSON export is caught too.
        return None if value in (None, 0) else value

    @field_validator("activity", mode="before")
    @classmethod
    def _null_activity(cls, value: Any) -> Any:
        return "" if value is None else value

    @field_validator("source", mode="before")
    @classmethod
    def _inet(cls, value: Any) -> Any:
        return _inet_to_str(value)

    def event_time_micros(self) -> Optional[int]:
        return timeuuid_to_micros(self.event_id)


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------

class TraceSession(BaseModel):
    """One row of `system_traces.sessions`."""

    session_id: UUID
    client: Optional[str] = None
    command: Optional[str] = None
    coordinator: Optional[str] = None
    duration: Optional[int] = None
    parameters: Dict[str, str] = Field(default_factory=dict)
    request: Optional[str] = None
    request_size: Optional[int] = None
    response_size: Optional[int] = None
    started_at: datetime

    @field_validator("client", "coordinator", mode="before")
    @classmethod
    def _inet(cls, value: Any) -> Any:
        return _inet_to_str(value)

    @field_validator("parameters", mode="before")
    @classmethod
    def _null_parameters(cls, value: Any) -> Any:
        return {} if value is None else value

    @field_validator("started_at")
    @classmethod
    def _assume_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    @property
    def started_at_micros(self) -> int:
        return datetime_to_micros(self.started_at)

    @property
    def query(self) -> Optional[str]:
        return self.parameters.get("query")

    @property
    def span_name(self) -> str:
        """Name given to every span reconstructed for this session."""
        return self.query or self.command or self.request or "session"
