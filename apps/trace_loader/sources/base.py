from __future__ import annotations

from abc import ABC, abstractmethod
from typing import List
from uuid import UUID

from ..models.trace_models import TraceEvent, TraceSession


class RecordSource(ABC):
    """Where finished sessions and their events are pulled from."""

    @abstractmethod
    def fetch_sessions(self, limit: int = 0) -> List[TraceSession]:
        """All sessions (at most `limit` when > 0)."""

    @abstractmethod
    def fetch_events(self, session_id: UUID) -> List[TraceEvent]:
        """A session's events, ordered by event_id ascending."""

    def close(self) -> None:
        pass

    def __enter__(self) -> "RecordSource":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
