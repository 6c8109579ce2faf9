"""Tests for the JSONL record source."""

import json
import uuid

import pytest

from factories import timeuuid

from apps.trace_loader.services.graph_builder import build_span_graph
from apps.trace_loader.sources.jsonl_source import JsonlRecordSource

STARTED_AT = 1_714_521_600_000_000


def _write_jsonl(path, records):
    path.write_text("\n".join(json.dumps(r) for r in records) + "\n\n", encoding="utf-8")
    return str(path)


@pytest.fixture
def export(tmp_path):
    first, second = uuid.uuid4(), uuid.uuid4()
    sessions = _write_jsonl(
        tmp_path / "sessions.jsonl",
        [
            {
                "session_id": str(first),
                "client": "10.0.0.7",
                "command": "QUERY",
                "parameters": {"query": "SELECT 1"},
                "started_at": "2024-05-01T00:00:00Z",
            },
            {"session_id": str(second), "command": "QUERY", "started_at": "2024-05-01T00:00:01Z"},
        ],
    )
    events = _write_jsonl(
        tmp_path / "events.jsonl",
        [
            {
                "session_id": str(first),
                "event_id": str(timeuuid(STARTED_AT + 20)),
                "activity": "late",
                "scylla_span_id": 2,
                "scylla_parent_id": 1,
            },
            {
                "session_id": str(first),
                "event_id": str(timeuuid(STARTED_AT + 10)),
                "activity": "early",
                "span_id": 1,
                "parent_span_id": 0,
            },
        ],
    )
    return sessions, events, first, second


class TestJsonlRecordSource:
    """Tests for JsonlRecordSource."""

    def test_fetch_sessions(self, export):
        sessions_path, events_path, first, second = export

        with JsonlRecordSource(sessions_path, events_path) as source:
            sessions = source.fetch_sessions()

        assert [s.session_id for s in sessions] == [first, second]
        assert sessions[0].query == "SELECT 1"
        assert sessions[0].started_at_micros == STARTED_AT

    def test_fetch_sessions_limit(self, export):
        sessions_path, events_path, first, _ = export

        sessions = JsonlRecordSource(sessions_path, events_path).fetch_sessions(limit=1)

        assert [s.session_id for s in sessions] == [first]

    def test_fetch_events_sorted_and_renamed(self, export):
        sessions_path, events_path, first, second = export
        source = JsonlRecordSource(sessions_path, events_path)

        events = source.fetch_events(first)

        assert [e.activity for e in events] == ["early", "late"]
        assert (events[0].span_id, events[0].parent_span_id) == (1, None)
        assert (events[1].span_id, events[1].parent_span_id) == (2, 1)
        assert source.fetch_events(second) == []

    def test_invalid_line_reports_position(self, tmp_path):
        sessions = tmp_path / "sessions.jsonl"
        sessions.write_text('{"session_id": "x"\n', encoding="utf-8")
        events = _write_jsonl(tmp_path / "events.jsonl", [])

        with pytest.raises(ValueError, match="sessions.jsonl:1"):
            JsonlRecordSource(str(sessions), events).fetch_sessions()

    def test_string_span_ids_with_zero_sentinel(self, tmp_path):
        session_id = uuid.uuid4()
        sessions = _write_jsonl(
            tmp_path / "sessions.jsonl",
            [{"session_id": str(session_id), "started_at": "2024-05-01T00:00:00Z"}],
        )
        events = _write_jsonl(
            tmp_path / "events.jsonl",
            [
                {
                    "session_id": str(session_id),
                    "event_id": str(timeuuid(STARTED_AT + 1)),
                    "activity": "Parsing a statement",
                    "scylla_span_id": "0",
                    "scylla_parent_id": "0",
                },
                {
                    "session_id": str(session_id),
                    "event_id": str(timeuuid(STARTED_AT + 2)),
                    "activity": "Sending a message",
                    "scylla_span_id": "7",
                    "scylla_parent_id": "0",
                },
            ],
        )

        fetched = JsonlRecordSource(sessions, events).fetch_events(session_id)
        tree = build_span_graph(fetched)

        assert [(e.span_id, e.parent_span_id) for e in fetched] == [(None, None), (7, None)]
        assert list(tree) == [7]
        assert [node.id for node in tree.top_level()] == [7]
        assert tree.root.event_count == 1

    def test_incomplete_session_row_is_skipped(self, tmp_path):
        complete, incomplete = uuid.uuid4(), uuid.uuid4()
        sessions = _write_jsonl(
            tmp_path / "sessions.jsonl",
            [
                {"session_id": str(incomplete), "command": "QUERY"},
                {"session_id": str(complete), "started_at": "2024-05-01T00:00:00Z"},
                {"session_id": str(uuid.uuid4()), "started_at": None},
            ],
        )
        events = _write_jsonl(tmp_path / "events.jsonl", [])

        fetched = JsonlRecordSource(sessions, events).fetch_sessions()

        assert [s.session_id for s in fetched] == [complete]
