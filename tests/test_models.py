"""Tests for the tracing table row models."""

import ipaddress
import uuid
from datetime import datetime, timezone

import pytest

from factories import SESSION_ID, make_session, timeuuid

from apps.trace_loader.models.span_models import LoadSummary, SessionResult, SessionStatus
from apps.trace_loader.models.trace_models import (
    TraceEvent,
    TraceSession,
    datetime_to_micros,
    timeuuid_to_micros,
)


def test_timeuuid_to_micros():
    assert timeuuid_to_micros(timeuuid(1_714_521_600_000_123)) == 1_714_521_600_000_123
    assert timeuuid_to_micros(uuid.uuid4()) is None
    assert timeuuid_to_micros(None) is None


def test_datetime_to_micros_treats_naive_as_utc():
    aware = datetime(2024, 5, 1, 0, 0, 0, 250, tzinfo=timezone.utc)
    naive = datetime(2024, 5, 1, 0, 0, 0, 250)

    assert datetime_to_micros(aware) == 1_714_521_600_000_250
    assert datetime_to_micros(naive) == datetime_to_micros(aware)


class TestTraceEvent:
    """Tests for TraceEvent."""

    def test_zero_span_ids_mean_absent(self):
        event = TraceEvent(session_id=SESSION_ID, span_id=0, parent_span_id=0)

        assert event.span_id is None
        assert event.parent_span_id is None

    @pytest.mark.parametrize("zero", ["0", 0, 0.0, None])
    def test_zero_sentinel_in_any_encoding(self, zero):
        event = TraceEvent(session_id=SESSION_ID, span_id=zero, parent_span_id=zero)

        assert event.span_id is None
        assert event.parent_span_id is None

    def test_string_span_ids_are_coerced(self):
        event = TraceEvent(session_id=SESSION_ID, span_id="7", parent_span_id="9223372036854775807")

        assert event.span_id == 7
        assert event.parent_span_id == 9223372036854775807

    def test_null_activity_and_inet_source(self):
        event = TraceEvent(
            session_id=SESSION_ID,
            activity=None,
            source=ipaddress.ip_address("10.0.0.2"),
            span_id=7,
        )

        assert event.activity == ""
        assert event.source == "10.0.0.2"
        assert event.span_id == 7

    def test_event_time(self):
        event = TraceEvent(session_id=SESSION_ID, event_id=timeuuid(42))

        assert event.event_time_micros() == 42


class TestTraceSession:
    """Tests for TraceSession."""

    def test_naive_started_at_becomes_utc(self):
        session = TraceSession(session_id=SESSION_ID, started_at=datetime(2024, 5, 1))

        assert session.started_at.tzinfo == timezone.utc
        assert session.started_at_micros == 1_714_521_600_000_000

    def test_null_parameters(self):
        session = TraceSession(session_id=SESSION_ID, started_at=datetime(2024, 5, 1), parameters=None)

        assert session.parameters == {}
        assert session.query is None

    def test_span_name_fallbacks(self):
        assert make_session().span_name == "SELECT * FROM ks.t WHERE id = ?"
        assert make_session(parameters={}).span_name == "QUERY"
        assert make_session(parameters={}, command=None).span_name == "Execute CQL3 prepared query"
        assert make_session(parameters={}, command=None, request=None).span_name == "session"

    def test_inet_client(self):
        session = make_session(client=ipaddress.ip_address("192.168.1.5"))

        assert session.client == "192.168.1.5"


def test_load_summary_counts():
    summary = LoadSummary()
    summary.add(SessionResult(session_id=uuid.uuid4(), status=SessionStatus.COMPLETED, span_count=3))
    summary.add(SessionResult(session_id=uuid.uuid4(), status=SessionStatus.MALFORMED))
    summary.add(SessionResult(session_id=uuid.uuid4(), status=SessionStatus.FAILED))

    assert summary.sessions_total == 3
    assert (summary.sessions_completed, summary.sessions_malformed, summary.sessions_failed) == (1, 1, 1)
    assert summary.spans_total == 3
    assert not summary.ok
