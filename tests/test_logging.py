"""Tests for log redaction and trace context."""

import structlog

from geotrigger.core.logging import redact_credentials, short_key
from geotrigger.observability.tracing import TraceContext, get_trace_id, match_trace_id


def test_credentials_are_redacted() -> None:
    event = redact_credentials(
        None,
        "info",
        {
            "event": "Confirm received",
            "signature": "3045022100aa",
            "client_data": "eyJ0eXBlIjoi",
            "authorization": None,
            "rule_id": 7,
        },
    )

    assert event["signature"] == "[redacted]"
    assert event["client_data"] == "[redacted]"
    assert event["authorization"] is None
    assert event["rule_id"] == 7


def test_short_key() -> None:
    assert short_key("GABCDEFGHIJKLMNOP") == "GABCDEFG..."
    assert short_key("GSHORT") == "GSHORT"
    assert short_key(None) == ""


def test_match_trace_id_is_stable_per_match() -> None:
    first = match_trace_id("evt_1", 3, "GALICE")

    assert match_trace_id("evt_1", 3, "GALICE") == first
    assert match_trace_id("evt_1", 3, "GBOB") != first
    assert len(first) == 16


def test_trace_context_binds_and_restores() -> None:
    structlog.contextvars.clear_contextvars()

    with TraceContext("outer", phase="reconciliation"):
        with TraceContext("inner", rule_id=3) as trace_id:
            assert trace_id == "inner"
            assert get_trace_id() == "inner"
            bound = structlog.contextvars.get_contextvars()
            assert bound["trace_id"] == "inner"
            assert bound["rule_id"] == 3
            assert bound["phase"] == "reconciliation"

        bound = structlog.contextvars.get_contextvars()
        assert get_trace_id() == "outer"
        assert bound["trace_id"] == "outer"
        assert "rule_id" not in bound

    assert get_trace_id() == ""
    assert structlog.contextvars.get_contextvars() == {}
