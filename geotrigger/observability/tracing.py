"""Trace ids for match ingestion and sweeps, carried in the structlog context."""

import hashlib
import uuid
from contextvars import ContextVar
from typing import Any

import structlog

_trace_id: ContextVar[str] = ContextVar("trace_id", default="")


def generate_trace_id() -> str:
    return uuid.uuid4().hex[:16]


def match_trace_id(event_id: str, rule_id: int, public_key: str) -> str:
    """Stable trace id for one geo-match.

    Redeliveries of the same (event, rule, wallet) log under the same id as
    the first delivery.
    """
    digest = hashlib.sha256(f"{event_id}:{rule_id}:{public_key}".encode()).hexdigest()
    return digest[:16]


def get_trace_id() -> str:
    """Current trace id, or an empty string outside a trace."""
    return _trace_id.get()


class TraceContext:
    """Binds a trace id, plus any extra fields, to every log line in the block.

    Nested contexts restore the outer trace id and fields on exit.
    """

    def __init__(self, trace_id: str | None = None, **context: Any):
        self._trace_id = trace_id or generate_trace_id()
        self._context = context
        self._token = None
        self._saved: dict[str, Any] = {}

    def __enter__(self) -> str:
        bound = structlog.contextvars.get_contextvars()
        self._saved = {key: bound[key] for key in ("trace_id", *self._context) if key in bound}
        self._token = _trace_id.set(self._trace_id)
        structlog.contextvars.bind_contextvars(trace_id=self._trace_id, **self._context)
        return self._trace_id

    def __exit__(self, *args: Any) -> None:
        _trace_id.reset(self._token)
        structlog.contextvars.unbind_contextvars("trace_id", *self._context)
        if self._saved:
            structlog.contextvars.bind_contextvars(**self._saved)
