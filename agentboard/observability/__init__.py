"""Observability helpers."""

from agentboard.observability.otel import (
    initialize,
    shutdown,
    start_span,
    record_parser_failure,
    record_stream_event,
    record_watch_delta,
)

__all__ = [
    "initialize",
    "shutdown",
    "start_span",
    "record_parser_failure",
    "record_stream_event",
    "record_watch_delta",
]
