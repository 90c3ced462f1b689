"""Logging setup.

Every module logs through `logging.getLogger(__name__)`. `configure_logging`
adds the current trace/request ids to each record so log lines of one
request can be correlated across components.
"""

from __future__ import annotations

import logging

from .tracing import get_request_id, get_trace_id

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s trace_id=%(trace_id)s request_id=%(request_id)s %(message)s"


class TraceContextFilter(logging.Filter):
    """Attach `trace_id` and `request_id` attributes to each record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.trace_id = get_trace_id() or "-"
        record.request_id = get_request_id() or "-"
        return True


def configure_logging(level: str = "INFO") -> None:
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    handler.addFilter(TraceContextFilter())

    root = logging.getLogger()
    root.handlers[:] = [handler]
    root.setLevel(level.upper())
