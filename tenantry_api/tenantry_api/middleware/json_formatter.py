"""JSON log formatter for log aggregation.

Activate by setting ``API_STRUCTURED_LOGGING=true``.  The application then
replaces the root handlers with a ``StreamHandler`` using this formatter and
the :class:`~tenantry_api.middleware.logging.CorrelationIdFilter`.

Output schema per line::

    {
        "timestamp": "2026-05-15T12:34:56.789012+00:00",
        "level": "INFO",
        "logger": "tenantry_api.access",
        "message": "request completed",
        "correlation_id": "…",     // present inside a request
        "request": { ... },        // RequestLoggingMiddleware
        "event": { ... },          // webhook processing
        "exc_info": "Traceback ..."
    }
"""

from __future__ import annotations

import json
import logging
import traceback
from datetime import UTC, datetime
from typing import Any

# Structured ``extra=`` keys copied verbatim into the payload.
_STRUCTURED_KEYS: tuple[str, ...] = ("request", "event")


class JSONFormatter(logging.Formatter):
    """Format log records as single-line JSON."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        correlation_id = getattr(record, "correlation_id", None)
        if correlation_id:
            payload["correlation_id"] = correlation_id

        for key in _STRUCTURED_KEYS:
            value = getattr(record, key, None)
            if value is not None:
                payload[key] = value

        if record.exc_info and record.exc_info[0] is not None:
            payload["exc_info"] = "".join(traceback.format_exception(*record.exc_info))

        return json.dumps(payload, default=str, ensure_ascii=False)


def configure_structured_logging(level: int = logging.INFO) -> None:
    """Route all records through one JSON handler on the root logger."""
    from tenantry_api.middleware.logging import CorrelationIdFilter

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    handler = logging.StreamHandler()
    handler.setFormatter(JSONFormatter())
    handler.addFilter(CorrelationIdFilter())
    root_logger.addHandler(handler)
    root_logger.setLevel(level)
