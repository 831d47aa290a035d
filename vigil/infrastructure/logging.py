"""
Centralized Logging

Architectural Intent:
- Provides structured JSON logging for all vigil components
- Components receive a logger explicitly; reservation workers get an adapter
  that stamps every record with the reservation id and node name
- Supports configurable log levels via CLI flags (--verbose, --debug)
"""

import json
import logging
import sys
from datetime import datetime, UTC
from typing import Optional

_CONTEXT_FIELDS = ("reservation_id", "node")


class JSONFormatter(logging.Formatter):
    """Structured JSON log formatter."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.now(UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for field_name in _CONTEXT_FIELDS:
            value = getattr(record, field_name, None)
            if value is not None:
                log_entry[field_name] = value
        if record.exc_info and record.exc_info[1]:
            log_entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_entry)


class ReservationLoggerAdapter(logging.LoggerAdapter):
    """Prefixes human-readable messages and attaches context fields."""

    def process(self, msg, kwargs):
        extra = dict(self.extra or {})
        extra.update(kwargs.get("extra") or {})
        kwargs["extra"] = extra
        return f"[reservation {extra.get('reservation_id')}] {msg}", kwargs


def reservation_logger(
    name: str, reservation_id: int, node: Optional[str] = None
) -> ReservationLoggerAdapter:
    return ReservationLoggerAdapter(
        logging.getLogger(name), {"reservation_id": reservation_id, "node": node}
    )


def configure_logging(
    level: int = logging.INFO,
    json_format: bool = False,
) -> None:
    """Configure logging for the vigil application.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, etc.)
        json_format: If True, use JSON structured output. Otherwise human-readable.
    """
    root = logging.getLogger("vigil")
    root.setLevel(level)

    # Remove existing handlers
    root.handlers.clear()

    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)

    if json_format:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(
            logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")
        )

    root.addHandler(handler)
