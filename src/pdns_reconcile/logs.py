"""
Logging setup for pdns-reconcile.

``text`` keeps the classic one-line format; ``json`` emits one JSON object per
record with the reconciliation context (zone, action, rrset, status,
attempts) that the executor attaches through ``extra``.
"""

from __future__ import annotations

import json
import logging
from typing import Any

CONTEXT_FIELDS = ("zone", "action", "rrset", "status", "attempts")
TEXT_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


class StructuredFormatter(logging.Formatter):
    """Emit log records as single-line JSON objects."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry: dict[str, Any] = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key in CONTEXT_FIELDS:
            val = getattr(record, key, None)
            if val is not None:
                log_entry[key] = val
        if record.exc_info and record.exc_info[1]:
            log_entry["exception"] = str(record.exc_info[1])
        return json.dumps(log_entry)


def configure_logging(level: str, fmt: str = "text") -> None:
    """Configure logging output."""
    handler = logging.StreamHandler()
    if fmt == "json":
        handler.setFormatter(StructuredFormatter())
    else:
        handler.setFormatter(logging.Formatter(TEXT_FORMAT))
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        handlers=[handler],
        force=True,
    )
