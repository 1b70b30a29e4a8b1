"""Logging setup for the developer platform API.

Two formatters are available:
  - JSON, one object per line, for log collectors in deployed environments
  - a readable single-line format for local development

The current organization (tenant) is added to every record emitted while
a request is being served.
"""


from __future__ import annotations

import json
import logging
import sys
from typing import Any

from flask import g, has_app_context


NOISY_LOGGERS = ("httpx", "httpcore", "werkzeug", "urllib3")


def _current_organization_id() -> str:
    if not has_app_context():
        return "-"
    organization_id = g.get("organization_id")
    return str(organization_id) if organization_id else "-"


class JSONFormatter(logging.Formatter):
    """Structured JSON log formatter."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": self.formatTime(record, "%Y-%m-%dT%H:%M:%S"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "organization_id": _current_organization_id(),
        }

        if record.exc_info and record.exc_info[1]:
            entry["exception"] = self.formatException(record.exc_info)

        entry = {k: v for k, v in entry.items() if v and v != "-"}
        return json.dumps(entry, ensure_ascii=False, default=str)


class HumanFormatter(logging.Formatter):
    """Readable formatter for development."""

    FORMAT = "%(asctime)s | %(levelname)-8s | %(name)-36s | [%(organization_id)s] %(message)s"

    def format(self, record: logging.LogRecord) -> str:
        record.organization_id = _current_organization_id()
        return super().format(record)


def setup_logging(level: str = "INFO", fmt: str = "text") -> None:
    """Configure application-wide logging.

    Args:
        level: Root log level name (``"DEBUG"``, ``"INFO"``...).
        fmt: ``"json"`` for structured output, anything else for the
            human-readable format.
    """
    root = logging.getLogger()
    root.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    if fmt == "json":
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(HumanFormatter(HumanFormatter.FORMAT, datefmt="%H:%M:%S"))

    root.setLevel(level)
    root.addHandler(handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
