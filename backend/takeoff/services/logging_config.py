"""
Structured logging for the takeoff engine.

Engine modules only call ``logging.getLogger("takeoff-...")``. Where the
records go is the host's choice: setup_logging() for explicit settings,
configure_from_env() to read them from the environment / a ``.env`` file.
"""
import json
import logging
import os
import sys
from datetime import datetime, timezone
from typing import Optional, TextIO

from dotenv import load_dotenv

from takeoff import config

# BOM context a caller may attach with ``extra={...}``
_EXTRA_FIELDS = ("item_set", "assembly_id", "node_id", "duration_ms", "line_count")

_TEXT_FORMAT = "%(asctime)s [%(name)s] %(levelname)s: %(message)s"


class JSONFormatter(logging.Formatter):
    """One JSON object per record."""

    def format(self, record):
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "location": f"{record.module}:{record.funcName}:{record.lineno}",
        }
        entry.update({name: getattr(record, name) for name in _EXTRA_FIELDS if hasattr(record, name)})
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


def setup_logging(
    level: str = config.LOG_LEVEL,
    json_output: bool = True,
    stream: Optional[TextIO] = None,
) -> logging.Handler:
    """Route every ``takeoff-*`` logger through a single root handler."""
    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setFormatter(JSONFormatter() if json_output else logging.Formatter(_TEXT_FORMAT))

    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    root.handlers = [handler]
    return handler


def configure_from_env(dotenv_path: Optional[str] = None) -> logging.Handler:
    """Apply LOG_LEVEL / LOG_FORMAT (``json`` or ``text``), loading ``.env`` first."""
    load_dotenv(dotenv_path)
    level = os.getenv("LOG_LEVEL", config.LOG_LEVEL)
    json_output = os.getenv("LOG_FORMAT", config.LOG_FORMAT).lower() != "text"
    return setup_logging(level=level, json_output=json_output)
