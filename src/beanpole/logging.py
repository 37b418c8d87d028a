"""JSON-lines log file for the MCP server and the CLI's ``--log-dir``.

Everything under the ``beanpole`` logger lands in one rotating file
(<log_dir>/beanpole.log, 5MB x 3). Typical records:

* ``tool_call`` / ``tool_error`` from the MCP server, with the tool name,
  its arguments, ``duration_ms`` and the error code;
* engine and service warnings, such as the ancestor walk hitting its
  depth cap or a malformed bean being skipped from a listing.
"""

from __future__ import annotations

import json
import logging
import os
import threading
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any

from beanpole.config import LOG_FILENAME

_setup_lock = threading.Lock()
_MAX_BYTES = 5 * 1024 * 1024
_BACKUP_COUNT = 3

# ``extra=`` attribute on the record -> key in the JSON line.
_EXTRA_FIELDS = {
    "tool": "tool",
    "args_data": "args",
    "duration_ms": "duration_ms",
    "error": "error",
}


class _JsonFormatter(logging.Formatter):
    """One JSON object per record; the source module goes in ``logger``."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "ts": self.formatTime(record, datefmt="%Y-%m-%dT%H:%M:%S"),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        entry.update({key: getattr(record, attr) for attr, key in _EXTRA_FIELDS.items() if hasattr(record, attr)})
        if record.exc_info and record.exc_info[1]:
            entry["exception"] = str(record.exc_info[1])
        return json.dumps(entry, default=str)


def _resolve_level(level: str) -> int:
    value = logging.getLevelName(level.upper())
    return value if isinstance(value, int) else logging.INFO


def setup_logging(log_dir: Path, level: str = "INFO") -> logging.Logger:
    """Route the ``beanpole`` logger to <log_dir>/beanpole.log and return it.

    Calling again with the same directory is a no-op; a different directory
    moves the file handler there. An unknown *level* name means INFO.
    """
    logger = logging.getLogger("beanpole")
    log_path = log_dir / LOG_FILENAME
    target = os.path.abspath(str(log_path))

    with _setup_lock:
        logger.setLevel(_resolve_level(level))
        for existing in [h for h in logger.handlers if isinstance(h, RotatingFileHandler)]:
            if existing.baseFilename == target:
                return logger
            logger.removeHandler(existing)
            existing.close()

        log_dir.mkdir(parents=True, exist_ok=True)
        handler = RotatingFileHandler(str(log_path), maxBytes=_MAX_BYTES, backupCount=_BACKUP_COUNT)
        handler.setFormatter(_JsonFormatter())
        logger.addHandler(handler)
    return logger
