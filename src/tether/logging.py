"""Structured JSON logging for tether.

Writes JSONL to <app-data>/tether.log with rotation (5MB, 3 backups).
"""

from __future__ import annotations

import json
import logging
import os
import threading
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any

_LOG_FILENAME = "tether.log"
_setup_lock = threading.Lock()
_MAX_BYTES = 5 * 1024 * 1024  # 5MB
_BACKUP_COUNT = 3

# Optional ``extra=`` keys copied into the JSON entry, in output order.
_EXTRA_FIELDS = ("session", "method", "server", "args_data", "duration_ms", "error")


class _JsonFormatter(logging.Formatter):
    """Format log records as single-line JSON."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "ts": self.formatTime(record, datefmt="%Y-%m-%dT%H:%M:%S"),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        for key in _EXTRA_FIELDS:
            if hasattr(record, key):
                entry["args" if key == "args_data" else key] = getattr(record, key)
        if record.exc_info and record.exc_info[1]:
            entry["exception"] = f"{type(record.exc_info[1]).__name__}: {record.exc_info[1]}"
        return json.dumps(entry, default=str)


def setup_logging(log_dir: Path, *, level: int = logging.INFO) -> logging.Logger:
    """Set up structured JSON logging to <log_dir>/tether.log.

    Returns the package logger. Calling again with the same directory is a
    no-op; calling with a different directory swaps the file handler.
    """
    logger = logging.getLogger("tether")
    log_path = log_dir / _LOG_FILENAME
    target_filename = os.path.abspath(str(log_path))

    with _setup_lock:
        for h in logger.handlers[:]:
            if not isinstance(h, RotatingFileHandler):
                continue
            if h.baseFilename == target_filename:
                return logger
            # Different path: drop the stale handler.
            logger.removeHandler(h)
            h.close()

        log_dir.mkdir(parents=True, exist_ok=True)
        handler = RotatingFileHandler(
            str(log_path),
            maxBytes=_MAX_BYTES,
            backupCount=_BACKUP_COUNT,
            encoding="utf-8",
        )
        handler.setFormatter(_JsonFormatter())
        logger.addHandler(handler)
        logger.setLevel(level)
    return logger
