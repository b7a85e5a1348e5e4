"""Logging configuration utilities.

One call to :func:`configure_logging` sets up the root logger for the whole
pipeline. Components obtain their loggers through :func:`get_logger` using the
``triage.<area>`` naming scheme so verbosity can be tuned per stage.
"""

from __future__ import annotations

import json
import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from typing import Dict, Literal, Optional

LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()
LOG_OUTPUT = os.environ.get("LOG_OUTPUT", "stdout").lower()
LOG_FILE_PATH = os.environ.get("LOG_FILE_PATH", "logs/intel-triage.log")
LOG_FORMAT = os.environ.get("LOG_FORMAT", "text").lower()

LogOutput = Literal["stdout", "file", "both"]
LogFormat = Literal["text", "json"]

_TEXT_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(threadName)s | %(message)s"


class JsonFormatter(logging.Formatter):
    """Render each record as a single JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, object] = {
            "timestamp": self.formatTime(record),
            "level": record.levelname,
            "name": record.name,
            "thread": record.threadName,
            "message": record.getMessage(),
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False)


def configure_logging(
    level: str | int | None = None,
    output: LogOutput | None = None,
    file_path: str | None = None,
    log_format: LogFormat | None = None,
    overrides: Optional[Dict[str, str]] = None,
) -> None:
    """Configure application logging.

    Parameters
    ----------
    level:
        Root level as a name (e.g. ``"INFO"``) or number.
    output:
        ``"stdout"``, ``"file"`` or ``"both"``.
    file_path:
        Rotating log file used when output includes ``"file"``.
    log_format:
        ``"text"`` or ``"json"``.
    overrides:
        Optional per-logger levels, e.g. ``{"triage.fetchers": "DEBUG"}``.
    """
    # Resolved at call time so values loaded from .env in main() apply
    if level is None:
        level = os.environ.get("LOG_LEVEL", LOG_LEVEL)
    if log_format is None:
        log_format = (os.environ.get("LOG_FORMAT") or LOG_FORMAT).lower()
    if output is None:
        output = (os.environ.get("LOG_OUTPUT") or LOG_OUTPUT).lower()
    if file_path is None:
        file_path = os.environ.get("LOG_FILE_PATH") or LOG_FILE_PATH

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers.clear()

    formatter = JsonFormatter() if log_format == "json" else logging.Formatter(_TEXT_FORMAT)

    if output in ("stdout", "both"):
        stdout_handler = logging.StreamHandler(sys.stdout)
        stdout_handler.setFormatter(formatter)
        root_logger.addHandler(stdout_handler)

    if output in ("file", "both"):
        log_dir = os.path.dirname(file_path)
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)
        file_handler = RotatingFileHandler(file_path, maxBytes=10 * 1024 * 1024, backupCount=5)
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

    for name, name_level in (overrides or {}).items():
        logging.getLogger(name).setLevel(name_level)

    # urllib3 retries are noisy at DEBUG
    logging.getLogger("urllib3").setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance."""
    return logging.getLogger(name)
