"""
Structured Logging Utilities

Configures the ``SourceFetch`` logger: a plain console handler for operators
and, optionally, a JSON-lines file handler carrying the ``stage`` of each
record (``tunnel``, ``resolve``, ``download``, ``extract``, ...).
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Optional, TextIO

from .settings import LoggingSettings

LOGGER_NAME = "SourceFetch"

_STANDARD_ATTRS = set(logging.makeLogRecord({}).__dict__) | {"message", "asctime"}


class JSONFormatter(logging.Formatter):
    """Formatter emitting JSON structured logs.

    Examples:
        >>> formatter = JSONFormatter()
        >>> isinstance(formatter.format(logging.makeLogRecord({'msg': 'test'})), str)
        True
    """

    def format(self, record: logging.LogRecord) -> str:
        """Serialize a logging record into a JSON line."""
        now = datetime.now(timezone.utc)
        log_obj: Dict[str, object] = {
            "timestamp": now.isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "message": record.getMessage(),
            "stage": getattr(record, "stage", None),
        }
        for key, value in record.__dict__.items():
            if key in _STANDARD_ATTRS or key in log_obj:
                continue
            log_obj[key] = value if isinstance(value, (int, float, bool, str)) else str(value)
        if record.exc_info:
            log_obj["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(log_obj)


def setup_logging(
    config: Optional[LoggingSettings] = None,
    *,
    stream: Optional[TextIO] = None,
    log_file: Optional[Path] = None,
) -> logging.Logger:
    """Configure console and optional JSON file handlers on the package logger.

    Handlers installed by a previous call are replaced, so this is safe to
    call repeatedly (the CLI test-suite does).

    Args:
        config: Logging settings; defaults to ``INFO`` without a log file.
        stream: Console stream, ``sys.stderr`` by default.
        log_file: Overrides ``config.log_file``.

    Returns:
        The configured ``SourceFetch`` logger.
    """
    config = config or LoggingSettings()
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(config.level_int())

    for handler in list(logger.handlers):
        if getattr(handler, "_sourcefetch_managed", False):
            logger.removeHandler(handler)
            handler.close()

    console_formatter = logging.Formatter("%(levelname)s: %(message)s")
    stream_handler = logging.StreamHandler(stream or sys.stderr)
    stream_handler.setFormatter(console_formatter)
    stream_handler._sourcefetch_managed = True  # type: ignore[attr-defined]
    logger.addHandler(stream_handler)

    target = log_file or config.log_file
    if target is not None:
        target.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(target, encoding="utf-8")
        file_handler.setFormatter(JSONFormatter())
        file_handler._sourcefetch_managed = True  # type: ignore[attr-defined]
        logger.addHandler(file_handler)

    logger.propagate = True
    return logger


__all__ = ["LOGGER_NAME", "JSONFormatter", "setup_logging"]
