"""Logging configuration for feedloop.

Every module logs through ``get_logger(__name__)``. ``setup_logging`` is
called once by an entry point (the CLI, a cron wrapper) and attaches:

- a console handler on stderr, so ``--json`` output on stdout stays parseable
- a rotating text log and a rotating JSON-lines log under ``log_dir``

Batch, job, and failure ids ride along on records through ``LogContext``:

    with LogContext(batch_id=batch_id):
        logger.info("Export started", extra={"example_count": 12})
"""

from __future__ import annotations

import json
import logging
import logging.handlers
import sys
import traceback
from datetime import datetime, timezone
from pathlib import Path
from typing import IO, Optional

MAX_LOG_BYTES = 10 * 1024 * 1024
LOG_BACKUPS = 5
DEFAULT_LOG_DIR = Path("~/.feedloop/logs")

_STANDARD_ATTRS = set(
    logging.LogRecord("", 0, "", 0, "", None, None).__dict__.keys()
) | {"message", "asctime"}


class JSONFormatter(logging.Formatter):
    """One JSON object per record; extras and LogContext fields are flattened in."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc)
            .isoformat()
            .replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        for key, value in record.__dict__.items():
            if key in _STANDARD_ATTRS or key.startswith("_"):
                continue
            if key == "context" and isinstance(value, dict):
                entry.update(value)
            else:
                entry[key] = value

        if record.exc_info and record.exc_info[0] is not None:
            exc_type, exc, tb = record.exc_info
            entry["exception"] = {
                "type": exc_type.__name__,
                "message": str(exc),
                "traceback": traceback.format_exception(exc_type, exc, tb),
            }

        return json.dumps(entry, default=str)


def _rotating(path: Path, formatter: logging.Formatter) -> logging.Handler:
    handler = logging.handlers.RotatingFileHandler(path, maxBytes=MAX_LOG_BYTES, backupCount=LOG_BACKUPS)
    handler.setLevel(logging.DEBUG)
    handler.setFormatter(formatter)
    return handler


def setup_logging(
    name: str = "feedloop",
    level: int = logging.INFO,
    log_dir: Path | None = None,
    enable_json: bool = True,
    enable_console: bool = True,
    enable_rotation: bool = True,
    stream: Optional[IO[str]] = None,
) -> logging.Logger:
    """Configure the feedloop logger tree.

    Args:
        name: Root logger name
        level: Level for the logger and the console handler
        log_dir: Directory for log files (default: ~/.feedloop/logs/)
        enable_json: Write ``<name>.json.log``
        enable_console: Log to ``stream`` (stderr by default)
        enable_rotation: Write ``<name>.log``
        stream: Console stream override

    Returns:
        Configured logger
    """
    logger = logging.getLogger(name)
    logger.setLevel(level)
    logger.handlers.clear()

    if enable_console:
        console = logging.StreamHandler(stream or sys.stderr)
        console.setLevel(level)
        console.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(name)s - %(message)s", datefmt="%H:%M:%S"))
        logger.addHandler(console)

    if enable_rotation or enable_json:
        log_dir = (log_dir or DEFAULT_LOG_DIR).expanduser()
        log_dir.mkdir(parents=True, exist_ok=True)
        if enable_rotation:
            text_format = logging.Formatter(
                "%(asctime)s [%(levelname)s] %(name)s:%(funcName)s:%(lineno)d - %(message)s",
                datefmt="%Y-%m-%d %H:%M:%S",
            )
            logger.addHandler(_rotating(log_dir / f"{name}.log", text_format))
        if enable_json:
            logger.addHandler(_rotating(log_dir / f"{name}.json.log", JSONFormatter()))

    return logger


def get_logger(name: str) -> logging.Logger:
    """Logger under the feedloop namespace."""
    if name == "feedloop" or name.startswith("feedloop."):
        return logging.getLogger(name)
    return logging.getLogger(f"feedloop.{name}")


class LogContext:
    """Attach fields to every record created inside the block.

    Nested contexts merge, inner values win.
    """

    def __init__(self, **fields):
        self.fields = fields
        self._previous = None

    def __enter__(self) -> "LogContext":
        previous = logging.getLogRecordFactory()
        fields = self.fields

        def factory(*args, **kwargs):
            record = previous(*args, **kwargs)
            record.context = {**getattr(record, "context", {}), **fields}
            return record

        logging.setLogRecordFactory(factory)
        self._previous = previous
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        logging.setLogRecordFactory(self._previous)


__all__ = [
    "JSONFormatter",
    "LogContext",
    "get_logger",
    "setup_logging",
]
