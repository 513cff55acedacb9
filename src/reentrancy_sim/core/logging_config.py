"""
Structured logging configuration for the simulator.

Library modules only create loggers (``logging.getLogger(__name__)``) and log
with ``extra={"event": ...}`` fields; handlers are installed here, by the CLI
or by an embedding application.

Usage:
    from reentrancy_sim.core.logging_config import setup_logging

    logger = setup_logging(name="reentrancy_sim", level="DEBUG")
    logger.info("Attack finished", extra={"event": "attack.finished", "steps": 11})
"""

from __future__ import annotations

import logging
import logging.handlers
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, TextIO

from pythonjsonlogger.json import JsonFormatter

# Attributes every LogRecord carries; anything else arrived through ``extra``.
_RESERVED_ATTRS = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime"}


class CustomJsonFormatter(JsonFormatter):
    """
    JSON formatter with service, environment and source fields.

    Adds timestamp, environment, and other metadata to all log records.
    """

    def __init__(
        self,
        fmt: str = "%(timestamp)s %(level)s %(name)s %(message)s",
        timestamp: bool = True,
        environment: str | None = None,
        service_name: str = "reentrancy_sim",
    ):
        super().__init__(fmt=fmt)
        self.add_timestamp = timestamp
        self.environment = environment or "simulation"
        self.service_name = service_name

    def add_fields(
        self,
        log_record: dict[str, Any],
        record: logging.LogRecord,
        message_dict: dict[str, Any],
    ) -> None:
        super().add_fields(log_record, record, message_dict)

        if self.add_timestamp and not log_record.get("timestamp"):
            log_record["timestamp"] = datetime.now(timezone.utc).isoformat()

        log_record["environment"] = self.environment
        log_record["service"] = self.service_name

        if not log_record.get("level"):
            log_record["level"] = record.levelname.lower()

        log_record["source"] = {
            "function": record.funcName,
            "module": record.module,
            "line": record.lineno,
        }


class KeyValueFormatter(logging.Formatter):
    """Plain-text formatter that appends ``extra`` fields as key=value pairs."""

    def __init__(self) -> None:
        super().__init__("%(asctime)s %(levelname)-8s %(name)s: %(message)s", "%H:%M:%S")

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        extras = {
            key: value
            for key, value in vars(record).items()
            if key not in _RESERVED_ATTRS and not key.startswith("_")
        }
        if extras:
            line += " " + " ".join(f"{key}={value}" for key, value in sorted(extras.items()))
        return line


def setup_logging(
    name: str = "reentrancy_sim",
    level: str = "INFO",
    log_file: str | None = None,
    json_format: bool = True,
    environment: str = "simulation",
    stream: TextIO | None = None,
    max_bytes: int = 10 * 1024 * 1024,
    backup_count: int = 5,
) -> logging.Logger:
    """
    Configure the simulator's logger tree.

    Args:
        name: Logger name (the package root by default)
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Optional path for a rotating JSON log file
        json_format: JSON on the console when True, key=value text otherwise
        environment: Environment identifier added to JSON records
        stream: Console stream (stderr by default so CLI output stays clean)
        max_bytes: Maximum log file size before rotation
        backup_count: Number of rotated files to keep

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)
    logger.setLevel(getattr(logging, level.upper()))
    logger.propagate = False

    # Remove existing handlers to avoid duplicates
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    json_formatter = CustomJsonFormatter(
        environment=environment,
        service_name=name.split(".")[0],
    )

    console_handler = logging.StreamHandler(stream or sys.stderr)
    console_handler.setFormatter(json_formatter if json_format else KeyValueFormatter())
    logger.addHandler(console_handler)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            filename=log_path,
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8",
        )
        file_handler.setFormatter(json_formatter)
        logger.addHandler(file_handler)

    return logger


def get_logger(name: str) -> logging.Logger:
    """Return a child logger of the package root."""
    if name == "reentrancy_sim" or name.startswith("reentrancy_sim."):
        return logging.getLogger(name)
    return logging.getLogger(f"reentrancy_sim.{name}")


__all__ = ["CustomJsonFormatter", "KeyValueFormatter", "get_logger", "setup_logging"]
