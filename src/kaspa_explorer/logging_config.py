"""
Kaspa Explorer - Structured Logging Configuration

JSON logging for deployment next to a node:
- JSON format for log aggregation (Loki, ELK)
- Optional size-based file rotation
- Plain text format for local development

Usage:
    from kaspa_explorer.logging_config import setup_logging

    setup_logging(level="INFO", log_format="json")
    logging.getLogger("kaspa_explorer.services.mempool").info(
        "Mempool snapshot refreshed", extra={"event": "mempool.refreshed", "size": 12}
    )
"""

from __future__ import annotations

import logging
import logging.handlers
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from pythonjsonlogger import jsonlogger

ROOT_LOGGER_NAME = "kaspa_explorer"
TEXT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """
    JSON formatter adding timestamp, environment, service and source location.

    Fields passed through ``extra=`` (``event``, ``address``, ...) are emitted
    as top level keys by the base formatter.
    """

    def __init__(
        self,
        fmt: str = "%(timestamp)s %(level)s %(name)s %(message)s",
        network: str | None = None,
        service_name: str = "kaspa-explorer",
    ):
        super().__init__(fmt=fmt)
        self.network = network
        self.service_name = service_name

    def add_fields(
        self,
        log_record: dict[str, Any],
        record: logging.LogRecord,
        message_dict: dict[str, Any],
    ) -> None:
        super().add_fields(log_record, record, message_dict)

        if not log_record.get("timestamp"):
            log_record["timestamp"] = datetime.now(timezone.utc).isoformat()

        log_record["service"] = self.service_name
        if self.network:
            log_record["network"] = self.network

        if not log_record.get("level"):
            log_record["level"] = record.levelname.lower()

        log_record["source"] = {
            "function": record.funcName,
            "module": record.module,
            "line": record.lineno,
        }


def setup_logging(
    level: str = "INFO",
    log_format: str = "json",
    log_file: str | None = None,
    network: str | None = None,
    max_bytes: int = 50 * 1024 * 1024,
    backup_count: int = 5,
) -> logging.Logger:
    """
    Configure the ``kaspa_explorer`` logger hierarchy.

    Args:
        level: Logging level name (DEBUG, INFO, WARNING, ERROR)
        log_format: ``json`` for structured output, ``text`` for humans
        log_file: Optional path of a rotating log file
        network: Network name stamped on every JSON record
        max_bytes: Maximum log file size before rotation
        backup_count: Number of rotated files to keep

    Returns:
        The configured package logger
    """
    logger = logging.getLogger(ROOT_LOGGER_NAME)
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))
    logger.propagate = False

    # Remove existing handlers to avoid duplicates when called twice
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    formatter: logging.Formatter
    if log_format == "json":
        formatter = CustomJsonFormatter(network=network)
    else:
        formatter = logging.Formatter(TEXT_FORMAT)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    if log_file:
        try:
            log_path = Path(log_file)
            log_path.parent.mkdir(parents=True, exist_ok=True)
            file_handler = logging.handlers.RotatingFileHandler(
                filename=log_file,
                maxBytes=max_bytes,
                backupCount=backup_count,
            )
            file_handler.setFormatter(formatter)
            logger.addHandler(file_handler)
        except OSError as e:
            logger.warning(
                "Could not create file handler for %s: %s",
                log_file,
                e,
                extra={"event": "logging.file_handler_failed"},
            )

    return logger
