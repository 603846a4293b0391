"""Structured logging for aberration estimation runs.

Console output for humans, optional JSON lines for later analysis.
"""

import json
import logging
import sys
import time
from pathlib import Path
from typing import Any


class JSONFormatter(logging.Formatter):
    """Format log records as JSON lines."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": time.time(),
            "level": record.levelname,
            "name": record.name,
            "message": record.getMessage(),
        }

        if hasattr(record, "extra_data"):
            log_data.update(record.extra_data)

        return json.dumps(log_data, default=str)


def setup_logging(log_path: Path | None = None, level: int = logging.INFO) -> None:
    """Configure the ``aberrlib`` logger hierarchy.

    Args:
        log_path: Optional path for a JSON lines log file.
        level: Logging level.
    """
    logger = logging.getLogger("aberrlib")
    logger.setLevel(level)
    logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(
        logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
    )
    logger.addHandler(console_handler)

    if log_path:
        log_path = Path(log_path)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_path)
        file_handler.setLevel(level)
        file_handler.setFormatter(JSONFormatter())
        logger.addHandler(file_handler)


def get_logger(name: str) -> "StructuredLogger":
    """Get a structured logger (usually ``get_logger(__name__)``)."""
    return StructuredLogger(logging.getLogger(name))


class StructuredLogger:
    """Wrapper attaching a structured ``data`` dict to log records."""

    def __init__(self, logger: logging.Logger):
        self.logger = logger

    def _log(self, level: int, msg: str, data: dict[str, Any] | None = None) -> None:
        extra = {"extra_data": data} if data else {}
        self.logger.log(level, msg, extra=extra)

    def debug(self, msg: str, data: dict[str, Any] | None = None) -> None:
        self._log(logging.DEBUG, msg, data)

    def info(self, msg: str, data: dict[str, Any] | None = None) -> None:
        self._log(logging.INFO, msg, data)

    def warning(self, msg: str, data: dict[str, Any] | None = None) -> None:
        self._log(logging.WARNING, msg, data)

    def error(self, msg: str, data: dict[str, Any] | None = None) -> None:
        self._log(logging.ERROR, msg, data)


__all__ = [
    "setup_logging",
    "get_logger",
    "StructuredLogger",
    "JSONFormatter",
]
