"""Operational logger for events outside the workflow audit trail.

Typical records: a best-effort profile write that failed after a vendor
success, a step-up callback with an old auth_time, a superseded push poll,
an upstream call that returned an error.

Records go to stderr at INFO and above. Once configure_system_logger_file()
has run, WARNING and above are also appended to system.jsonl.
"""

from __future__ import annotations

__all__ = [
    "ConsoleFormatter",
    "configure_system_logger_file",
    "get_system_logger",
]

import logging
import sys
from pathlib import Path

from state_portal.constants import APP_NAME
from state_portal.telemetry.jsonl import JsonlFormatter

SYSTEM_LOGGER_NAME = f"{APP_NAME}.system"


class ConsoleFormatter(logging.Formatter):
    """"LEVEL: text" where text is the record's message, or its event name."""

    def format(self, record: logging.LogRecord) -> str:
        if isinstance(record.msg, dict):
            text = record.msg.get("message") or record.msg.get("event", "")
        else:
            text = record.getMessage()
        return f"{record.levelname}: {text}"


class _ConsoleHandler(logging.StreamHandler):
    """stderr handler; a distinct type so it is installed only once."""


def get_system_logger() -> logging.Logger:
    """Return the system logger, installing the stderr handler on first use.

    Example:
        >>> get_system_logger().warning({"event": "profile_update_failed", "message": "..."})
    """
    logger = logging.getLogger(SYSTEM_LOGGER_NAME)
    if not any(isinstance(h, _ConsoleHandler) for h in logger.handlers):
        logger.setLevel(logging.INFO)
        logger.propagate = False
        console = _ConsoleHandler(sys.stderr)
        console.setLevel(logging.INFO)
        console.setFormatter(ConsoleFormatter())
        logger.addHandler(console)
    return logger


def configure_system_logger_file(log_path: Path, console_level: str = "INFO") -> None:
    """Set the console level and start writing WARNING+ records to `log_path`.

    Repeated calls adjust the console level but add no second file handler.
    When the log directory cannot be created, logging continues on stderr only.

    Args:
        log_path: system.jsonl location.
        console_level: Level name for stderr output (e.g. "DEBUG", "WARNING").
    """
    logger = get_system_logger()
    level = logging.getLevelName(console_level.upper())
    if isinstance(level, int):
        logger.setLevel(min(level, logging.WARNING))
        for handler in logger.handlers:
            if isinstance(handler, _ConsoleHandler):
                handler.setLevel(level)

    if any(isinstance(h, logging.FileHandler) for h in logger.handlers):
        return
    try:
        log_path.parent.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        logger.warning({"event": "system_log_file_unavailable", "message": f"Logging to stderr only: {e}"})
        return

    file_handler = logging.FileHandler(log_path, mode="a", encoding="utf-8")
    file_handler.setLevel(logging.WARNING)
    file_handler.setFormatter(JsonlFormatter())
    logger.addHandler(file_handler)
