"""JSONL log records for the system and workflow logs.

Every record is one JSON object per line:

    {"time": "2026-10-19T10:48:37.123Z", "level": "WARNING", "event": ..., ...}

Dict messages are written field by field. Principal identifiers and emails in
the top level of a record are replaced by a short SHA-256 prefix, which keeps
events for the same user correlatable without storing the raw value.
"""

from __future__ import annotations

__all__ = [
    "SENSITIVE_FIELDS",
    "JsonlFormatter",
    "hash_sensitive_id",
    "open_jsonl_logger",
    "redact_event_ids",
]

import hashlib
import json
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

SENSITIVE_FIELDS: frozenset[str] = frozenset({"principal_id", "parent_id", "child_id", "user_id", "email"})


def hash_sensitive_id(value: str, prefix_length: int = 8) -> str:
    """Replace an identifier with "sha256:<first prefix_length hex chars>"."""
    if not value:
        return "sha256:empty"
    return "sha256:" + hashlib.sha256(value.encode("utf-8")).hexdigest()[:prefix_length]


def redact_event_ids(event: dict[str, Any]) -> dict[str, Any]:
    """Copy of `event` with SENSITIVE_FIELDS hashed. Already hashed values are kept."""
    return {
        key: hash_sensitive_id(value)
        if key in SENSITIVE_FIELDS and isinstance(value, str) and value and not value.startswith("sha256:")
        else value
        for key, value in event.items()
    }


class JsonlFormatter(logging.Formatter):
    """One JSON object per record with a UTC millisecond timestamp and the level."""

    def format(self, record: logging.LogRecord) -> str:
        created = datetime.fromtimestamp(record.created, tz=timezone.utc)
        stamp = created.isoformat(timespec="milliseconds").replace("+00:00", "Z")
        fields = redact_event_ids(record.msg) if isinstance(record.msg, dict) else {"message": record.getMessage()}
        return json.dumps({"time": stamp, "level": record.levelname, **fields}, default=str)


def _prepare_log_dir(directory: Path) -> None:
    """Create the log directory, owner-only where the platform allows.

    Raises:
        OSError: If the directory cannot be created.
    """
    try:
        directory.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise OSError(f"Cannot create log directory {directory}: {e}") from e
    if sys.platform != "win32":
        try:
            directory.chmod(0o700)
        except OSError:
            pass  # Directory may be shared or owned by another user


def open_jsonl_logger(name: str, log_file: Path, level: int = logging.INFO) -> logging.Logger:
    """Point the named logger at `log_file`, replacing any handlers it had.

    The logger does not propagate, so records never reach the root logger.

    Raises:
        OSError: If the log directory cannot be created.
    """
    _prepare_log_dir(log_file.parent)

    logger = logging.getLogger(name)
    logger.setLevel(level)
    logger.propagate = False
    while logger.handlers:
        logger.handlers.pop().close()

    handler = logging.FileHandler(log_file, mode="a", encoding="utf-8")
    handler.setLevel(level)
    handler.setFormatter(JsonlFormatter())
    logger.addHandler(handler)
    return logger
