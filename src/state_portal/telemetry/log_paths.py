"""Log file locations.

    <log_dir>/state-portal/
        ├── system.jsonl     # WARNING and above
        └── workflow.jsonl   # Step-up, verification and linking events
"""

from __future__ import annotations

__all__ = [
    "LOG_PATHS",
    "get_log_dir",
    "get_log_path",
]

from pathlib import Path
from typing import Literal

from platformdirs import user_log_dir

from state_portal.constants import APP_NAME

LOG_PATHS: dict[str, str] = {
    "system": "system.jsonl",
    "workflow": "workflow.jsonl",
}

LogType = Literal["system", "workflow"]


def get_log_dir(log_dir: str | None = None) -> Path:
    """Get the log directory (<log_dir>/state-portal/).

    Args:
        log_dir: Base log directory. If None, uses the platform default.
    """
    if log_dir:
        return Path(log_dir).expanduser() / APP_NAME
    return Path(user_log_dir(APP_NAME))


def get_log_path(log_type: LogType, log_dir: str | None = None) -> Path:
    """Get the path of one log file.

    Raises:
        ValueError: If log_type is unknown.
    """
    if log_type not in LOG_PATHS:
        raise ValueError(f"Unknown log type: {log_type}. Valid types: {', '.join(LOG_PATHS)}")
    return get_log_dir(log_dir) / LOG_PATHS[log_type]
