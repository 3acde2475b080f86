"""Telemetry: operational system logging and the workflow audit trail."""

from __future__ import annotations

from state_portal.config import LoggingConfig
from state_portal.telemetry.audit import (
    WorkflowAuditLogger,
    WorkflowEvent,
    configure_audit_log,
    get_audit_logger,
)
from state_portal.telemetry.system_logger import configure_system_logger_file, get_system_logger
from state_portal.telemetry.log_paths import get_log_path

__all__ = [
    "WorkflowAuditLogger",
    "WorkflowEvent",
    "configure_audit_log",
    "configure_logging",
    "configure_system_logger_file",
    "get_audit_logger",
    "get_system_logger",
]


def configure_logging(config: LoggingConfig) -> None:
    """Attach the system and workflow log files described by `config`."""
    configure_system_logger_file(get_log_path("system", config.log_dir), console_level=config.log_level)
    configure_audit_log(get_log_path("workflow", config.log_dir))
