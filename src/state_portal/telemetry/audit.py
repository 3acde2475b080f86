"""Workflow audit logger.

Records identity-assurance outcomes to workflow.jsonl:
- Step-up authentication completed or failed
- Identity verification completed or failed (self and dependent)
- WebAuthn factor enrolled or enrollment failed
- Dependent created, linked or rejected with a link conflict

Principal ids and emails are hashed by the JSONL formatter. Until
configure_audit_log() is called, events are dropped by a NullHandler so that
library use and tests never write files.
"""

from __future__ import annotations

__all__ = [
    "WorkflowAuditLogger",
    "WorkflowEvent",
    "configure_audit_log",
    "get_audit_logger",
]

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, Field

from state_portal.constants import APP_NAME
from state_portal.telemetry.jsonl import open_jsonl_logger

WorkflowName = Literal["step_up", "verification", "enrollment", "dependent"]


class WorkflowEvent(BaseModel):
    """One audited workflow outcome.

    Attributes:
        workflow: Which workflow produced the event.
        event_type: Outcome name (e.g. "mfa_verified", "dependent_linked").
        status: "Success" or "Failure".
        principal_id: Subject of the workflow (hashed on write).
        parent_id: Authorizing parent for dependent workflows (hashed on write).
        child_id: Dependent principal (hashed on write).
        factor_type: Factor used or enrolled.
        error_type: Exception class or error category on failure.
        error_message: Human-readable failure description.
        details: Extra structured context.
    """

    time: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    workflow: WorkflowName
    event_type: str
    status: Literal["Success", "Failure"]
    principal_id: str | None = None
    parent_id: str | None = None
    child_id: str | None = None
    factor_type: str | None = None
    error_type: str | None = None
    error_message: str | None = None
    details: dict[str, Any] | None = None


class WorkflowAuditLogger:
    """Typed facade over the workflow audit log.

    Usage:
        audit = get_audit_logger()
        audit.success("step_up", "mfa_verified", principal_id=user_id, factor_type="push")
    """

    def __init__(self, logger: logging.Logger) -> None:
        self._logger = logger

    def log(self, event: WorkflowEvent) -> None:
        self._logger.info(event.model_dump(mode="json", exclude={"time"}, exclude_none=True))

    def success(self, workflow: WorkflowName, event_type: str, **fields: Any) -> None:
        self.log(WorkflowEvent(workflow=workflow, event_type=event_type, status="Success", **fields))

    def failure(
        self,
        workflow: WorkflowName,
        event_type: str,
        error: BaseException | str | None = None,
        **fields: Any,
    ) -> None:
        if isinstance(error, BaseException):
            fields.setdefault("error_type", type(error).__name__)
            fields.setdefault("error_message", str(error))
        elif error:
            fields.setdefault("error_message", error)
        self.log(WorkflowEvent(workflow=workflow, event_type=event_type, status="Failure", **fields))


_audit_logger: WorkflowAuditLogger | None = None


def get_audit_logger() -> WorkflowAuditLogger:
    """Get the singleton audit logger (drops events until configured)."""
    global _audit_logger
    if _audit_logger is None:
        logger = logging.getLogger(f"{APP_NAME}.workflow")
        logger.propagate = False
        if not logger.handlers:
            logger.addHandler(logging.NullHandler())
        _audit_logger = WorkflowAuditLogger(logger)
    return _audit_logger


def configure_audit_log(log_path: Path) -> WorkflowAuditLogger:
    """Route workflow audit events to a JSONL file.

    Args:
        log_path: Path to workflow.jsonl.

    Returns:
        The configured singleton audit logger.
    """
    global _audit_logger
    _audit_logger = WorkflowAuditLogger(open_jsonl_logger(f"{APP_NAME}.workflow", log_path))
    return _audit_logger
