"""Error responses for the HTTP API.

Every error leaves the API in one shape:

    {
        "detail": {
            "code": "MFA_REJECTED",
            "message": "MFA verification failed",
            "details": {"factor_result": "FAILED"}
        }
    }

Routes raise APIError for HTTP-level conditions (missing session, foreign
token). Adapters and workflows raise PortalError subclasses, which
portal_error_handler maps to a status and code. Request schema violations
keep FastAPI's 422 but gain the same envelope.

Usage:
    from state_portal.api.errors import APIError, ErrorCode

    raise APIError(status_code=401, code=ErrorCode.AUTH_REQUIRED, message="Session required")
"""

from __future__ import annotations

__all__ = [
    "APIError",
    "ErrorCode",
    "api_error_handler",
    "http_exception_handler",
    "portal_error_handler",
    "to_api_error",
    "validation_error_handler",
]

from enum import Enum
from typing import Any

from fastapi import HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from state_portal.exceptions import (
    ChallengeTimeoutError,
    EnrollmentFailedError,
    InvalidTransitionError,
    LinkConflictError,
    NotConfiguredError,
    NotFoundError,
    PortalError,
    StepUpRequiredError,
    UpstreamError,
    ValidationError,
    VendorError,
    VerificationFailedError,
)
from state_portal.telemetry.system_logger import get_system_logger


class ErrorCode(str, Enum):
    """Machine-readable error codes, prefixed by the area that produced them."""

    # Session and ID token (401, 403)
    AUTH_REQUIRED = "AUTH_REQUIRED"
    AUTH_FORBIDDEN = "AUTH_FORBIDDEN"
    AUTH_SESSION_INVALID = "AUTH_SESSION_INVALID"

    # Step-up (401, 403, 408)
    MFA_REJECTED = "MFA_REJECTED"
    MFA_TIMEOUT = "MFA_TIMEOUT"
    STEP_UP_REQUIRED = "STEP_UP_REQUIRED"

    # Factor enrollment (400)
    ENROLLMENT_FAILED = "ENROLLMENT_FAILED"

    # Identity verification (401)
    VERIFICATION_FAILED = "VERIFICATION_FAILED"

    # Dependent linking (409)
    DEPENDENT_LINK_CONFLICT = "DEPENDENT_LINK_CONFLICT"

    # Resources and workflow state (404, 409)
    NOT_FOUND = "NOT_FOUND"
    CONFLICT = "CONFLICT"
    INVALID_TRANSITION = "INVALID_TRANSITION"

    # Input (400, 422)
    VALIDATION_ERROR = "VALIDATION_ERROR"

    # Server and upstreams (500, 502, 503)
    INTERNAL_ERROR = "INTERNAL_ERROR"
    NOT_CONFIGURED = "NOT_CONFIGURED"
    UPSTREAM_ERROR = "UPSTREAM_ERROR"
    VENDOR_ERROR = "VENDOR_ERROR"
    SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"


def _envelope(code: ErrorCode, message: str, details: dict[str, Any] | None = None) -> dict[str, Any]:
    body: dict[str, Any] = {"code": code.value, "message": message}
    if details:
        body["details"] = details
    return body


class APIError(HTTPException):
    """HTTPException carrying an ErrorCode and optional details.

    Attributes:
        code: Error code.
        error_message: Message shown to the caller.
        error_details: Extra context (e.g. {"retryable": True}).
    """

    def __init__(
        self,
        status_code: int,
        code: ErrorCode,
        message: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        self.code = code
        self.error_message = message
        self.error_details = details
        super().__init__(status_code=status_code, detail=_envelope(code, message, details))


def _respond(status_code: int, detail: Any) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"detail": detail})


async def api_error_handler(request: Request, exc: APIError) -> JSONResponse:
    return _respond(exc.status_code, exc.detail)


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """422 with every schema violation listed; the message names the first one.

    A single violation reads "<field>: <reason>" (the "body" prefix is dropped).
    """
    errors = exc.errors()
    if len(errors) == 1:
        field = ".".join(str(part) for part in errors[0].get("loc", ()) if part != "body")
        reason = errors[0].get("msg", "Invalid value")
        message = f"{field}: {reason}" if field else reason
    else:
        message = f"{len(errors)} validation errors"

    detail = _envelope(ErrorCode.VALIDATION_ERROR, message)
    detail["validation_errors"] = [
        {"loc": list(e.get("loc", ())), "msg": e.get("msg", ""), "type": e.get("type", "")} for e in errors
    ]
    return _respond(422, detail)


# Codes for HTTPExceptions raised by the framework (unknown route, wrong method)
_HTTP_STATUS_CODES: dict[int, ErrorCode] = {
    400: ErrorCode.VALIDATION_ERROR,
    401: ErrorCode.AUTH_REQUIRED,
    403: ErrorCode.AUTH_FORBIDDEN,
    404: ErrorCode.NOT_FOUND,
    409: ErrorCode.CONFLICT,
    502: ErrorCode.UPSTREAM_ERROR,
    503: ErrorCode.SERVICE_UNAVAILABLE,
}


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Put framework HTTPExceptions into the error envelope."""
    if isinstance(exc.detail, dict) and "code" in exc.detail:
        return _respond(exc.status_code, exc.detail)
    code = _HTTP_STATUS_CODES.get(exc.status_code, ErrorCode.INTERNAL_ERROR)
    return _respond(exc.status_code, _envelope(code, str(exc.detail or f"HTTP {exc.status_code}")))


# PortalError subclass -> (status, code). First match wins, so subclasses come first.
_PORTAL_ERROR_MAP: list[tuple[type[PortalError], int, ErrorCode]] = [
    (NotConfiguredError, 500, ErrorCode.NOT_CONFIGURED),
    (NotFoundError, 404, ErrorCode.NOT_FOUND),
    (ValidationError, 400, ErrorCode.VALIDATION_ERROR),
    (LinkConflictError, 409, ErrorCode.DEPENDENT_LINK_CONFLICT),
    (StepUpRequiredError, 403, ErrorCode.STEP_UP_REQUIRED),
    (EnrollmentFailedError, 400, ErrorCode.ENROLLMENT_FAILED),
    (VerificationFailedError, 401, ErrorCode.VERIFICATION_FAILED),
    (ChallengeTimeoutError, 408, ErrorCode.MFA_TIMEOUT),
    (InvalidTransitionError, 409, ErrorCode.INVALID_TRANSITION),
    (VendorError, 502, ErrorCode.VENDOR_ERROR),
    (UpstreamError, 502, ErrorCode.UPSTREAM_ERROR),
]


def to_api_error(exc: PortalError) -> APIError:
    """Convert a PortalError into a structured APIError."""
    details: dict[str, Any] = {"retryable": exc.retryable}
    if isinstance(exc, UpstreamError):
        if exc.status_code is not None:
            details["upstream_status"] = exc.status_code
        if exc.causes:
            details["causes"] = exc.causes
    if isinstance(exc, ValidationError) and exc.fields:
        details["fields"] = exc.fields
    if isinstance(exc, LinkConflictError) and exc.child_id:
        details["child_id"] = exc.child_id
    if isinstance(exc, StepUpRequiredError):
        details["redirect_to"] = exc.redirect_to
        details["reason"] = exc.reason
    if isinstance(exc, (EnrollmentFailedError, VerificationFailedError)) and exc.reason:
        details["reason"] = exc.reason

    for error_type, status_code, code in _PORTAL_ERROR_MAP:
        if isinstance(exc, error_type):
            return APIError(status_code=status_code, code=code, message=exc.message, details=details)
    return APIError(status_code=500, code=ErrorCode.INTERNAL_ERROR, message=exc.message, details=details)


async def portal_error_handler(request: Request, exc: PortalError) -> JSONResponse:
    """Handle domain errors raised by adapters and workflows."""
    api_error = to_api_error(exc)
    if api_error.status_code >= 500:
        get_system_logger().error(
            {
                "event": "api_request_failed",
                "message": exc.message,
                "error_type": exc.error_type,
                "path": request.url.path,
            }
        )
    return _respond(api_error.status_code, api_error.detail)
