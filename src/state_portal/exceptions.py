"""Custom exceptions for state-portal.

This module contains all custom exceptions used throughout the package.
Exceptions are organized into three categories:

Configuration (fatal, not retryable by the user):
    - NotConfiguredError: Identity provider or vendor credentials missing

External call failures (retryable by re-invoking the triggering action):
    - UpstreamError: Non-2xx from the identity provider
    - VendorError: Non-2xx from the verification vendor
    - NotFoundError: Lookup miss (often a valid branch, not an error)
    - ChallengeTimeoutError: Push challenge exceeded its ceiling

Business and local failures:
    - ValidationError: Required input missing, no network call made
    - EnrollmentFailedError: Provider rejected a factor enrollment
    - VerificationFailedError: Vendor or provider rejected a verification
    - LinkConflictError: Child already linked to a different parent
    - StepUpRequiredError: Factor enrollment or a fresh step-up must come first
    - InvalidTransitionError: Event not accepted in the current workflow state

Usage:
    from state_portal.exceptions import UpstreamError, NotConfiguredError
"""

from __future__ import annotations

__all__ = [
    "ChallengeTimeoutError",
    "EnrollmentFailedError",
    "InvalidTransitionError",
    "LinkConflictError",
    "NotConfiguredError",
    "NotFoundError",
    "PortalError",
    "StepUpRequiredError",
    "UpstreamError",
    "ValidationError",
    "VendorError",
    "VerificationFailedError",
]

from typing import Any


class PortalError(Exception):
    """Base exception for all state-portal errors.

    Attributes:
        message: Human-readable description, safe to show to the user.
        retryable: Whether re-invoking the triggering action may succeed.
        error_type: Category string for logging and API error codes.
    """

    retryable: bool = True
    error_type: str = "portal_error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return self.message


class NotConfiguredError(PortalError):
    """A required external credential or endpoint is not configured.

    Raised before any network call is attempted, e.g. when the vendor API
    key or the identity provider service token is absent.
    """

    retryable = False
    error_type = "not_configured"


class UpstreamError(PortalError):
    """An external API returned a non-2xx response or could not be reached.

    Attributes:
        status_code: HTTP status from the upstream, None for transport errors.
        payload: Upstream error body (parsed JSON or raw text) for diagnostics.
    """

    error_type = "upstream_error"

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        payload: Any = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.payload = payload

    @property
    def causes(self) -> list[str]:
        """Error cause summaries from an identity provider payload."""
        if not isinstance(self.payload, dict):
            return []
        causes = self.payload.get("errorCauses") or []
        return [c.get("errorSummary", str(c)) for c in causes if isinstance(c, dict)]

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.message!r}, status_code={self.status_code!r})"


class VendorError(UpstreamError):
    """The verification vendor returned a non-2xx response or an unusable body."""

    error_type = "vendor_error"


class NotFoundError(PortalError):
    """A lookup found nothing (HTTP 404 from the identity provider)."""

    error_type = "not_found"


class ValidationError(PortalError):
    """Required input fields are missing or malformed.

    Local failure: no network call was made.

    Attributes:
        fields: Names of the offending fields.
    """

    retryable = False
    error_type = "validation_error"

    def __init__(self, message: str, *, fields: list[str] | None = None) -> None:
        super().__init__(message)
        self.fields = fields or []


class EnrollmentFailedError(PortalError):
    """The identity provider rejected a factor enrollment or activation.

    Attributes:
        reason: Provider reason code where available (e.g. "E0000068").
    """

    error_type = "enrollment_failed"

    def __init__(self, message: str, *, reason: str | None = None) -> None:
        super().__init__(message)
        self.reason = reason


class VerificationFailedError(PortalError):
    """Identity verification was rejected by the vendor or provider.

    Attributes:
        reason: Vendor reason code where available.
    """

    error_type = "verification_failed"

    def __init__(self, message: str, *, reason: str | None = None) -> None:
        super().__init__(message)
        self.reason = reason


class ChallengeTimeoutError(PortalError):
    """A push challenge was not answered before the polling ceiling."""

    error_type = "timeout"


class LinkConflictError(PortalError):
    """The child account is already linked to a different parent.

    Hard stop: not retryable without user intervention.
    """

    retryable = False
    error_type = "link_conflict"

    def __init__(self, message: str, *, child_id: str | None = None) -> None:
        super().__init__(message)
        self.child_id = child_id


class InvalidTransitionError(PortalError):
    """A workflow received an event that its current state does not accept."""

    retryable = False
    error_type = "invalid_transition"

    def __init__(self, state: str, event: str) -> None:
        super().__init__(f"Event {event} is not valid in state {state}")
        self.state = state
        self.event = event


class StepUpRequiredError(PortalError):
    """A sensitive operation was attempted without its authentication precondition.

    The caller must enroll a factor or complete a fresh step-up first, then
    repeat the operation.

    Attributes:
        redirect_to: Where the user goes to satisfy the precondition.
        reason: "mfa_enrollment_required" or "step_up_required".
    """

    error_type = "step_up_required"

    def __init__(self, message: str, *, redirect_to: str, reason: str) -> None:
        super().__init__(message)
        self.redirect_to = redirect_to
        self.reason = reason
