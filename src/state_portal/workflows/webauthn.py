"""WebAuthn factor enrollment workflow.

    IDLE -> STARTING -> AWAITING_CREDENTIAL -> ACTIVATING -> {ENROLLED | ERROR}

plus SKIPPED when the user defers enrollment and ALREADY_ENROLLED when an
ACTIVE factor already exists. The credential ceremony itself runs on the
user's device; it is reached through an injected CredentialCreator.

Enrolling a factor is not a step-up: it never records mfa_verified.
"""

from __future__ import annotations

__all__ = [
    "CeremonyError",
    "CreatedCredential",
    "CredentialCreator",
    "EnrollmentState",
    "WebAuthnEnrollment",
    "build_creation_options",
    "describe_ceremony_error",
]

from dataclasses import dataclass
from enum import Enum
from typing import Any, Mapping, Protocol

from state_portal.constants import (
    FLAG_MFA_ENROLLMENT_SKIPPED,
    FLAG_POST_ENROLLMENT_REDIRECT,
    PATH_DASHBOARD,
    WEBAUTHN_CEREMONY_TIMEOUT_MS,
)
from state_portal.exceptions import EnrollmentFailedError, InvalidTransitionError, PortalError
from state_portal.idp.client import IdentityProviderClient
from state_portal.session.store import SessionStateStore
from state_portal.telemetry.audit import get_audit_logger

CANCELLED_MESSAGE = "Enrollment was cancelled or timed out. Please try again."
ALREADY_REGISTERED_MESSAGE = "This authenticator is already registered."
GENERIC_FAILURE_MESSAGE = "Failed to enroll biometric authenticator."


class EnrollmentState(str, Enum):
    IDLE = "idle"
    STARTING = "starting"
    AWAITING_CREDENTIAL = "awaiting_credential"
    ACTIVATING = "activating"
    ENROLLED = "enrolled"
    ERROR = "error"
    SKIPPED = "skipped"
    ALREADY_ENROLLED = "already_enrolled"


class CeremonyError(Exception):
    """The platform credential ceremony failed.

    Attributes:
        name: DOMException-style name (NotAllowedError, InvalidStateError, ...).
    """

    def __init__(self, name: str, message: str = "") -> None:
        super().__init__(message or name)
        self.name = name
        self.message = message


@dataclass(frozen=True)
class CreatedCredential:
    """Attestation returned by the authenticator (base64url)."""

    attestation: str
    client_data: str


class CredentialCreator(Protocol):
    """Runs navigator.credentials.create() (or an equivalent) on the device."""

    async def create(self, public_key: Mapping[str, Any]) -> CreatedCredential: ...


def build_creation_options(activation: Mapping[str, Any]) -> dict[str, Any]:
    """Build publicKey creation options from the provider's activation.

    Values are passed through unmodified (binary fields stay base64url);
    only the ceremony timeout is added.
    """
    rp = activation.get("rp") or {}
    user = activation.get("user") or {}
    return {
        "challenge": activation.get("challenge"),
        "rp": {"name": rp.get("name"), "id": rp.get("id")},
        "user": {
            "id": user.get("id"),
            "name": user.get("name"),
            "displayName": user.get("displayName"),
        },
        "pubKeyCredParams": activation.get("pubKeyCredParams"),
        "authenticatorSelection": activation.get("authenticatorSelection"),
        "attestation": activation.get("attestation"),
        "excludeCredentials": [
            {"type": "public-key", "id": cred.get("id")} for cred in activation.get("excludeCredentials") or []
        ],
        "timeout": WEBAUTHN_CEREMONY_TIMEOUT_MS,
    }


def describe_ceremony_error(error: BaseException) -> str:
    """User-facing message for a failed enrollment."""
    name = getattr(error, "name", None)
    if name == "NotAllowedError":
        return CANCELLED_MESSAGE
    if name == "InvalidStateError":
        return ALREADY_REGISTERED_MESSAGE
    message = getattr(error, "message", None) or str(error)
    return message or GENERIC_FAILURE_MESSAGE


class WebAuthnEnrollment:
    """Enrolls a platform authenticator for one signed-in user.

    Usage:
        enrollment = WebAuthnEnrollment(idp, store, user_id, creator)
        redirect = await enrollment.check_existing()
        if redirect is None:
            redirect = await enrollment.enroll()
    """

    def __init__(
        self,
        idp: IdentityProviderClient,
        store: SessionStateStore,
        user_id: str,
        creator: CredentialCreator,
        *,
        request_timeout_seconds: float | None = None,
    ) -> None:
        self._idp = idp
        self._store = store
        self._user_id = user_id
        self._creator = creator
        self._timeout = request_timeout_seconds
        self.state = EnrollmentState.IDLE
        self.error: str | None = None
        self.factor_id: str | None = None

    async def check_existing(self) -> str | None:
        """Resolve straight to the pending destination if a factor is already ACTIVE.

        Returns:
            Redirect target when already enrolled, else None. A failed factor
            lookup is logged by the adapter and treated as "not enrolled".
        """
        try:
            factors = await self._idp.list_factors(self._user_id, timeout=self._timeout)
        except PortalError:
            return None
        if any(f.is_active for f in factors):
            self.state = EnrollmentState.ALREADY_ENROLLED
            return self._take_redirect()
        return None

    async def enroll(self) -> str | None:
        """Run the full enrollment.

        Returns:
            Redirect target on success, None on failure (see `error`).
        """
        if self.state not in (EnrollmentState.IDLE, EnrollmentState.ERROR):
            raise InvalidTransitionError(self.state.value, "enroll")
        self.error = None
        audit = get_audit_logger()

        try:
            self.state = EnrollmentState.STARTING
            pending = await self._idp.begin_webauthn_enrollment(self._user_id, timeout=self._timeout)
            self.factor_id = pending.factor_id

            self.state = EnrollmentState.AWAITING_CREDENTIAL
            credential = await self._creator.create(build_creation_options(pending.activation))

            self.state = EnrollmentState.ACTIVATING
            await self._idp.complete_webauthn_enrollment(
                self._user_id,
                pending.factor_id,
                credential.attestation,
                credential.client_data,
                timeout=self._timeout,
            )
        except (CeremonyError, EnrollmentFailedError, PortalError) as e:
            self.state = EnrollmentState.ERROR
            self.error = describe_ceremony_error(e)
            audit.failure(
                "enrollment",
                "factor_enrollment_failed",
                self.error,
                principal_id=self._user_id,
                factor_type="webauthn",
                error_type=getattr(e, "name", None) or type(e).__name__,
            )
            return None

        self.state = EnrollmentState.ENROLLED
        audit.success("enrollment", "factor_enrolled", principal_id=self._user_id, factor_type="webauthn")
        return self._take_redirect()

    def skip(self) -> str:
        """Defer enrollment for this session."""
        self._store.set_flag(FLAG_MFA_ENROLLMENT_SKIPPED, True)
        self.state = EnrollmentState.SKIPPED
        return self._take_redirect()

    def _take_redirect(self) -> str:
        return self._store.pop_flag(FLAG_POST_ENROLLMENT_REDIRECT) or PATH_DASHBOARD
