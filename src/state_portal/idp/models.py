"""Identity provider data models.

Pydantic models for the management API payloads the portal reads and writes:
principals (users), MFA factors, challenges and WebAuthn payloads. Field
aliases follow the provider's camelCase wire names; unknown fields are
ignored so profile extensions never break parsing.
"""

from __future__ import annotations

__all__ = [
    "Challenge",
    "ChallengeResult",
    "Factor",
    "FactorStatus",
    "FactorType",
    "Principal",
    "PrincipalProfile",
    "WebAuthnActivation",
    "WebAuthnAssertion",
]

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class FactorType(str, Enum):
    """MFA factor types known to the portal."""

    PUSH = "push"
    SMS = "sms"
    CALL = "call"
    EMAIL = "email"
    TOTP = "token:software:totp"
    HOTP = "token:hotp"
    TOKEN = "token"
    WEBAUTHN = "webauthn"
    SIGNED_NONCE = "signed_nonce"
    QUESTION = "question"


class FactorStatus(str, Enum):
    ACTIVE = "ACTIVE"
    PENDING_ACTIVATION = "PENDING_ACTIVATION"
    NOT_SETUP = "NOT_SETUP"
    ENROLLED = "ENROLLED"
    INACTIVE = "INACTIVE"
    EXPIRED = "EXPIRED"


class ChallengeResult(str, Enum):
    """factorResult values returned by challenge and verify calls."""

    WAITING = "WAITING"
    SUCCESS = "SUCCESS"
    REJECTED = "REJECTED"
    TIMEOUT = "TIMEOUT"
    FAILED = "FAILED"
    CHALLENGE = "CHALLENGE"

    @property
    def is_terminal(self) -> bool:
        return self not in (ChallengeResult.WAITING, ChallengeResult.CHALLENGE)


class PrincipalProfile(BaseModel):
    """Principal profile, including the portal's custom attributes.

    The portal only ever mutates identityVerified, verifiedDate, parentId and
    dependents.
    """

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    email: str | None = None
    first_name: str | None = Field(default=None, alias="firstName")
    last_name: str | None = Field(default=None, alias="lastName")
    login: str | None = None
    second_email: str | None = Field(default=None, alias="secondEmail")
    identity_verified: bool = Field(default=False, alias="identityVerified")
    verified_date: str | None = Field(default=None, alias="verifiedDate")
    parent_id: str | None = Field(default=None, alias="parentId")
    dependents: list[str] = Field(default_factory=list)

    @property
    def display_name(self) -> str:
        return " ".join(p for p in (self.first_name, self.last_name) if p)


class Principal(BaseModel):
    """A user account owned by the identity provider."""

    model_config = ConfigDict(extra="ignore")

    id: str
    status: str | None = None
    profile: PrincipalProfile = Field(default_factory=PrincipalProfile)


class Factor(BaseModel):
    """An enrolled MFA factor. Only ACTIVE factors can be challenged."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str
    factor_type: str = Field(alias="factorType")
    provider: str | None = None
    status: str | None = None
    profile: dict[str, Any] = Field(default_factory=dict)

    @property
    def is_active(self) -> bool:
        return self.status == FactorStatus.ACTIVE.value

    @property
    def is_push(self) -> bool:
        return self.factor_type == FactorType.PUSH.value

    @property
    def is_webauthn(self) -> bool:
        return self.factor_type == FactorType.WEBAUTHN.value

    @property
    def credential_id(self) -> str | None:
        return self.profile.get("credentialId")


class Challenge(BaseModel):
    """State of one issued challenge.

    Attributes:
        factor_id: Factor the challenge was issued for.
        result: Latest factorResult.
        issued_at: When the challenge was first issued.
        poll_url: Push status link, when the provider returned one.
        challenge: WebAuthn challenge (base64url) for assertion ceremonies.
        credential_id: WebAuthn credential to allow.
        rp_id: WebAuthn relying party id (provider domain).
        user_id: Principal the challenge belongs to.
    """

    factor_id: str
    user_id: str | None = None
    result: ChallengeResult
    issued_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    poll_url: str | None = None
    challenge: str | None = None
    credential_id: str | None = None
    rp_id: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.result is ChallengeResult.SUCCESS


class WebAuthnAssertion(BaseModel):
    """Signed assertion returned by the platform authenticator (base64url)."""

    client_data: str
    authenticator_data: str
    signature_data: str

    def to_wire(self) -> dict[str, str]:
        return {
            "clientData": self.client_data,
            "authenticatorData": self.authenticator_data,
            "signatureData": self.signature_data,
        }


class WebAuthnActivation(BaseModel):
    """Pending WebAuthn factor plus the provider's unmodified activation options."""

    factor_id: str
    activation: dict[str, Any]
