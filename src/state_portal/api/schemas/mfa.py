"""MFA step-up and factor API schemas."""

from __future__ import annotations

__all__ = [
    "ChallengeRequest",
    "ChallengeResponse",
    "FactorResponse",
    "FactorsResponse",
    "PollRequest",
    "VerifyCodeRequest",
    "VerifyResponse",
    "WebAuthnActivateRequest",
    "WebAuthnActivateResponse",
    "WebAuthnChallengeResponse",
    "WebAuthnEnrollRequest",
    "WebAuthnEnrollResponse",
    "WebAuthnVerifyRequest",
]

from typing import Any

from pydantic import BaseModel

from state_portal.idp.models import Challenge, Factor


class FactorResponse(BaseModel):
    """One enrolled factor."""

    id: str
    factor_type: str
    provider: str | None = None
    status: str | None = None
    profile: dict[str, Any] = {}

    @classmethod
    def from_factor(cls, factor: Factor) -> "FactorResponse":
        return cls(
            id=factor.id,
            factor_type=factor.factor_type,
            provider=factor.provider,
            status=factor.status,
            profile=factor.profile,
        )


class FactorsResponse(BaseModel):
    factors: list[FactorResponse]


class ChallengeRequest(BaseModel):
    """Issue or re-issue a challenge for a factor."""

    user_id: str
    factor_id: str


class ChallengeResponse(BaseModel):
    """Challenge state. `poll_url` is set for push factors."""

    factor_id: str
    factor_result: str
    poll_url: str | None = None

    @classmethod
    def from_challenge(cls, challenge: Challenge) -> "ChallengeResponse":
        return cls(
            factor_id=challenge.factor_id,
            factor_result=challenge.result.value,
            poll_url=challenge.poll_url,
        )


class PollRequest(BaseModel):
    """Fetch the latest status of a push challenge."""

    user_id: str
    factor_id: str
    poll_url: str | None = None


class VerifyCodeRequest(BaseModel):
    """Submit a one-time passcode."""

    user_id: str
    factor_id: str
    pass_code: str


class VerifyResponse(BaseModel):
    """Successful verification.

    `mfa_timestamp` is set when the step-up was recorded on the caller's session.
    """

    success: bool
    factor_result: str
    mfa_timestamp: int | None = None


class WebAuthnChallengeResponse(BaseModel):
    """Assertion challenge data for the platform authenticator."""

    factor_id: str
    factor_result: str
    challenge: str | None = None
    credential_id: str | None = None
    rp_id: str | None = None


class WebAuthnVerifyRequest(BaseModel):
    """Signed assertion (base64url fields)."""

    user_id: str
    factor_id: str
    client_data: str
    authenticator_data: str
    signature_data: str


class WebAuthnEnrollRequest(BaseModel):
    user_id: str


class WebAuthnEnrollResponse(BaseModel):
    """Pending factor and the provider's unmodified activation options."""

    factor_id: str
    activation: dict[str, Any]


class WebAuthnActivateRequest(BaseModel):
    """Attestation produced by the authenticator during credential creation."""

    user_id: str
    factor_id: str
    attestation: str
    client_data: str


class WebAuthnActivateResponse(BaseModel):
    success: bool
    factor_id: str
    status: str | None = None
