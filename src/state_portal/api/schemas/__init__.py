"""API schemas (Pydantic models) for request/response validation.

Centralized schemas for all API routes.
"""

from __future__ import annotations

# Dependents schemas
from state_portal.api.schemas.dependents import (
    AddDependentRequest,
    AddDependentResponse,
    ChildCheckRequest,
    ChildCheckResponse,
    ChildCreateRequest,
    ChildCreateResponse,
    CompleteVerificationRequest,
    CompleteVerificationResponse,
    DependentResponse,
    DependentsResponse,
)

# MFA schemas
from state_portal.api.schemas.mfa import (
    ChallengeRequest,
    ChallengeResponse,
    FactorResponse,
    FactorsResponse,
    PollRequest,
    VerifyCodeRequest,
    VerifyResponse,
    WebAuthnActivateRequest,
    WebAuthnActivateResponse,
    WebAuthnChallengeResponse,
    WebAuthnEnrollRequest,
    WebAuthnEnrollResponse,
    WebAuthnVerifyRequest,
)

# Session schemas
from state_portal.api.schemas.session import (
    AccessCheckRequest,
    AccessDecisionResponse,
    SessionCreateRequest,
    SessionResponse,
    StepUpCallbackRequest,
    StepUpResponse,
)

# Verification schemas
from state_portal.api.schemas.verification import (
    MarkVerifiedRequest,
    MarkVerifiedResponse,
    VendorTokenRequest,
    VendorTokenResponse,
)

__all__ = [
    # Dependents
    "AddDependentRequest",
    "AddDependentResponse",
    "ChildCheckRequest",
    "ChildCheckResponse",
    "ChildCreateRequest",
    "ChildCreateResponse",
    "CompleteVerificationRequest",
    "CompleteVerificationResponse",
    "DependentResponse",
    "DependentsResponse",
    # MFA
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
    # Session
    "AccessCheckRequest",
    "AccessDecisionResponse",
    "SessionCreateRequest",
    "SessionResponse",
    "StepUpCallbackRequest",
    "StepUpResponse",
    # Verification
    "MarkVerifiedRequest",
    "MarkVerifiedResponse",
    "VendorTokenRequest",
    "VendorTokenResponse",
]
