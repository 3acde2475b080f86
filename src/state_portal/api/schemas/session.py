"""Portal session API schemas."""

from __future__ import annotations

__all__ = [
    "AccessCheckRequest",
    "AccessDecisionResponse",
    "SessionCreateRequest",
    "SessionResponse",
    "StepUpCallbackRequest",
    "StepUpResponse",
]

from datetime import datetime

from pydantic import BaseModel


class SessionCreateRequest(BaseModel):
    """Exchange a signed ID token for a portal session."""

    id_token: str


class SessionResponse(BaseModel):
    """Portal session bound to the token's principal.

    `session_id` is the bound id to send back in the X-Session-Id header.
    """

    session_id: str
    user_id: str
    created_at: datetime
    expires_at: datetime
    identity_verified: bool
    step_up_fresh: bool


class StepUpCallbackRequest(BaseModel):
    """ID token returned by an identity-provider-hosted step-up redirect."""

    id_token: str


class StepUpResponse(BaseModel):
    """Recorded step-up proof."""

    principal_id: str
    verified_at_ms: int
    redirect_to: str
    factor_id: str | None = None
    factor_type: str | None = None


class AccessCheckRequest(BaseModel):
    """Route to evaluate against the caller's claims and session flags."""

    path: str


class AccessDecisionResponse(BaseModel):
    """Route guard outcome. `redirect_to` is set only when denied."""

    allowed: bool
    known_route: bool
    redirect_to: str | None = None
    reason: str | None = None
