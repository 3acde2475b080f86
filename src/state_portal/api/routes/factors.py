"""Factor management API endpoints (listing and WebAuthn enrollment).

Enrollment never records a step-up: the user still completes a challenge
before a protected action.

Routes mounted at: /api
"""

from __future__ import annotations

__all__ = ["router"]

from fastapi import APIRouter

from state_portal.api.deps import ConfigDep, IdentityProviderDep
from state_portal.api.schemas import (
    FactorResponse,
    FactorsResponse,
    WebAuthnActivateRequest,
    WebAuthnActivateResponse,
    WebAuthnEnrollRequest,
    WebAuthnEnrollResponse,
)
from state_portal.telemetry.audit import get_audit_logger

router = APIRouter()


@router.get("/user/{user_id}/factors", response_model=FactorsResponse)
async def list_all_factors(user_id: str, idp: IdentityProviderDep, config: ConfigDep) -> FactorsResponse:
    """List every enrolled factor, including pending ones."""
    factors = await idp.list_factors(user_id, timeout=config.workflow.request_timeout_seconds)
    return FactorsResponse(factors=[FactorResponse.from_factor(f) for f in factors])


@router.post("/factors/webauthn/enroll", response_model=WebAuthnEnrollResponse)
async def begin_enrollment(
    body: WebAuthnEnrollRequest,
    idp: IdentityProviderDep,
    config: ConfigDep,
) -> WebAuthnEnrollResponse:
    """Start enrolling a WebAuthn factor.

    Returns:
        Pending factor id and the provider's activation options, unmodified.
    """
    activation = await idp.begin_webauthn_enrollment(
        body.user_id, timeout=config.workflow.request_timeout_seconds
    )
    return WebAuthnEnrollResponse(
        factor_id=activation.factor_id,
        activation=activation.activation,
    )


@router.post("/factors/webauthn/activate", response_model=WebAuthnActivateResponse)
async def activate_enrollment(
    body: WebAuthnActivateRequest,
    idp: IdentityProviderDep,
    config: ConfigDep,
) -> WebAuthnActivateResponse:
    """Activate a pending WebAuthn factor with the authenticator's attestation.

    Raises:
        EnrollmentFailedError: Surfaced as 400 when the provider rejects it.
    """
    factor = await idp.complete_webauthn_enrollment(
        body.user_id,
        body.factor_id,
        body.attestation,
        body.client_data,
        timeout=config.workflow.request_timeout_seconds,
    )
    get_audit_logger().success(
        "enrollment",
        "factor_enrolled",
        principal_id=body.user_id,
        factor_type=factor.factor_type,
    )
    return WebAuthnActivateResponse(success=True, factor_id=factor.id, status=factor.status)
