"""MFA step-up API endpoints.

Challenges are issued and verified against the identity provider on behalf
of the front end. A successful verification is recorded as a step-up proof
on the caller's session when the session belongs to the same principal.

Routes mounted at: /api/mfa
"""

from __future__ import annotations

__all__ = ["router"]

from fastapi import APIRouter

from state_portal.api.deps import (
    ConfigDep,
    CurrentSessionDep,
    IdentityProviderDep,
    session_store_for,
)
from state_portal.api.errors import APIError, ErrorCode
from state_portal.api.schemas import (
    ChallengeRequest,
    ChallengeResponse,
    FactorResponse,
    FactorsResponse,
    PollRequest,
    VerifyCodeRequest,
    VerifyResponse,
    WebAuthnChallengeResponse,
    WebAuthnVerifyRequest,
)
from state_portal.idp.models import Challenge, ChallengeResult, WebAuthnAssertion
from state_portal.session.manager import BoundSession
from state_portal.telemetry.audit import get_audit_logger
from state_portal.workflows.mfa import INVALID_CODE_MESSAGE

router = APIRouter()


@router.get("/factors/{user_id}", response_model=FactorsResponse)
async def list_active_factors(user_id: str, idp: IdentityProviderDep, config: ConfigDep) -> FactorsResponse:
    """List the factors that can be challenged (ACTIVE only).

    Args:
        user_id: Principal id.
        idp: Identity provider client (injected).
        config: Portal configuration (injected).

    Returns:
        Active factors.
    """
    factors = await idp.list_factors(user_id, timeout=config.workflow.request_timeout_seconds)
    return FactorsResponse(factors=[FactorResponse.from_factor(f) for f in factors if f.is_active])


@router.post("/challenge", response_model=ChallengeResponse)
async def issue_challenge(body: ChallengeRequest, idp: IdentityProviderDep, config: ConfigDep) -> ChallengeResponse:
    """Send a challenge: push notification, SMS/voice/email code, or re-issue."""
    challenge = await idp.issue_challenge(
        body.user_id, body.factor_id, timeout=config.workflow.request_timeout_seconds
    )
    return ChallengeResponse.from_challenge(challenge)


@router.post("/poll", response_model=ChallengeResponse)
async def poll_challenge(
    body: PollRequest,
    idp: IdentityProviderDep,
    config: ConfigDep,
    session: CurrentSessionDep,
) -> ChallengeResponse:
    """Fetch the latest status of a push challenge.

    A SUCCESS result is recorded as a step-up on the caller's session.
    """
    pending = Challenge(
        factor_id=body.factor_id,
        user_id=body.user_id,
        result=ChallengeResult.WAITING,
        poll_url=body.poll_url,
    )
    challenge = await idp.poll_challenge(pending, timeout=config.workflow.request_timeout_seconds)
    if challenge.succeeded:
        _record_step_up(session, body.user_id, body.factor_id, "push")
    return ChallengeResponse.from_challenge(challenge)


@router.post("/verify", response_model=VerifyResponse)
async def verify_code(
    body: VerifyCodeRequest,
    idp: IdentityProviderDep,
    config: ConfigDep,
    session: CurrentSessionDep,
) -> VerifyResponse:
    """Verify a one-time passcode.

    Raises:
        APIError: 400 for a non-numeric code, 401 when the provider rejects it.
    """
    code = body.pass_code.strip()
    if not code or not code.isdigit():
        raise APIError(status_code=400, code=ErrorCode.VALIDATION_ERROR, message="Please enter a valid code")

    challenge = await idp.verify_challenge(
        body.user_id, body.factor_id, code, timeout=config.workflow.request_timeout_seconds
    )
    return _verified_or_reject(challenge, session, body.user_id, "otp")


@router.post("/webauthn/challenge", response_model=WebAuthnChallengeResponse)
async def issue_webauthn_challenge(
    body: ChallengeRequest,
    idp: IdentityProviderDep,
    config: ConfigDep,
) -> WebAuthnChallengeResponse:
    """Issue an assertion challenge for a WebAuthn factor."""
    challenge = await idp.issue_challenge(
        body.user_id, body.factor_id, timeout=config.workflow.request_timeout_seconds
    )
    return WebAuthnChallengeResponse(
        factor_id=challenge.factor_id,
        factor_result=challenge.result.value,
        challenge=challenge.challenge,
        credential_id=challenge.credential_id,
        rp_id=challenge.rp_id,
    )


@router.post("/webauthn/verify", response_model=VerifyResponse)
async def verify_webauthn(
    body: WebAuthnVerifyRequest,
    idp: IdentityProviderDep,
    config: ConfigDep,
    session: CurrentSessionDep,
) -> VerifyResponse:
    """Verify a signed WebAuthn assertion."""
    assertion = WebAuthnAssertion(
        client_data=body.client_data,
        authenticator_data=body.authenticator_data,
        signature_data=body.signature_data,
    )
    challenge = await idp.verify_challenge(
        body.user_id, body.factor_id, assertion, timeout=config.workflow.request_timeout_seconds
    )
    return _verified_or_reject(challenge, session, body.user_id, "webauthn")


def _verified_or_reject(
    challenge: Challenge,
    session: BoundSession | None,
    user_id: str,
    factor_type: str,
) -> VerifyResponse:
    if not challenge.succeeded:
        get_audit_logger().failure(
            "step_up",
            "mfa_rejected",
            INVALID_CODE_MESSAGE,
            principal_id=user_id,
            factor_type=factor_type,
            details={"factor_result": challenge.result.value},
        )
        raise APIError(
            status_code=401,
            code=ErrorCode.MFA_REJECTED,
            message=INVALID_CODE_MESSAGE,
            details={"factor_result": challenge.result.value},
        )
    timestamp = _record_step_up(session, user_id, challenge.factor_id, factor_type)
    return VerifyResponse(success=True, factor_result=challenge.result.value, mfa_timestamp=timestamp)


def _record_step_up(session: BoundSession | None, user_id: str, factor_id: str, factor_type: str) -> int | None:
    store = session_store_for(session, user_id)
    timestamp = store.record_step_up() if store is not None else None
    get_audit_logger().success(
        "step_up",
        "mfa_verified",
        principal_id=user_id,
        factor_type=factor_type,
        details={"factor_id": factor_id, "session_recorded": timestamp is not None},
    )
    return timestamp
