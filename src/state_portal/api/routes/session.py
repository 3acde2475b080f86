"""Portal session API endpoints.

A session is created by exchanging a signed ID token. The bound session id
(<user_id>:<session_id>) is then sent in the X-Session-Id header and carries
the claims snapshot plus transient flags (step-up proof, pending child).

Routes mounted at: /api/session
"""

from __future__ import annotations

__all__ = ["router"]

from fastapi import APIRouter

from state_portal.api.deps import (
    ConfigDep,
    RequiredSessionDep,
    SessionManagerDep,
    TokenValidatorDep,
    validate_id_token,
)
from state_portal.api.errors import APIError, ErrorCode
from state_portal.api.schemas import (
    SessionCreateRequest,
    SessionResponse,
    StepUpCallbackRequest,
    StepUpResponse,
)
from state_portal.session.manager import BoundSession
from state_portal.workflows.mfa import accept_step_up_callback

router = APIRouter()


def _to_response(session: BoundSession) -> SessionResponse:
    return SessionResponse(
        session_id=session.bound_id,
        user_id=session.user_id,
        created_at=session.created_at,
        expires_at=session.expires_at,
        identity_verified=session.store.is_verified(),
        step_up_fresh=session.store.is_step_up_fresh(),
    )


@router.post("", response_model=SessionResponse, status_code=201)
async def create_session(
    body: SessionCreateRequest,
    validator: TokenValidatorDep,
    manager: SessionManagerDep,
) -> SessionResponse:
    """Exchange a signed ID token for a portal session.

    Args:
        body: The ID token.
        validator: ID token validator (injected).
        manager: Session manager (injected).

    Returns:
        The new session.
    """
    claims = validate_id_token(validator, body.id_token)
    return _to_response(manager.create_session(claims))


@router.get("", response_model=SessionResponse)
async def get_session(session: RequiredSessionDep) -> SessionResponse:
    """Describe the caller's session."""
    return _to_response(session)


@router.put("", response_model=SessionResponse)
async def refresh_session(
    body: SessionCreateRequest,
    session: RequiredSessionDep,
    validator: TokenValidatorDep,
    manager: SessionManagerDep,
) -> SessionResponse:
    """Replace the session's claims after a token refresh.

    The token must belong to the session's principal, otherwise the session
    is invalidated.
    """
    claims = validate_id_token(validator, body.id_token)
    refreshed = manager.validate_session(session.bound_id, claims)
    if refreshed is None:
        raise APIError(
            status_code=401,
            code=ErrorCode.AUTH_SESSION_INVALID,
            message="Token does not belong to this session",
        )
    return _to_response(refreshed)


@router.delete("", status_code=204)
async def sign_out(session: RequiredSessionDep, manager: SessionManagerDep) -> None:
    """Sign out: destroy the claims and every transient flag."""
    manager.invalidate_session(session.bound_id)


@router.post("/step-up-callback", response_model=StepUpResponse)
async def step_up_callback(
    body: StepUpCallbackRequest,
    session: RequiredSessionDep,
    validator: TokenValidatorDep,
    config: ConfigDep,
) -> StepUpResponse:
    """Record a step-up after an identity-provider-hosted MFA redirect.

    Args:
        body: ID token issued by the re-authentication.
        session: Caller's session (injected).
        validator: ID token validator (injected).
        config: Portal configuration (injected).

    Returns:
        The recorded step-up proof and where to continue.
    """
    claims = validate_id_token(validator, body.id_token)
    if claims.sub != session.user_id:
        raise APIError(
            status_code=403,
            code=ErrorCode.AUTH_FORBIDDEN,
            message="Step-up token belongs to a different principal",
        )
    proof = accept_step_up_callback(
        session.store,
        claims,
        max_age_seconds=config.workflow.step_up_callback_max_age_seconds,
    )
    return StepUpResponse(
        principal_id=proof.principal_id,
        verified_at_ms=proof.verified_at_ms,
        redirect_to=proof.redirect_to,
        factor_id=proof.factor_id,
        factor_type=proof.factor_type,
    )
