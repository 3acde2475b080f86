"""Dependent linking API endpoints.

Account creation and linking act on behalf of the parent named in the
request, so they need that parent's own session. Creating an account also
needs an ACTIVE factor and a fresh step-up on that session.

Routes mounted at: /api/dependents
"""

from __future__ import annotations

__all__ = ["router"]

from fastapi import APIRouter

from state_portal.api.deps import (
    ConfigDep,
    IdentityProviderDep,
    RequiredSessionDep,
    session_store_for,
)
from state_portal.api.errors import APIError, ErrorCode
from state_portal.api.schemas import (
    AccessDecisionResponse,
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
from state_portal.config import PortalConfig
from state_portal.exceptions import ValidationError
from state_portal.guard import Redirect
from state_portal.idp.client import IdentityProviderClient
from state_portal.session.manager import BoundSession
from state_portal.session.store import SessionStateStore
from state_portal.workflows.dependents import ChildProfile, DependentLinker

router = APIRouter()


def _linker(idp: IdentityProviderClient, config: PortalConfig, store: SessionStateStore | None) -> DependentLinker:
    return DependentLinker(
        idp,
        store if store is not None else SessionStateStore(),
        request_timeout_seconds=config.workflow.request_timeout_seconds,
    )


def _parent_store(session: BoundSession, parent_id: str) -> SessionStateStore:
    """The session store, provided the session belongs to `parent_id`.

    Raises:
        APIError: 403 when the session belongs to someone else.
    """
    store = session_store_for(session, parent_id)
    if store is None:
        raise APIError(
            status_code=403,
            code=ErrorCode.AUTH_FORBIDDEN,
            message="Dependents can only be managed from the parent's own session",
        )
    return store


@router.get("/access", response_model=AccessDecisionResponse)
async def check_add_dependent_access(
    session: RequiredSessionDep,
    idp: IdentityProviderDep,
    config: ConfigDep,
) -> AccessDecisionResponse:
    """Gate the add-dependent screen on factor enrollment and a fresh step-up.

    Args:
        session: Caller's session (injected).
        idp: Identity provider client (injected).
        config: Portal configuration (injected).

    Returns:
        Allowed, or where to go first (enrollment or step-up).
    """
    decision = await _linker(idp, config, session.store).check_access(session.user_id)
    if isinstance(decision, Redirect):
        return AccessDecisionResponse(
            allowed=False,
            known_route=True,
            redirect_to=decision.target,
            reason=decision.reason,
        )
    return AccessDecisionResponse(allowed=True, known_route=True)


@router.post("", response_model=AddDependentResponse, status_code=201)
async def add_dependent(
    body: AddDependentRequest,
    session: RequiredSessionDep,
    idp: IdentityProviderDep,
    config: ConfigDep,
) -> AddDependentResponse:
    """Find or create the child account and stage it for verification.

    Raises:
        APIError: 401 without claims on the session.
        StepUpRequiredError: Surfaced as 403 with `redirect_to` when factor
            enrollment or a fresh step-up must come first.
        LinkConflictError: Surfaced as 409 when another parent owns the child.
    """
    claims = session.store.get_claims()
    if claims is None:
        raise APIError(status_code=401, code=ErrorCode.AUTH_REQUIRED, message="Not authenticated")

    linker = _linker(idp, config, session.store)
    added = (
        await linker.add_dependent(claims, ChildProfile(body.first_name, body.last_name, body.email))
    ).unwrap()
    return AddDependentResponse(
        child_id=added.child.child_id,
        name=added.child.name,
        email=added.child.email,
        is_new=added.child.is_new,
        temporary_password=added.temporary_password,
        redirect_to=added.redirect_to,
    )


@router.post("/check", response_model=ChildCheckResponse)
async def check_child(body: ChildCheckRequest, idp: IdentityProviderDep, config: ConfigDep) -> ChildCheckResponse:
    """Look a child up by email and report whether it can be linked."""
    if not body.email.strip():
        raise ValidationError("email is required", fields=["email"])
    lookup = await _linker(idp, config, None).check_child(body.email.strip(), body.parent_id)
    return ChildCheckResponse(
        exists=lookup.exists,
        can_link=lookup.can_link,
        user_id=lookup.user_id,
        reason=lookup.reason,
    )


@router.post("/create", response_model=ChildCreateResponse, status_code=201)
async def create_child(
    body: ChildCreateRequest,
    session: RequiredSessionDep,
    idp: IdentityProviderDep,
    config: ConfigDep,
) -> ChildCreateResponse:
    """Create an activated child account with parentId preset.

    Raises:
        ValidationError: Surfaced as 400 when a required field is blank.
        APIError: 403 when the session is not the parent's.
        StepUpRequiredError: Surfaced as 403 with `redirect_to` when factor
            enrollment or a fresh step-up must come first.
        UpstreamError: Surfaced as 502 with the provider's error causes.
    """
    profile = ChildProfile(body.first_name, body.last_name, body.email).normalized()
    missing = [
        name
        for name, value in (
            ("parent_id", body.parent_id.strip()),
            ("first_name", profile.first_name),
            ("last_name", profile.last_name),
            ("email", profile.email),
        )
        if not value
    ]
    if missing:
        raise ValidationError("Missing required fields", fields=missing)

    parent_id = body.parent_id.strip()
    linker = _linker(idp, config, _parent_store(session, parent_id))
    await linker.require_access(parent_id)
    created = await linker.create_child(
        parent_id,
        body.parent_email,
        profile.first_name,
        profile.last_name,
        profile.email,
    )
    return ChildCreateResponse(
        user_id=created.user_id,
        status=created.status,
        temporary_password=created.temporary_password,
        first_name=created.profile.first_name,
        last_name=created.profile.last_name,
        email=created.profile.email,
    )


@router.post("/complete-verification", response_model=CompleteVerificationResponse)
async def complete_verification(
    body: CompleteVerificationRequest,
    session: RequiredSessionDep,
    idp: IdentityProviderDep,
    config: ConfigDep,
) -> CompleteVerificationResponse:
    """Mark the child verified and link it to the parent.

    Idempotent: repeating the call after a partial failure converges and
    never duplicates the child in the parent's dependents.

    Raises:
        APIError: 403 when the session is not the parent's.
    """
    store = _parent_store(session, body.parent_id)
    linked = (await _linker(idp, config, store).complete_verification(body.child_id, body.parent_id)).unwrap()
    return CompleteVerificationResponse(
        success=True,
        child_id=linked.child.id,
        parent_id=linked.parent_id,
        newly_linked=linked.newly_linked,
        child=DependentResponse.from_principal(linked.child),
    )


@router.get("/{parent_id}", response_model=DependentsResponse)
async def list_dependents(parent_id: str, idp: IdentityProviderDep, config: ConfigDep) -> DependentsResponse:
    """List the child accounts linked to a parent."""
    children = await _linker(idp, config, None).list_dependents(parent_id)
    return DependentsResponse(dependents=[DependentResponse.from_principal(c) for c in children])
