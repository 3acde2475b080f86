"""Route guard API endpoint.

Lets a front end ask whether a route is reachable before rendering it.
Claims come from the portal session when one is named, otherwise from a
Bearer ID token; with neither, the caller is unauthenticated.

Routes mounted at: /api/access
"""

from __future__ import annotations

__all__ = ["router"]

from fastapi import APIRouter

from state_portal.api.deps import CurrentSessionDep, RequestClaimsDep
from state_portal.api.schemas import AccessCheckRequest, AccessDecisionResponse
from state_portal.guard import AUTHENTICATED, Redirect, is_authorized, requirement_for

router = APIRouter()


@router.post("/check", response_model=AccessDecisionResponse)
async def check_access(
    body: AccessCheckRequest,
    session: CurrentSessionDep,
    token_claims: RequestClaimsDep,
) -> AccessDecisionResponse:
    """Evaluate the route guard for a path.

    Unknown routes are treated as requiring authentication.

    Args:
        body: Path to evaluate.
        session: Caller's session, if any (injected).
        token_claims: Claims from a Bearer ID token, if any (injected).

    Returns:
        Whether the route is allowed and, if not, where to go instead.
    """
    if session is not None:
        claims = session.store.get_claims()
        flags = session.store.flags()
    else:
        claims = token_claims
        flags = {}

    requirement = requirement_for(body.path)
    decision = is_authorized(claims, flags, requirement or AUTHENTICATED)
    if isinstance(decision, Redirect):
        return AccessDecisionResponse(
            allowed=False,
            known_route=requirement is not None,
            redirect_to=decision.target,
            reason=decision.reason,
        )
    return AccessDecisionResponse(allowed=True, known_route=requirement is not None)
