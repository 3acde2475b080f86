"""Route guard.

Decides whether an application state (route) is reachable for the current
claims and session flags. Pure: no I/O, no side effects.

    requirement = requirement_for("/services/child-support")
    decision = is_authorized(store.get_claims(), store.flags(), requirement)
    if isinstance(decision, Redirect):
        ...
"""

from __future__ import annotations

__all__ = [
    "AUTHENTICATED",
    "Allow",
    "Decision",
    "PUBLIC",
    "ROUTES",
    "Redirect",
    "Requirement",
    "VERIFIED",
    "is_authorized",
    "requirement_for",
]

from dataclasses import dataclass
from typing import Any, Mapping, Union

from state_portal.constants import (
    PATH_ADD_DEPENDENT,
    PATH_DASHBOARD,
    PATH_HOME,
    PATH_MFA_CHALLENGE,
    PATH_SECURE_ACCOUNT,
    PATH_SERVICES,
    PATH_SIGN_IN,
    PATH_VERIFY,
    PATH_VERIFY_DEPENDENT,
)
from state_portal.session.claims import (
    ClaimsSnapshot,
    VerificationTier,
    is_state_accepted,
    resolve_verification,
)


@dataclass(frozen=True)
class Requirement:
    """What a route needs.

    Attributes:
        requires_auth: A signed-in principal is required.
        requires_verification: The principal must be identity-verified.
        accept: Lowest verification tier that counts as verified.
    """

    requires_auth: bool = True
    requires_verification: bool = False
    accept: VerificationTier = VerificationTier.PROVISIONAL


@dataclass(frozen=True)
class Allow:
    pass


@dataclass(frozen=True)
class Redirect:
    """Route denied; continue at `target`.

    Attributes:
        target: Destination path.
        reason: Machine-readable cause (e.g. "not_authenticated").
    """

    target: str
    reason: str


Decision = Union[Allow, Redirect]

PUBLIC = Requirement(requires_auth=False)
AUTHENTICATED = Requirement()
VERIFIED = Requirement(requires_verification=True)

# Route pattern -> requirement. ":name" segments match any single segment.
ROUTES: dict[str, Requirement] = {
    PATH_HOME: PUBLIC,
    PATH_SIGN_IN: PUBLIC,
    "/callback": PUBLIC,
    PATH_DASHBOARD: AUTHENTICATED,
    PATH_VERIFY: AUTHENTICATED,
    "/demo-verify": AUTHENTICATED,
    PATH_SECURE_ACCOUNT: AUTHENTICATED,
    PATH_MFA_CHALLENGE: VERIFIED,
    "/mfa-callback": VERIFIED,
    PATH_ADD_DEPENDENT: VERIFIED,
    f"{PATH_VERIFY_DEPENDENT}/:childId": VERIFIED,
    PATH_SERVICES: VERIFIED,
    f"{PATH_SERVICES}/child-support": VERIFIED,
    f"{PATH_SERVICES}/snap-assistance": VERIFIED,
    f"{PATH_SERVICES}/vehicle-registration": VERIFIED,
}


def _matches(pattern: str, path: str) -> bool:
    pattern_parts = pattern.strip("/").split("/")
    path_parts = path.strip("/").split("/")
    if len(pattern_parts) != len(path_parts):
        return False
    return all((p.startswith(":") and bool(s)) or p == s for p, s in zip(pattern_parts, path_parts))


def requirement_for(path: str) -> Requirement | None:
    """Look up the requirement for a concrete path. None for unknown routes."""
    path = path.split("?", 1)[0] or PATH_HOME
    for pattern, requirement in ROUTES.items():
        if _matches(pattern, path):
            return requirement
    return None


def is_authorized(
    claims: ClaimsSnapshot | None,
    flags: Mapping[str, Any],
    requirement: Requirement,
) -> Decision:
    """Decide whether a route with `requirement` is reachable.

    Unauthenticated principals go to sign-in. Authenticated but unverified
    principals on a verification-gated route go to the dashboard, where
    verification can be started.
    """
    if not requirement.requires_auth:
        return Allow()
    if claims is None:
        return Redirect(PATH_SIGN_IN, "not_authenticated")
    if requirement.requires_verification:
        state = resolve_verification(claims, flags)
        if not is_state_accepted(state, requirement.accept):
            return Redirect(PATH_DASHBOARD, "not_verified")
    return Allow()
