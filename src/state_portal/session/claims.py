"""Claims snapshot and two-tier verification state.

A ClaimsSnapshot is a read-only view of the identity provider's ID token at
one point in time. The provider only reflects a just-completed verification
after the next token issuance, so the session may also hold a locally
asserted flag. The two sources are kept apart as tiers:

- Authoritative: asserted by the provider in a token claim
- Provisional: asserted locally after a vendor success, session-scoped

Callers state which tier they accept. Provisional state is never suitable for
server-side authorization outside this demo.
"""

from __future__ import annotations

__all__ = [
    "Authoritative",
    "ClaimsSnapshot",
    "Provisional",
    "VerificationState",
    "VerificationTier",
    "is_state_accepted",
    "resolve_verification",
]

from dataclasses import dataclass
from enum import Enum
from typing import Any, Mapping, Union

from state_portal.constants import FLAG_IDENTITY_VERIFIED, FLAG_IDENTITY_VERIFIED_AT


@dataclass(frozen=True)
class ClaimsSnapshot:
    """Identity claims from the provider's ID token.

    Attributes:
        sub: Stable principal id.
        email: Email claim.
        name: Display name.
        given_name: First name.
        family_name: Last name.
        identity_verified: Custom `identityVerified` claim.
        auth_time: Epoch seconds of the last primary or step-up authentication.
    """

    sub: str
    email: str | None = None
    name: str | None = None
    given_name: str | None = None
    family_name: str | None = None
    identity_verified: bool = False
    auth_time: int | None = None

    @classmethod
    def from_token_claims(cls, claims: Mapping[str, Any]) -> "ClaimsSnapshot":
        """Build a snapshot from decoded ID token claims.

        Raises:
            KeyError: If the token has no `sub` claim.
        """
        auth_time = claims.get("auth_time")
        return cls(
            sub=claims["sub"],
            email=claims.get("email"),
            name=claims.get("name"),
            given_name=claims.get("given_name"),
            family_name=claims.get("family_name"),
            # Only an explicit boolean true counts
            identity_verified=claims.get("identityVerified") is True,
            auth_time=int(auth_time) if auth_time is not None else None,
        )


class VerificationTier(str, Enum):
    """Lowest verification tier a caller is willing to accept."""

    AUTHORITATIVE = "authoritative"
    PROVISIONAL = "provisional"


@dataclass(frozen=True)
class Authoritative:
    """Verification state asserted by the identity provider."""

    verified: bool


@dataclass(frozen=True)
class Provisional:
    """Verification state asserted locally after a vendor success.

    Attributes:
        verified: Always True in practice; a provisional False is never stored.
        asserted_at_ms: When the local assertion was made (epoch ms).
    """

    verified: bool
    asserted_at_ms: int | None = None


VerificationState = Union[Authoritative, Provisional]


def resolve_verification(
    claims: ClaimsSnapshot | None,
    flags: Mapping[str, Any],
) -> VerificationState:
    """Combine provider claims and session flags into one verification state.

    The provider claim wins when it says verified. Otherwise a local
    `identity_verified` flag yields a Provisional state.
    """
    if claims is not None and claims.identity_verified:
        return Authoritative(verified=True)
    if flags.get(FLAG_IDENTITY_VERIFIED) is True:
        return Provisional(verified=True, asserted_at_ms=flags.get(FLAG_IDENTITY_VERIFIED_AT))
    return Authoritative(verified=False)


def is_state_accepted(state: VerificationState, accept: VerificationTier) -> bool:
    """Check whether a verification state satisfies the accepted tier."""
    if not state.verified:
        return False
    if isinstance(state, Provisional):
        return accept is VerificationTier.PROVISIONAL
    return True
