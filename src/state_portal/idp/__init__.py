"""Identity provider adapter.

IdentityProviderClient wraps the management API (users, factors, challenges,
WebAuthn enrollment). Models mirror the provider's payloads.
"""

from state_portal.idp.client import IdentityProviderClient
from state_portal.idp.models import (
    Challenge,
    ChallengeResult,
    Factor,
    FactorStatus,
    FactorType,
    Principal,
    PrincipalProfile,
    WebAuthnActivation,
    WebAuthnAssertion,
)

__all__ = [
    "Challenge",
    "ChallengeResult",
    "Factor",
    "FactorStatus",
    "FactorType",
    "IdentityProviderClient",
    "Principal",
    "PrincipalProfile",
    "WebAuthnActivation",
    "WebAuthnAssertion",
]
