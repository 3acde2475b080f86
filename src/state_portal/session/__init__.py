"""Claims and session state.

Claims:
- ClaimsSnapshot: read-only view of the provider's ID token
- Authoritative / Provisional: two-tier verification state

Session state:
- SessionStateStore: claims plus transient flags for one session
- SessionManager / BoundSession: server-side sessions bound to a principal
- IdTokenValidator: JWKS-backed ID token validation
"""

from state_portal.session.claims import (
    Authoritative,
    ClaimsSnapshot,
    Provisional,
    VerificationState,
    VerificationTier,
    is_state_accepted,
    resolve_verification,
)
from state_portal.session.manager import BoundSession, SessionManager, parse_bound_session_id
from state_portal.session.store import PendingChild, SessionStateStore, now_ms
from state_portal.session.tokens import IdTokenValidator

__all__ = [
    "Authoritative",
    "BoundSession",
    "ClaimsSnapshot",
    "IdTokenValidator",
    "PendingChild",
    "Provisional",
    "SessionManager",
    "SessionStateStore",
    "VerificationState",
    "VerificationTier",
    "is_state_accepted",
    "now_ms",
    "parse_bound_session_id",
    "resolve_verification",
]
