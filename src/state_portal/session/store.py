"""Claims and transient session state for one signed-in user.

The store holds the current ClaimsSnapshot plus client-held transient flags
(verification bridge, step-up proof, pending redirects, pending dependent).
Flags are never persisted and are destroyed on sign-out. No network calls.

Invariants:
- `identity_verified` is monotonic: it can only be set to True, and only
  sign_out() removes it.
- A step-up proof is valid only while now - mfa_timestamp <= window.
"""

from __future__ import annotations

__all__ = [
    "PendingChild",
    "SessionStateStore",
    "now_ms",
]

import time
from dataclasses import dataclass
from typing import Any, Callable

from state_portal.constants import (
    FLAG_IDENTITY_VERIFIED,
    FLAG_IDENTITY_VERIFIED_AT,
    FLAG_MFA_REDIRECT_TO,
    FLAG_MFA_TIMESTAMP,
    FLAG_MFA_VERIFIED,
    MFA_FRESHNESS_WINDOW_MS,
)
from state_portal.session.claims import (
    ClaimsSnapshot,
    VerificationState,
    VerificationTier,
    is_state_accepted,
    resolve_verification,
)


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


@dataclass(frozen=True)
class PendingChild:
    """A dependent awaiting delegated verification.

    Attributes:
        child_id: Identity provider id of the child.
        name: Display name ("First Last").
        email: Child email.
        parent_id: Authorizing parent.
        is_new: True when the account was created in this session.
    """

    child_id: str
    name: str
    email: str
    parent_id: str
    is_new: bool


class SessionStateStore:
    """Claims snapshot plus transient flags for one session.

    Usage:
        store = SessionStateStore(claims)
        store.record_step_up()
        if store.is_step_up_fresh():
            ...
    """

    def __init__(
        self,
        claims: ClaimsSnapshot | None = None,
        *,
        freshness_window_ms: int = MFA_FRESHNESS_WINDOW_MS,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        """Initialize the store.

        Args:
            claims: Claims from the current ID token, None when signed out.
            freshness_window_ms: Step-up proof validity window.
            clock: Epoch-millisecond clock (injectable for tests).
        """
        self._claims = claims
        self._flags: dict[str, Any] = {}
        self._window_ms = freshness_window_ms
        self._clock = clock

    # -------------------------------------------------------------------------
    # Claims
    # -------------------------------------------------------------------------

    def get_claims(self) -> ClaimsSnapshot | None:
        return self._claims

    def set_claims(self, claims: ClaimsSnapshot | None) -> None:
        """Replace the claims snapshot after re-authentication or silent renewal.

        A token that predates the verification (no identityVerified claim yet)
        does not un-verify the session: the provisional flag keeps it.
        """
        if claims is not None and self.is_verified() and not claims.identity_verified:
            self.mark_verified()
        self._claims = claims

    @property
    def is_authenticated(self) -> bool:
        return self._claims is not None

    @property
    def clock(self) -> Callable[[], int]:
        return self._clock

    @property
    def freshness_window_ms(self) -> int:
        return self._window_ms

    # -------------------------------------------------------------------------
    # Transient flags
    # -------------------------------------------------------------------------

    def set_flag(self, name: str, value: Any) -> None:
        """Set a transient flag.

        Raises:
            ValueError: If asked to set `identity_verified` to anything but True.
        """
        if name == FLAG_IDENTITY_VERIFIED:
            if value is not True:
                raise ValueError("identity_verified can only be set to True within a session")
            self._flags.setdefault(FLAG_IDENTITY_VERIFIED_AT, self._clock())
        self._flags[name] = value

    def get_flag(self, name: str, default: Any = None) -> Any:
        return self._flags.get(name, default)

    def clear_flag(self, name: str) -> None:
        """Remove a transient flag.

        Raises:
            ValueError: If asked to clear `identity_verified` (use sign_out()).
        """
        if name in (FLAG_IDENTITY_VERIFIED, FLAG_IDENTITY_VERIFIED_AT):
            raise ValueError("identity_verified is cleared only by sign_out()")
        self._flags.pop(name, None)

    def pop_flag(self, name: str, default: Any = None) -> Any:
        """Read and clear a flag in one step (consume-once values)."""
        value = self.get_flag(name, default)
        self.clear_flag(name)
        return value

    def flags(self) -> dict[str, Any]:
        """Return a copy of all transient flags."""
        return dict(self._flags)

    # -------------------------------------------------------------------------
    # Verification
    # -------------------------------------------------------------------------

    def verification_state(self) -> VerificationState:
        return resolve_verification(self._claims, self._flags)

    def is_verified(self, accept: VerificationTier = VerificationTier.PROVISIONAL) -> bool:
        """Whether the principal counts as verified at the accepted tier."""
        return is_state_accepted(self.verification_state(), accept)

    def mark_verified(self) -> None:
        """Assert provisional verification after a vendor success."""
        self.set_flag(FLAG_IDENTITY_VERIFIED, True)

    # -------------------------------------------------------------------------
    # Step-up proof
    # -------------------------------------------------------------------------

    def record_step_up(self) -> int:
        """Record a successful step-up now.

        Returns:
            The recorded mfa_timestamp (epoch ms).
        """
        timestamp = self._clock()
        self._flags[FLAG_MFA_VERIFIED] = True
        self._flags[FLAG_MFA_TIMESTAMP] = timestamp
        return timestamp

    def clear_step_up(self) -> None:
        self._flags.pop(FLAG_MFA_VERIFIED, None)
        self._flags.pop(FLAG_MFA_TIMESTAMP, None)

    def step_up_age_ms(self) -> int | None:
        """Milliseconds since the last step-up, None when absent."""
        if self._flags.get(FLAG_MFA_VERIFIED) is not True:
            return None
        timestamp = self._flags.get(FLAG_MFA_TIMESTAMP)
        if timestamp is None:
            return None
        return self._clock() - int(timestamp)

    def is_step_up_fresh(self) -> bool:
        """Whether a step-up proof exists and is inside the freshness window."""
        age = self.step_up_age_ms()
        return age is not None and age <= self._window_ms

    def take_mfa_redirect(self, default: str) -> str:
        """Consume the pending post-MFA destination."""
        return self.pop_flag(FLAG_MFA_REDIRECT_TO) or default

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def sign_out(self) -> None:
        """Destroy claims and every transient flag."""
        self._claims = None
        self._flags.clear()
