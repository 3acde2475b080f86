"""Server-side session registry bound to authenticated principals.

Each session carries its own SessionStateStore. Session IDs are bound to the
principal id from a validated ID token, so a leaked session id is useless
without authenticating as the same user.

Session Format: <user_id>:<session_id>
"""

from __future__ import annotations

__all__ = [
    "BoundSession",
    "SessionManager",
    "parse_bound_session_id",
]

import secrets
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

from state_portal.constants import MFA_FRESHNESS_WINDOW_MS
from state_portal.session.claims import ClaimsSnapshot
from state_portal.session.store import SessionStateStore


@dataclass
class BoundSession:
    """Session bound to an authenticated principal.

    Attributes:
        user_id: Principal id (`sub`) from the validated ID token.
        session_id: Cryptographically secure random identifier.
        created_at: Session creation timestamp (UTC).
        expires_at: Session expiration timestamp (UTC).
        store: Claims and transient flags for this session.
    """

    user_id: str
    session_id: str
    created_at: datetime
    expires_at: datetime
    store: SessionStateStore = field(repr=False)

    @property
    def bound_id(self) -> str:
        """Return the bound session ID: <user_id>:<session_id>."""
        return f"{self.user_id}:{self.session_id}"

    def is_expired(self) -> bool:
        return datetime.now(timezone.utc) > self.expires_at


class SessionManager:
    """Create, look up and invalidate principal-bound sessions.

    Usage:
        manager = SessionManager()
        session = manager.create_session(claims)
        session = manager.get_session(bound_id)
        manager.invalidate_session(bound_id)  # sign-out
    """

    # Session lifetime, roughly one token lifetime plus silent renewals
    DEFAULT_TTL = timedelta(hours=8)

    # Session ID entropy (256 bits via secrets.token_urlsafe)
    SESSION_ID_BYTES = 32

    def __init__(
        self,
        ttl: timedelta = DEFAULT_TTL,
        freshness_window_ms: int = MFA_FRESHNESS_WINDOW_MS,
    ) -> None:
        self._ttl = ttl
        self._window_ms = freshness_window_ms
        self._sessions: dict[str, BoundSession] = {}

    def create_session(self, claims: ClaimsSnapshot) -> BoundSession:
        """Create a new session bound to the principal in `claims`.

        The user id comes from validated claims, never from client input.
        """
        now = datetime.now(timezone.utc)
        session = BoundSession(
            user_id=claims.sub,
            session_id=secrets.token_urlsafe(self.SESSION_ID_BYTES),
            created_at=now,
            expires_at=now + self._ttl,
            store=SessionStateStore(claims, freshness_window_ms=self._window_ms),
        )
        self._sessions[session.bound_id] = session
        return session

    def get_session(self, bound_id: str) -> BoundSession | None:
        """Get a live session, dropping it if expired."""
        session = self._sessions.get(bound_id)
        if session is None:
            return None
        if session.is_expired():
            self._drop(bound_id)
            return None
        return session

    def validate_session(self, bound_id: str, claims: ClaimsSnapshot) -> BoundSession | None:
        """Return the session only if it belongs to the principal in `claims`.

        Refreshes the stored claims snapshot on success (silent renewal).
        """
        session = self.get_session(bound_id)
        if session is None or session.user_id != claims.sub:
            return None
        session.store.set_claims(claims)
        return session

    def invalidate_session(self, bound_id: str) -> None:
        """Invalidate a session (sign-out) and destroy its flags."""
        self._drop(bound_id)

    def cleanup_expired(self) -> int:
        """Remove expired sessions. Returns count of removed sessions."""
        expired = [bound_id for bound_id, s in self._sessions.items() if s.is_expired()]
        for bound_id in expired:
            self._drop(bound_id)
        return len(expired)

    @property
    def active_session_count(self) -> int:
        self.cleanup_expired()
        return len(self._sessions)

    def _drop(self, bound_id: str) -> None:
        session = self._sessions.pop(bound_id, None)
        if session is not None:
            session.store.sign_out()


def parse_bound_session_id(bound_id: str) -> tuple[str, str] | None:
    """Parse a bound session ID into (user_id, session_id), None if malformed."""
    if ":" not in bound_id:
        return None
    # Session ids are urlsafe base64 and never contain ":"
    user_id, session_id = bound_id.rsplit(":", 1)
    if not user_id or not session_id:
        return None
    return (user_id, session_id)
