"""Step-up MFA challenge workflow.

State machine:

    LOADING -> SELECT_FACTOR -> {CHALLENGE | PUSH_WAITING} -> VERIFYING -> {SUCCESS | ERROR}

plus CANCELLED from any non-terminal state. ERROR offers retry (replays the
failed step) and cancel. Transitions are computed by the pure transition()
function; MfaChallengeFlow performs the side effects (adapter calls, push
polling, session updates) and feeds the resulting events back in.

Only one challenge is active at a time: selecting another factor cancels an
in-flight push poll before the new challenge is issued.
"""

from __future__ import annotations

__all__ = [
    "Cancelled",
    "ChallengeDispatched",
    "Failed",
    "FactorSelected",
    "FactorsLoaded",
    "InvalidInput",
    "MfaChallengeFlow",
    "MfaEvent",
    "MfaSnapshot",
    "MfaState",
    "ProofRejected",
    "ProofSubmitted",
    "PushFailed",
    "Retry",
    "StepUpProof",
    "Verified",
    "accept_step_up_callback",
    "begin_mfa_challenge",
    "transition",
]

import asyncio
import inspect
import time
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Awaitable, Callable, Union

from state_portal.constants import (
    PATH_DASHBOARD,
    PUSH_POLL_INTERVAL_SECONDS,
    PUSH_TIMEOUT_SECONDS,
    STEP_UP_CALLBACK_MAX_AGE_SECONDS,
)
from state_portal.exceptions import InvalidTransitionError, PortalError, ValidationError
from state_portal.idp.client import IdentityProviderClient
from state_portal.idp.models import Challenge, ChallengeResult, Factor, WebAuthnAssertion
from state_portal.session.claims import ClaimsSnapshot
from state_portal.session.store import SessionStateStore
from state_portal.telemetry.audit import get_audit_logger
from state_portal.telemetry.system_logger import get_system_logger
from state_portal.workflows.polling import PushPoller

_system_logger = get_system_logger()

NO_FACTORS_MESSAGE = "No MFA factors enrolled. Please set up MFA in your account settings."
INVALID_CODE_MESSAGE = "Invalid code. Please try again."
INVALID_INPUT_MESSAGE = "Please enter the numeric code you received."

PUSH_FAILURE_MESSAGES = {
    ChallengeResult.REJECTED: "Push notification was rejected.",
    ChallengeResult.TIMEOUT: "Push notification timed out. Please try again.",
    ChallengeResult.FAILED: "Push verification failed.",
}


class MfaState(str, Enum):
    LOADING = "loading"
    SELECT_FACTOR = "select_factor"
    CHALLENGE = "challenge"
    PUSH_WAITING = "push_waiting"
    VERIFYING = "verifying"
    SUCCESS = "success"
    ERROR = "error"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (MfaState.SUCCESS, MfaState.CANCELLED)


# =============================================================================
# Events
# =============================================================================


@dataclass(frozen=True)
class FactorsLoaded:
    """Factor list fetched. Only ACTIVE factors are kept."""

    factors: tuple[Factor, ...]


@dataclass(frozen=True)
class FactorSelected:
    factor: Factor


@dataclass(frozen=True)
class ChallengeDispatched:
    """A non-push challenge was sent (or re-sent)."""

    challenge: Challenge


@dataclass(frozen=True)
class InvalidInput:
    """Submitted code failed local validation. No network call was made."""

    message: str = INVALID_INPUT_MESSAGE


@dataclass(frozen=True)
class ProofSubmitted:
    pass


@dataclass(frozen=True)
class ProofRejected:
    message: str = INVALID_CODE_MESSAGE


@dataclass(frozen=True)
class PushFailed:
    result: ChallengeResult
    message: str


@dataclass(frozen=True)
class Verified:
    redirect_to: str


@dataclass(frozen=True)
class Failed:
    """An adapter call failed (transport, auth, timeout, dispatch)."""

    message: str


@dataclass(frozen=True)
class Retry:
    pass


@dataclass(frozen=True)
class Cancelled:
    pass


MfaEvent = Union[
    FactorsLoaded,
    FactorSelected,
    ChallengeDispatched,
    InvalidInput,
    ProofSubmitted,
    ProofRejected,
    PushFailed,
    Verified,
    Failed,
    Retry,
    Cancelled,
]


@dataclass(frozen=True)
class MfaSnapshot:
    """Immutable view of the challenge workflow.

    Attributes:
        state: Current state.
        factors: ACTIVE factors available to the user.
        selected: Factor currently being challenged.
        challenge: Latest issued challenge for the selected factor.
        error: Error shown in the ERROR state.
        inline_error: Error shown next to the code input in CHALLENGE.
        redirect_to: Destination once SUCCESS is reached.
    """

    state: MfaState = MfaState.LOADING
    factors: tuple[Factor, ...] = ()
    selected: Factor | None = None
    challenge: Challenge | None = None
    error: str | None = None
    inline_error: str | None = None
    redirect_to: str | None = None


def _reject(snapshot: MfaSnapshot, event: MfaEvent) -> InvalidTransitionError:
    return InvalidTransitionError(snapshot.state.value, type(event).__name__)


def transition(snapshot: MfaSnapshot, event: MfaEvent) -> MfaSnapshot:
    """Compute the next snapshot for `event`.

    Raises:
        InvalidTransitionError: If the current state does not accept the event.
    """
    state = snapshot.state
    if state.is_terminal:
        raise _reject(snapshot, event)

    if isinstance(event, Cancelled):
        return replace(snapshot, state=MfaState.CANCELLED, inline_error=None)

    if isinstance(event, Failed):
        if state is MfaState.ERROR:
            raise _reject(snapshot, event)
        return replace(snapshot, state=MfaState.ERROR, error=event.message, inline_error=None)

    if isinstance(event, FactorsLoaded):
        if state is not MfaState.LOADING:
            raise _reject(snapshot, event)
        active = tuple(f for f in event.factors if f.is_active)
        if not active:
            return replace(snapshot, state=MfaState.ERROR, factors=(), error=NO_FACTORS_MESSAGE)
        return replace(snapshot, state=MfaState.SELECT_FACTOR, factors=active, error=None)

    if isinstance(event, FactorSelected):
        # From ERROR only when there are loaded factors to pick another from
        selectable = state in (MfaState.SELECT_FACTOR, MfaState.CHALLENGE, MfaState.PUSH_WAITING)
        if not selectable and not (state is MfaState.ERROR and snapshot.factors):
            raise _reject(snapshot, event)
        next_state = MfaState.PUSH_WAITING if event.factor.is_push else MfaState.SELECT_FACTOR
        return replace(
            snapshot,
            state=next_state,
            selected=event.factor,
            challenge=None,
            error=None,
            inline_error=None,
        )

    if isinstance(event, ChallengeDispatched):
        if state not in (MfaState.SELECT_FACTOR, MfaState.CHALLENGE) or snapshot.selected is None:
            raise _reject(snapshot, event)
        return replace(snapshot, state=MfaState.CHALLENGE, challenge=event.challenge, inline_error=None)

    if isinstance(event, InvalidInput):
        if state is not MfaState.CHALLENGE:
            raise _reject(snapshot, event)
        return replace(snapshot, inline_error=event.message)

    if isinstance(event, ProofSubmitted):
        if state is not MfaState.CHALLENGE:
            raise _reject(snapshot, event)
        return replace(snapshot, state=MfaState.VERIFYING, inline_error=None)

    if isinstance(event, ProofRejected):
        if state is not MfaState.VERIFYING:
            raise _reject(snapshot, event)
        return replace(snapshot, state=MfaState.CHALLENGE, inline_error=event.message)

    if isinstance(event, PushFailed):
        if state is not MfaState.PUSH_WAITING:
            raise _reject(snapshot, event)
        return replace(snapshot, state=MfaState.ERROR, error=event.message)

    if isinstance(event, Verified):
        if state not in (MfaState.VERIFYING, MfaState.PUSH_WAITING):
            raise _reject(snapshot, event)
        return replace(snapshot, state=MfaState.SUCCESS, redirect_to=event.redirect_to, error=None)

    if isinstance(event, Retry):
        if state is not MfaState.ERROR:
            raise _reject(snapshot, event)
        if not snapshot.factors:
            return MfaSnapshot(state=MfaState.LOADING)
        return replace(snapshot, state=MfaState.SELECT_FACTOR, challenge=None, error=None)

    raise _reject(snapshot, event)


# =============================================================================
# Driver
# =============================================================================


@dataclass(frozen=True)
class StepUpProof:
    """Handed to the caller once step-up succeeds.

    Attributes:
        principal_id: User who completed step-up.
        verified_at_ms: The recorded mfa_timestamp.
        redirect_to: Where the caller should continue.
        factor_id: Factor used, None for an OIDC step-up callback.
        factor_type: Factor type used ("oidc" for the callback path).
    """

    principal_id: str
    verified_at_ms: int
    redirect_to: str
    factor_id: str | None = None
    factor_type: str | None = None


CompletionCallback = Callable[[StepUpProof], Union[None, Awaitable[None]]]
SnapshotListener = Callable[[MfaSnapshot, MfaSnapshot], None]


class MfaChallengeFlow:
    """Drives one step-up challenge for one signed-in user.

    Usage:
        async with MfaChallengeFlow(idp, store, user_id, on_complete=go) as flow:
            await flow.start()
            await flow.select_factor(flow.snapshot.factors[0].id)
            await flow.submit_code("123456")
    """

    def __init__(
        self,
        idp: IdentityProviderClient,
        store: SessionStateStore,
        user_id: str,
        *,
        on_complete: CompletionCallback | None = None,
        default_redirect: str = PATH_DASHBOARD,
        poll_interval_seconds: float = PUSH_POLL_INTERVAL_SECONDS,
        push_timeout_seconds: float = PUSH_TIMEOUT_SECONDS,
        request_timeout_seconds: float | None = None,
        success_delay_seconds: float = 0.0,
    ) -> None:
        """Initialize the flow.

        Args:
            idp: Identity provider client.
            store: Session store that receives the step-up proof.
            user_id: Principal being challenged.
            on_complete: Called with the StepUpProof on SUCCESS.
            default_redirect: Destination when no mfa_redirect_to is pending.
            poll_interval_seconds: Push poll interval.
            push_timeout_seconds: Push hard ceiling.
            request_timeout_seconds: Timeout for each adapter call.
            success_delay_seconds: Pause between SUCCESS and on_complete.
        """
        self._idp = idp
        self._store = store
        self._user_id = user_id
        self._on_complete = on_complete
        self._default_redirect = default_redirect
        self._timeout = request_timeout_seconds
        self._success_delay = success_delay_seconds
        self._snapshot = MfaSnapshot()
        self._listeners: list[SnapshotListener] = []
        self._poller = PushPoller(
            idp,
            interval_seconds=poll_interval_seconds,
            timeout_seconds=push_timeout_seconds,
            request_timeout_seconds=request_timeout_seconds,
        )
        self._audit = get_audit_logger()

    @property
    def snapshot(self) -> MfaSnapshot:
        return self._snapshot

    @property
    def state(self) -> MfaState:
        return self._snapshot.state

    @property
    def is_polling(self) -> bool:
        return self._poller.is_running

    def subscribe(self, listener: SnapshotListener) -> Callable[[], None]:
        """Register a (previous, current) transition listener.

        Returns:
            Callable that removes the listener.
        """
        self._listeners.append(listener)
        return lambda: self._listeners.remove(listener)

    async def __aenter__(self) -> "MfaChallengeFlow":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    # -------------------------------------------------------------------------
    # User actions
    # -------------------------------------------------------------------------

    async def start(self) -> MfaSnapshot:
        """Load the user's factors (LOADING -> SELECT_FACTOR or ERROR)."""
        if self.state is not MfaState.LOADING:
            raise InvalidTransitionError(self.state.value, "start")
        try:
            factors = await self._idp.list_factors(self._user_id, timeout=self._timeout)
        except PortalError as e:
            return self._dispatch(Failed(e.message))
        return self._dispatch(FactorsLoaded(tuple(factors)))

    async def select_factor(self, factor: Factor | str) -> MfaSnapshot:
        """Challenge a factor, cancelling any push poll in flight first."""
        factor = self._resolve_factor(factor)
        await self._poller.stop()
        self._dispatch(FactorSelected(factor))

        try:
            challenge = await self._idp.issue_challenge(self._user_id, factor.id, timeout=self._timeout)
        except PortalError as e:
            return self._dispatch(Failed(e.message))

        if factor.is_push:
            return await self._handle_push_issued(challenge)
        return self._dispatch(ChallengeDispatched(challenge))

    async def submit_code(self, code: str) -> MfaSnapshot:
        """Verify a one-time code for the selected factor."""
        code = (code or "").strip()
        if self.state is not MfaState.CHALLENGE:
            raise InvalidTransitionError(self.state.value, "submit_code")
        if not code or not code.isdigit():
            return self._dispatch(InvalidInput())
        return await self._verify(code)

    async def submit_assertion(self, assertion: WebAuthnAssertion) -> MfaSnapshot:
        """Verify a WebAuthn assertion for the selected factor."""
        if self.state is not MfaState.CHALLENGE:
            raise InvalidTransitionError(self.state.value, "submit_assertion")
        return await self._verify(assertion)

    async def resend(self) -> MfaSnapshot:
        """Re-dispatch the challenge for the selected OTP factor."""
        selected = self._snapshot.selected
        if self.state is not MfaState.CHALLENGE or selected is None:
            raise InvalidTransitionError(self.state.value, "resend")
        try:
            challenge = await self._idp.issue_challenge(self._user_id, selected.id, timeout=self._timeout)
        except PortalError as e:
            return self._dispatch(Failed(e.message))
        return self._dispatch(ChallengeDispatched(challenge))

    async def retry(self) -> MfaSnapshot:
        """From ERROR, replay the step that failed."""
        selected = self._snapshot.selected
        self._dispatch(Retry())
        if self.state is MfaState.LOADING:
            return await self.start()
        if selected is not None:
            return await self.select_factor(selected)
        return self._snapshot

    async def cancel(self) -> MfaSnapshot:
        """Abandon the challenge. Stops any push poll."""
        await self._poller.stop()
        if self.state.is_terminal:
            return self._snapshot
        return self._dispatch(Cancelled())

    async def close(self) -> None:
        """Release background work (teardown)."""
        await self._poller.stop()

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _dispatch(self, event: MfaEvent) -> MfaSnapshot:
        previous = self._snapshot
        self._snapshot = transition(previous, event)
        for listener in list(self._listeners):
            listener(previous, self._snapshot)
        return self._snapshot

    def _resolve_factor(self, factor: Factor | str) -> Factor:
        if isinstance(factor, Factor):
            return factor
        for candidate in self._snapshot.factors:
            if candidate.id == factor:
                return candidate
        raise ValidationError(f"Unknown factor {factor}", fields=["factor_id"])

    async def _handle_push_issued(self, challenge: Challenge) -> MfaSnapshot:
        if challenge.result is ChallengeResult.SUCCESS:
            return await self._complete(challenge)
        if challenge.result.is_terminal:
            return await self._on_push_result(challenge)
        self._snapshot = replace(self._snapshot, challenge=challenge)
        self._poller.start(challenge, on_result=self._on_push_result, on_error=self._on_push_error)
        return self._snapshot

    async def _on_push_result(self, challenge: Challenge) -> MfaSnapshot:
        if self.state is not MfaState.PUSH_WAITING:
            return self._snapshot
        if challenge.result is ChallengeResult.SUCCESS:
            return await self._complete(challenge)
        message = PUSH_FAILURE_MESSAGES.get(challenge.result, PUSH_FAILURE_MESSAGES[ChallengeResult.FAILED])
        self._audit.failure(
            "step_up",
            "push_failed",
            message,
            principal_id=self._user_id,
            factor_type=self._factor_type(),
            details={"factor_result": challenge.result.value},
        )
        return self._dispatch(PushFailed(challenge.result, message))

    async def _on_push_error(self, error: PortalError) -> None:
        if self.state is not MfaState.PUSH_WAITING:
            return
        self._audit.failure(
            "step_up", "push_failed", error, principal_id=self._user_id, factor_type=self._factor_type()
        )
        self._dispatch(Failed(error.message))

    async def _verify(self, proof: str | WebAuthnAssertion) -> MfaSnapshot:
        selected = self._snapshot.selected
        if selected is None:
            raise InvalidTransitionError(self.state.value, "verify")
        self._dispatch(ProofSubmitted())
        try:
            result = await self._idp.verify_challenge(self._user_id, selected.id, proof, timeout=self._timeout)
        except PortalError as e:
            return self._dispatch(Failed(e.message))

        if result.succeeded:
            return await self._complete(result)

        self._audit.failure(
            "step_up",
            "mfa_rejected",
            INVALID_CODE_MESSAGE,
            principal_id=self._user_id,
            factor_type=selected.factor_type,
            details={"factor_result": result.result.value},
        )
        return self._dispatch(ProofRejected())

    async def _complete(self, challenge: Challenge) -> MfaSnapshot:
        await self._poller.stop()
        verified_at = self._store.record_step_up()
        redirect_to = self._store.take_mfa_redirect(self._default_redirect)
        snapshot = self._dispatch(Verified(redirect_to))

        self._audit.success(
            "step_up", "mfa_verified", principal_id=self._user_id, factor_type=self._factor_type()
        )
        _system_logger.info(
            {
                "event": "mfa_verified",
                "message": f"Step-up completed, continuing to {redirect_to}",
                "factor_id": challenge.factor_id,
            }
        )

        if self._success_delay:
            await asyncio.sleep(self._success_delay)
        if self._on_complete is not None:
            proof = StepUpProof(
                principal_id=self._user_id,
                verified_at_ms=verified_at,
                redirect_to=redirect_to,
                factor_id=challenge.factor_id,
                factor_type=self._factor_type(),
            )
            outcome = self._on_complete(proof)
            if inspect.isawaitable(outcome):
                await outcome
        return snapshot

    def _factor_type(self) -> str | None:
        selected = self._snapshot.selected
        return selected.factor_type if selected else None


async def begin_mfa_challenge(
    idp: IdentityProviderClient,
    store: SessionStateStore,
    user_id: str,
    on_complete: CompletionCallback | None = None,
    **options: Any,
) -> MfaChallengeFlow:
    """Create a challenge flow and load the user's factors.

    The caller owns the returned flow and must close() it (or use it as an
    async context manager) to stop any push poll.
    """
    flow = MfaChallengeFlow(idp, store, user_id, on_complete=on_complete, **options)
    await flow.start()
    return flow


# =============================================================================
# OIDC step-up callback
# =============================================================================


def accept_step_up_callback(
    store: SessionStateStore,
    claims: ClaimsSnapshot | None,
    *,
    max_age_seconds: int = STEP_UP_CALLBACK_MAX_AGE_SECONDS,
    default_redirect: str = PATH_DASHBOARD,
    now: float | None = None,
) -> StepUpProof:
    """Record a step-up after an OIDC re-authentication with MFA acr_values.

    An auth_time older than `max_age_seconds` (or missing) is logged as a
    warning and the proof is still recorded.

    Raises:
        ValidationError: If there are no claims (not signed in).
    """
    if claims is None:
        raise ValidationError("Not authenticated")

    current = time.time() if now is None else now
    age = None if claims.auth_time is None else current - claims.auth_time
    if age is None or age > max_age_seconds:
        _system_logger.warning(
            {
                "event": "step_up_callback_stale",
                "message": "auth_time is not recent; recording step-up anyway",
                "auth_age_seconds": age,
                "max_age_seconds": max_age_seconds,
            }
        )

    store.set_claims(claims)
    verified_at = store.record_step_up()
    redirect_to = store.take_mfa_redirect(default_redirect)
    get_audit_logger().success(
        "step_up",
        "mfa_verified",
        principal_id=claims.sub,
        factor_type="oidc",
        details={"auth_age_seconds": age},
    )
    return StepUpProof(
        principal_id=claims.sub,
        verified_at_ms=verified_at,
        redirect_to=redirect_to,
        factor_type="oidc",
    )
