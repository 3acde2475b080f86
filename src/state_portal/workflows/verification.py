"""Identity verification workflow.

State machine:

    INIT -> GETTING_TOKEN -> LOADING_WIDGET -> INITIALIZING_WIDGET -> VERIFYING -> {SUCCESS | ERROR}

plus ALREADY_VERIFIED (entered from INIT without calling the vendor) and
CANCELLED. The flow is the vendor's event sink: the widget reports the
outcome through on_success / on_error / on_progress.

What "success" means is delegated to a completion policy:
- SelfVerificationCompletion: the signed-in user verified themself
- DependentVerificationCompletion: a parent verified a linked child
"""

from __future__ import annotations

__all__ = [
    "Cancel",
    "DependentVerificationCompletion",
    "IdentityVerificationFlow",
    "SelfVerificationCompletion",
    "StepFailed",
    "VerificationCompletion",
    "VerificationEvent",
    "VerificationSnapshot",
    "VerificationStep",
    "VerificationSubject",
    "begin_verification",
    "transition",
]

from dataclasses import dataclass, replace
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable, Protocol, Union

from state_portal.constants import PATH_DASHBOARD, PATH_SERVICES
from state_portal.exceptions import (
    InvalidTransitionError,
    PortalError,
    ValidationError,
    VerificationFailedError,
)
from state_portal.idp.client import IdentityProviderClient
from state_portal.session.claims import ClaimsSnapshot, VerificationTier
from state_portal.session.store import SessionStateStore
from state_portal.telemetry.audit import get_audit_logger
from state_portal.telemetry.system_logger import get_system_logger
from state_portal.vendor.client import VendorSession, VerificationVendorClient
from state_portal.vendor.events import (
    VerificationError,
    VerificationProgress,
    VerificationResult,
    VerificationWidget,
)

if TYPE_CHECKING:
    from state_portal.workflows.dependents import DependentLinker

_system_logger = get_system_logger()


class VerificationStep(str, Enum):
    INIT = "init"
    GETTING_TOKEN = "getting_token"
    LOADING_WIDGET = "loading_widget"
    INITIALIZING_WIDGET = "initializing_widget"
    VERIFYING = "verifying"
    SUCCESS = "success"
    ERROR = "error"
    ALREADY_VERIFIED = "already_verified"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (VerificationStep.SUCCESS, VerificationStep.ALREADY_VERIFIED, VerificationStep.CANCELLED)


# =============================================================================
# Events
# =============================================================================


@dataclass(frozen=True)
class AlreadyVerified:
    redirect_to: str


@dataclass(frozen=True)
class TokenRequested:
    pass


@dataclass(frozen=True)
class TokenIssued:
    session: VendorSession


@dataclass(frozen=True)
class WidgetLoaded:
    pass


@dataclass(frozen=True)
class WidgetLaunched:
    pass


@dataclass(frozen=True)
class Completed:
    redirect_to: str


@dataclass(frozen=True)
class StepFailed:
    """A step failed; `error_type` is the PortalError category."""

    message: str
    error_type: str = "portal_error"


@dataclass(frozen=True)
class Retry:
    pass


@dataclass(frozen=True)
class Cancel:
    pass


VerificationEvent = Union[
    AlreadyVerified,
    TokenRequested,
    TokenIssued,
    WidgetLoaded,
    WidgetLaunched,
    Completed,
    StepFailed,
    Retry,
    Cancel,
]


@dataclass(frozen=True)
class VerificationSnapshot:
    step: VerificationStep = VerificationStep.INIT
    session: VendorSession | None = None
    error: str | None = None
    error_type: str | None = None
    redirect_to: str | None = None


# (current step, event type) -> next step, for the linear part of the machine
_LINEAR: dict[tuple[VerificationStep, type], VerificationStep] = {
    (VerificationStep.INIT, TokenRequested): VerificationStep.GETTING_TOKEN,
    (VerificationStep.GETTING_TOKEN, TokenIssued): VerificationStep.LOADING_WIDGET,
    (VerificationStep.LOADING_WIDGET, WidgetLoaded): VerificationStep.INITIALIZING_WIDGET,
    (VerificationStep.INITIALIZING_WIDGET, WidgetLaunched): VerificationStep.VERIFYING,
}


def transition(snapshot: VerificationSnapshot, event: VerificationEvent) -> VerificationSnapshot:
    """Compute the next snapshot for `event`.

    Raises:
        InvalidTransitionError: If the current step does not accept the event.
    """
    step = snapshot.step
    rejected = InvalidTransitionError(step.value, type(event).__name__)
    if step.is_terminal:
        raise rejected

    if isinstance(event, Cancel):
        return replace(snapshot, step=VerificationStep.CANCELLED)

    if isinstance(event, Retry):
        if step is not VerificationStep.ERROR:
            raise rejected
        return VerificationSnapshot()

    if step is VerificationStep.ERROR:
        raise rejected

    if isinstance(event, StepFailed):
        return replace(snapshot, step=VerificationStep.ERROR, error=event.message, error_type=event.error_type)

    if isinstance(event, AlreadyVerified):
        if step is not VerificationStep.INIT:
            raise rejected
        return replace(snapshot, step=VerificationStep.ALREADY_VERIFIED, redirect_to=event.redirect_to)

    if isinstance(event, Completed):
        if step is not VerificationStep.VERIFYING:
            raise rejected
        return replace(snapshot, step=VerificationStep.SUCCESS, redirect_to=event.redirect_to)

    next_step = _LINEAR.get((step, type(event)))
    if next_step is None:
        raise rejected
    if isinstance(event, TokenIssued):
        return replace(snapshot, step=next_step, session=event.session)
    return replace(snapshot, step=next_step)


# =============================================================================
# Completion policies
# =============================================================================


@dataclass(frozen=True)
class VerificationSubject:
    """Who is being verified."""

    principal_id: str | None
    email: str | None
    given_name: str | None = None
    family_name: str | None = None

    @classmethod
    def from_claims(cls, claims: ClaimsSnapshot) -> "VerificationSubject":
        return cls(
            principal_id=claims.sub,
            email=claims.email,
            given_name=claims.given_name,
            family_name=claims.family_name,
        )


class VerificationCompletion(Protocol):
    """What happens when the vendor reports success."""

    def is_already_verified(self) -> bool: ...

    @property
    def destination(self) -> str: ...

    async def complete(self, subject: VerificationSubject, result: VerificationResult) -> str:
        """Persist the outcome and return the redirect target.

        Raises:
            PortalError: If the outcome could not be recorded.
        """
        ...


class SelfVerificationCompletion:
    """The signed-in user verified themself.

    The provider profile update is best-effort: a failure is logged and the
    session flag is set regardless, so the user proceeds on a provisional
    verification until the next token issuance.
    """

    def __init__(
        self,
        idp: IdentityProviderClient,
        store: SessionStateStore,
        *,
        accept: VerificationTier = VerificationTier.PROVISIONAL,
        destination: str = PATH_SERVICES,
        request_timeout_seconds: float | None = None,
    ) -> None:
        self._idp = idp
        self._store = store
        self._accept = accept
        self._destination = destination
        self._timeout = request_timeout_seconds

    @property
    def destination(self) -> str:
        return self._destination

    def is_already_verified(self) -> bool:
        return self._store.is_verified(self._accept)

    async def complete(self, subject: VerificationSubject, result: VerificationResult) -> str:
        verified_date = datetime.now(timezone.utc).isoformat()
        try:
            await self._idp.update_profile(
                subject.principal_id or "",
                {"identityVerified": True, "verifiedDate": verified_date},
                timeout=self._timeout,
            )
        except PortalError as e:
            _system_logger.warning(
                {
                    "event": "verification_profile_update_failed",
                    "message": f"Failed to record verification on the provider profile: {e.message}",
                    "error_type": e.error_type,
                }
            )
        self._store.mark_verified()
        return self._destination


class DependentVerificationCompletion:
    """A parent verified a linked child.

    Marks the child verified and links it to the parent. The parent's own
    verification flag is never touched.
    """

    def __init__(
        self,
        linker: "DependentLinker",
        *,
        parent_id: str,
        child_id: str,
        destination: str = PATH_DASHBOARD,
    ) -> None:
        self._linker = linker
        self._parent_id = parent_id
        self._child_id = child_id
        self._destination = destination

    @property
    def parent_id(self) -> str:
        return self._parent_id

    @property
    def child_id(self) -> str:
        return self._child_id

    @property
    def destination(self) -> str:
        return self._destination

    def is_already_verified(self) -> bool:
        return False

    async def complete(self, subject: VerificationSubject, result: VerificationResult) -> str:
        outcome = await self._linker.complete_verification(self._child_id, self._parent_id)
        outcome.unwrap()
        return self._destination


# =============================================================================
# Driver
# =============================================================================


SnapshotListener = Callable[[VerificationSnapshot, VerificationSnapshot], None]


class IdentityVerificationFlow:
    """Drives one verification attempt and acts as the vendor event sink.

    Usage:
        flow = IdentityVerificationFlow(vendor, widget, subject, completion)
        await flow.begin()
        # the widget later calls flow.on_success(...) or flow.on_error(...)
    """

    def __init__(
        self,
        vendor: VerificationVendorClient,
        widget: VerificationWidget,
        subject: VerificationSubject,
        completion: VerificationCompletion,
        *,
        request_timeout_seconds: float | None = None,
    ) -> None:
        self._vendor = vendor
        self._widget = widget
        self._subject = subject
        self._completion = completion
        self._timeout = request_timeout_seconds
        self._snapshot = VerificationSnapshot()
        self._listeners: list[SnapshotListener] = []
        self._audit = get_audit_logger()

    @property
    def snapshot(self) -> VerificationSnapshot:
        return self._snapshot

    @property
    def step(self) -> VerificationStep:
        return self._snapshot.step

    def subscribe(self, listener: SnapshotListener) -> Callable[[], None]:
        self._listeners.append(listener)
        return lambda: self._listeners.remove(listener)

    async def begin(self) -> VerificationSnapshot:
        """Run the flow up to VERIFYING (or a terminal/ERROR step)."""
        if self._completion.is_already_verified():
            return self._dispatch(AlreadyVerified(self._completion.destination))

        self._dispatch(TokenRequested())
        subject = self._subject
        if not subject.principal_id or not subject.email:
            return self._fail(ValidationError("User information not available", fields=["sub", "email"]))
        try:
            session = await self._vendor.create_session(
                subject.principal_id,
                subject.email,
                subject.given_name,
                subject.family_name,
                timeout=self._timeout,
            )
        except PortalError as e:
            return self._fail(e)
        except Exception as e:
            return self._fail(e, "Failed to create verification session", error_type="vendor_error")
        self._dispatch(TokenIssued(session))

        try:
            await self._widget.load()
        except Exception as e:
            return self._fail(e, "Failed to load the verification widget")
        self._dispatch(WidgetLoaded())

        try:
            await self._widget.launch(session, self)
        except Exception as e:
            return self._fail(e, "Failed to start the verification widget")
        if self.step is VerificationStep.INITIALIZING_WIDGET:
            self._dispatch(WidgetLaunched())
        return self._snapshot

    async def retry(self) -> VerificationSnapshot:
        self._dispatch(Retry())
        return await self.begin()

    def cancel(self) -> VerificationSnapshot:
        if self.step.is_terminal:
            return self._snapshot
        return self._dispatch(Cancel())

    # -------------------------------------------------------------------------
    # VerificationEventSink
    # -------------------------------------------------------------------------

    async def on_success(self, result: VerificationResult) -> None:
        self._mark_launched()
        if self.step is not VerificationStep.VERIFYING:
            _system_logger.warning(
                {
                    "event": "verification_success_ignored",
                    "message": f"Vendor success received in step {self.step.value}",
                }
            )
            return
        try:
            redirect_to = await self._completion.complete(self._subject, result)
        except PortalError as e:
            self._fail(e)
            return
        self._dispatch(Completed(redirect_to))
        self._audit.success("verification", "identity_verified", **self._audit_ids())

    async def on_error(self, error: VerificationError) -> None:
        self._mark_launched()
        if self.step.is_terminal or self.step is VerificationStep.ERROR:
            return
        self._fail(VerificationFailedError(f"Verification error: {error.message}", reason=error.reason))

    async def on_progress(self, event: VerificationProgress) -> None:
        _system_logger.debug(
            {
                "event": "verification_progress",
                "message": f"Vendor progress: {event.event}",
            }
        )

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _dispatch(self, event: VerificationEvent) -> VerificationSnapshot:
        previous = self._snapshot
        self._snapshot = transition(previous, event)
        for listener in list(self._listeners):
            listener(previous, self._snapshot)
        return self._snapshot

    def _mark_launched(self) -> None:
        # The widget may report before launch() returns
        if self.step is VerificationStep.INITIALIZING_WIDGET:
            self._dispatch(WidgetLaunched())

    def _fail(
        self, error: Exception, message: str | None = None, *, error_type: str = "widget_error"
    ) -> VerificationSnapshot:
        if isinstance(error, PortalError):
            text, error_type = error.message, error.error_type
        else:
            text = f"{message}: {error}" if message else str(error)
        self._audit.failure("verification", "verification_failed", text, error_type=error_type, **self._audit_ids())
        return self._dispatch(StepFailed(text, error_type))

    def _audit_ids(self) -> dict[str, Any]:
        if isinstance(self._completion, DependentVerificationCompletion):
            return {"parent_id": self._completion.parent_id, "child_id": self._completion.child_id}
        return {"principal_id": self._subject.principal_id}


async def begin_verification(
    vendor: VerificationVendorClient,
    widget: VerificationWidget,
    subject: VerificationSubject,
    completion: VerificationCompletion,
    **options: Any,
) -> IdentityVerificationFlow:
    """Create a verification flow and run it up to the widget."""
    flow = IdentityVerificationFlow(vendor, widget, subject, completion, **options)
    await flow.begin()
    return flow
