"""Dependent (child) linking workflow.

A verified, recently stepped-up parent adds a child account and verifies the
child's identity on their behalf:

1. check_access: the parent needs an ACTIVE factor and a fresh step-up
2. add_dependent: re-run the gate, look the child up by email, halt on a
   link conflict, create the account if new, remember the pending child in
   the session
3. begin_child_verification: run identity verification scoped to the child
4. complete_verification: mark the child verified, then append the child to
   the parent's dependents (idempotent, safe to retry after partial failure)

Multi-step operations return a Result rather than raising.
"""

from __future__ import annotations

__all__ = [
    "AddedDependent",
    "ChildLookup",
    "ChildProfile",
    "CreatedChild",
    "DependentLinker",
    "LinkedDependent",
    "generate_temporary_password",
]

import secrets
import string
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from state_portal.constants import (
    FLAG_MFA_REDIRECT_TO,
    FLAG_PENDING_CHILD,
    FLAG_PENDING_CHILD_TEMP_PASSWORD,
    FLAG_POST_ENROLLMENT_REDIRECT,
    PATH_ADD_DEPENDENT,
    PATH_MFA_CHALLENGE,
    PATH_SECURE_ACCOUNT,
    PATH_VERIFY_DEPENDENT,
)
from state_portal.exceptions import LinkConflictError, PortalError, StepUpRequiredError, ValidationError
from state_portal.guard import Allow, Decision, Redirect
from state_portal.idp.client import IdentityProviderClient
from state_portal.idp.models import Principal, PrincipalProfile
from state_portal.result import Result
from state_portal.session.claims import ClaimsSnapshot
from state_portal.session.store import PendingChild, SessionStateStore
from state_portal.telemetry.audit import get_audit_logger
from state_portal.telemetry.system_logger import get_system_logger
from state_portal.vendor.client import VerificationVendorClient
from state_portal.vendor.events import VerificationWidget
from state_portal.workflows.verification import (
    DependentVerificationCompletion,
    IdentityVerificationFlow,
    VerificationSubject,
)

_system_logger = get_system_logger()

LINK_CONFLICT_REASON = "This child is already linked to another parent"
ENROLLMENT_REQUIRED_MESSAGE = "Set up a verification method before adding a dependent"
STEP_UP_REQUIRED_MESSAGE = "Please confirm it's you before adding a dependent"

_TEMP_PASSWORD_ALPHABET = string.ascii_lowercase + string.digits


def generate_temporary_password() -> str:
    """One-time credential for a new child account: Temp<8 x [a-z0-9]>!<0-99>."""
    body = "".join(secrets.choice(_TEMP_PASSWORD_ALPHABET) for _ in range(8))
    return f"Temp{body}!{secrets.randbelow(100)}"


@dataclass(frozen=True)
class ChildProfile:
    first_name: str
    last_name: str
    email: str

    def normalized(self) -> "ChildProfile":
        return ChildProfile(self.first_name.strip(), self.last_name.strip(), self.email.strip())

    @property
    def display_name(self) -> str:
        return f"{self.first_name} {self.last_name}"


@dataclass(frozen=True)
class ChildLookup:
    """Result of looking a child up by email.

    Attributes:
        exists: An account with this email exists.
        can_link: The account may be linked to the requesting parent.
        user_id: Existing account id.
        reason: Why linking is refused.
        profile: Existing account profile when linkable.
    """

    exists: bool
    can_link: bool
    user_id: str | None = None
    reason: str | None = None
    profile: PrincipalProfile | None = None


@dataclass(frozen=True)
class CreatedChild:
    user_id: str
    status: str | None
    temporary_password: str
    profile: PrincipalProfile


@dataclass(frozen=True)
class AddedDependent:
    """Outcome of add_dependent.

    Attributes:
        child: The pending child now stored in the session.
        temporary_password: One-time credential, only for new accounts.
        redirect_to: Where delegated verification continues.
    """

    child: PendingChild
    temporary_password: str | None
    redirect_to: str


@dataclass(frozen=True)
class LinkedDependent:
    """Outcome of complete_verification.

    Attributes:
        child: The child principal after verification.
        parent_id: The parent the child is linked to.
        newly_linked: False when the child was already in the parent's dependents.
    """

    child: Principal
    parent_id: str
    newly_linked: bool


class DependentLinker:
    """Links child accounts to a parent.

    Usage:
        linker = DependentLinker(idp, store)
        decision = await linker.check_access(parent_id)
        result = await linker.add_dependent(claims, ChildProfile("Ada", "Lee", "ada@example.com"))
    """

    def __init__(
        self,
        idp: IdentityProviderClient,
        store: SessionStateStore,
        *,
        request_timeout_seconds: float | None = None,
    ) -> None:
        self._idp = idp
        self._store = store
        self._timeout = request_timeout_seconds
        self._audit = get_audit_logger()

    # =========================================================================
    # Gate
    # =========================================================================

    async def check_access(self, parent_id: str) -> Decision:
        """Gate the add-dependent screen.

        - No ACTIVE factor: enroll first, then come back
        - Step-up stale or absent: step up, then come back
        - Factor lookup fails: require step-up
        """
        try:
            factors = await self._idp.list_factors(parent_id, timeout=self._timeout)
        except PortalError as e:
            _system_logger.warning(
                {
                    "event": "dependent_gate_factor_lookup_failed",
                    "message": f"Factor lookup failed, requiring step-up: {e.message}",
                }
            )
            return self._require_step_up()

        if not any(f.is_active for f in factors):
            self._store.set_flag(FLAG_POST_ENROLLMENT_REDIRECT, PATH_ADD_DEPENDENT)
            return Redirect(PATH_SECURE_ACCOUNT, "mfa_enrollment_required")

        if not self._store.is_step_up_fresh():
            return self._require_step_up()
        return Allow()

    async def require_access(self, parent_id: str) -> None:
        """check_access() for operations that create or link accounts.

        Raises:
            StepUpRequiredError: With the redirect check_access() decided on.
        """
        decision = await self.check_access(parent_id)
        if isinstance(decision, Redirect):
            message = (
                ENROLLMENT_REQUIRED_MESSAGE
                if decision.reason == "mfa_enrollment_required"
                else STEP_UP_REQUIRED_MESSAGE
            )
            raise StepUpRequiredError(message, redirect_to=decision.target, reason=decision.reason)

    def _require_step_up(self) -> Redirect:
        self._store.clear_step_up()
        self._store.set_flag(FLAG_MFA_REDIRECT_TO, PATH_ADD_DEPENDENT)
        return Redirect(PATH_MFA_CHALLENGE, "step_up_required")

    # =========================================================================
    # Lookup and creation
    # =========================================================================

    async def check_child(self, email: str, parent_id: str | None) -> ChildLookup:
        """Look a child up by email and decide whether it can be linked."""
        existing = await self._idp.find_by_email(email, timeout=self._timeout)
        if existing is None:
            return ChildLookup(exists=False, can_link=True)

        existing_parent = existing.profile.parent_id
        if existing_parent and existing_parent != parent_id:
            return ChildLookup(exists=True, can_link=False, user_id=existing.id, reason=LINK_CONFLICT_REASON)
        return ChildLookup(exists=True, can_link=True, user_id=existing.id, profile=existing.profile)

    async def create_child(
        self,
        parent_id: str,
        parent_email: str | None,
        first_name: str,
        last_name: str,
        email: str,
    ) -> CreatedChild:
        """Create an activated child account with parentId preset.

        Raises:
            UpstreamError: If the provider rejects the account (see `causes`).
        """
        temporary_password = generate_temporary_password()
        principal = await self._idp.create_user(
            {
                "firstName": first_name,
                "lastName": last_name,
                "email": email,
                "login": email,
                "secondEmail": parent_email or None,
                "parentId": parent_id,
            },
            temporary_password,
            activate=True,
            timeout=self._timeout,
        )
        _system_logger.info(
            {
                "event": "dependent_account_created",
                "message": "Created child account",
                "status": principal.status,
            }
        )
        return CreatedChild(
            user_id=principal.id,
            status=principal.status,
            temporary_password=temporary_password,
            profile=principal.profile,
        )

    # =========================================================================
    # Workflow
    # =========================================================================

    async def add_dependent(self, parent: ClaimsSnapshot, child_profile: ChildProfile) -> Result[AddedDependent]:
        """Check, (create) and stage a child for delegated verification.

        The parent must have an ACTIVE factor and a fresh step-up; otherwise
        the result is a StepUpRequiredError naming where to go, and no lookup
        or account creation happens. A link conflict halts before any account
        is created.
        """
        child_profile = child_profile.normalized()
        missing = [
            name
            for name, value in (
                ("first_name", child_profile.first_name),
                ("last_name", child_profile.last_name),
                ("email", child_profile.email),
            )
            if not value
        ]
        if missing:
            return Result.failure(ValidationError("Please fill in all required fields", fields=missing))

        try:
            await self.require_access(parent.sub)
            lookup = await self.check_child(child_profile.email, parent.sub)
            if not lookup.can_link:
                conflict = LinkConflictError(lookup.reason or LINK_CONFLICT_REASON, child_id=lookup.user_id)
                self._audit.failure(
                    "dependent", "link_conflict", conflict, parent_id=parent.sub, child_id=lookup.user_id
                )
                return Result.failure(conflict)

            temporary_password: str | None = None
            if lookup.exists and lookup.user_id:
                child_id = lookup.user_id
            else:
                created = await self.create_child(
                    parent.sub,
                    parent.email,
                    child_profile.first_name,
                    child_profile.last_name,
                    child_profile.email,
                )
                child_id = created.user_id
                temporary_password = created.temporary_password
        except StepUpRequiredError as e:
            self._audit.failure(
                "dependent", "dependent_add_blocked", e, parent_id=parent.sub, details={"reason": e.reason}
            )
            return Result.failure(e)
        except PortalError as e:
            self._audit.failure("dependent", "dependent_add_failed", e, parent_id=parent.sub)
            return Result.failure(e)

        pending = PendingChild(
            child_id=child_id,
            name=child_profile.display_name,
            email=child_profile.email,
            parent_id=parent.sub,
            is_new=not lookup.exists,
        )
        self._store.set_flag(FLAG_PENDING_CHILD, pending)
        if temporary_password is not None:
            self._store.set_flag(FLAG_PENDING_CHILD_TEMP_PASSWORD, temporary_password)

        self._audit.success(
            "dependent",
            "dependent_created" if pending.is_new else "dependent_found",
            parent_id=parent.sub,
            child_id=child_id,
        )
        return Result.success(
            AddedDependent(
                child=pending,
                temporary_password=temporary_password,
                redirect_to=f"{PATH_VERIFY_DEPENDENT}/{child_id}",
            )
        )

    async def complete_verification(self, child_id: str, parent_id: str) -> Result[LinkedDependent]:
        """Mark the child verified and link it to the parent.

        Each step is idempotent, so a retry after a partial failure converges.
        The child is appended to the parent's dependents only when missing.
        """
        if not child_id or not parent_id:
            return Result.failure(
                ValidationError("childId and parentId are required", fields=["child_id", "parent_id"])
            )

        verified_date = datetime.now(timezone.utc).isoformat()
        try:
            child = await self._idp.update_profile(
                child_id,
                {"identityVerified": True, "verifiedDate": verified_date},
                timeout=self._timeout,
            )
            parent = await self._idp.get_user(parent_id, timeout=self._timeout)
            dependents = list(parent.profile.dependents)
            newly_linked = child_id not in dependents
            if newly_linked:
                await self._idp.update_profile(
                    parent_id,
                    {"dependents": [*dependents, child_id]},
                    timeout=self._timeout,
                )
        except PortalError as e:
            self._audit.failure("dependent", "dependent_link_failed", e, parent_id=parent_id, child_id=child_id)
            return Result.failure(e)

        pending = self._store.get_flag(FLAG_PENDING_CHILD)
        if isinstance(pending, PendingChild) and pending.child_id == child_id:
            self._store.clear_flag(FLAG_PENDING_CHILD)

        self._audit.success(
            "dependent",
            "dependent_linked",
            parent_id=parent_id,
            child_id=child_id,
            details={"newly_linked": newly_linked},
        )
        return Result.success(LinkedDependent(child=child, parent_id=parent_id, newly_linked=newly_linked))

    def begin_child_verification(
        self,
        vendor: VerificationVendorClient,
        widget: VerificationWidget,
        *,
        parent_id: str,
        child: PendingChild | None = None,
        **options: Any,
    ) -> IdentityVerificationFlow:
        """Build a verification flow scoped to the pending child.

        Call begin() on the returned flow. The parent's own verification
        flag is never modified by this flow.

        Raises:
            ValidationError: If there is no pending child for this parent.
        """
        child = child or self._store.get_flag(FLAG_PENDING_CHILD)
        if not isinstance(child, PendingChild) or child.parent_id != parent_id:
            raise ValidationError("No pending dependent to verify", fields=["pending_child"])

        given_name, _, family_name = child.name.partition(" ")
        subject = VerificationSubject(
            principal_id=child.child_id,
            email=child.email,
            given_name=given_name or None,
            family_name=family_name or None,
        )
        completion = DependentVerificationCompletion(self, parent_id=parent_id, child_id=child.child_id)
        return IdentityVerificationFlow(vendor, widget, subject, completion, **options)

    def take_temporary_password(self) -> str | None:
        """Consume the one-time credential once the parent has seen it."""
        return self._store.pop_flag(FLAG_PENDING_CHILD_TEMP_PASSWORD)

    async def list_dependents(self, parent_id: str) -> list[Principal]:
        """Child accounts whose parentId points at `parent_id`."""
        return await self._idp.find_by_parent_id(parent_id, timeout=self._timeout)
