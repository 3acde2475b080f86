"""Dependent linking API schemas."""

from __future__ import annotations

__all__ = [
    "AddDependentRequest",
    "AddDependentResponse",
    "ChildCheckRequest",
    "ChildCheckResponse",
    "ChildCreateRequest",
    "ChildCreateResponse",
    "CompleteVerificationRequest",
    "CompleteVerificationResponse",
    "DependentResponse",
    "DependentsResponse",
]

from pydantic import BaseModel

from state_portal.idp.models import Principal


class DependentResponse(BaseModel):
    """A child account as shown to the parent."""

    id: str
    status: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    email: str | None = None
    identity_verified: bool = False
    verified_date: str | None = None

    @classmethod
    def from_principal(cls, principal: Principal) -> "DependentResponse":
        profile = principal.profile
        return cls(
            id=principal.id,
            status=principal.status,
            first_name=profile.first_name,
            last_name=profile.last_name,
            email=profile.email,
            identity_verified=profile.identity_verified,
            verified_date=profile.verified_date,
        )


class DependentsResponse(BaseModel):
    dependents: list[DependentResponse]


class ChildCheckRequest(BaseModel):
    email: str
    parent_id: str | None = None


class ChildCheckResponse(BaseModel):
    """Lookup outcome. `can_link` is False when another parent owns the account."""

    exists: bool
    can_link: bool
    user_id: str | None = None
    reason: str | None = None


class ChildCreateRequest(BaseModel):
    parent_id: str
    parent_email: str | None = None
    first_name: str
    last_name: str
    email: str


class ChildCreateResponse(BaseModel):
    """Created child account. The temporary password is shown to the parent once."""

    user_id: str
    status: str | None = None
    temporary_password: str
    first_name: str | None = None
    last_name: str | None = None
    email: str | None = None


class CompleteVerificationRequest(BaseModel):
    child_id: str
    parent_id: str


class CompleteVerificationResponse(BaseModel):
    success: bool
    child_id: str
    parent_id: str
    newly_linked: bool
    child: DependentResponse


class AddDependentRequest(BaseModel):
    """Child details entered by the signed-in parent."""

    first_name: str
    last_name: str
    email: str


class AddDependentResponse(BaseModel):
    """Staged child awaiting delegated verification.

    `temporary_password` is set only for a newly created account.
    """

    child_id: str
    name: str
    email: str
    is_new: bool
    temporary_password: str | None = None
    redirect_to: str
