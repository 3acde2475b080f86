"""Identity verification API schemas."""

from __future__ import annotations

__all__ = [
    "MarkVerifiedRequest",
    "MarkVerifiedResponse",
    "VendorTokenRequest",
    "VendorTokenResponse",
]

from pydantic import BaseModel


class VendorTokenRequest(BaseModel):
    """Open a document verification session for a principal."""

    user_id: str
    email: str
    first_name: str | None = None
    last_name: str | None = None


class VendorTokenResponse(BaseModel):
    """Vendor session handed to the capture widget."""

    transaction_token: str
    reference_id: str
    sdk_key: str | None = None
    qr_code: str | None = None
    verify_url: str | None = None


class MarkVerifiedRequest(BaseModel):
    """Persist the identity-verified attribute on a principal."""

    user_id: str


class MarkVerifiedResponse(BaseModel):
    success: bool
    user_id: str
    identity_verified: bool
    verified_date: str | None = None
