"""Identity verification API endpoints.

Routes mounted at: /api
"""

from __future__ import annotations

__all__ = ["router"]

from datetime import datetime, timezone

from fastapi import APIRouter

from state_portal.api.deps import (
    ConfigDep,
    CurrentSessionDep,
    IdentityProviderDep,
    VendorDep,
    session_store_for,
)
from state_portal.api.schemas import (
    MarkVerifiedRequest,
    MarkVerifiedResponse,
    VendorTokenRequest,
    VendorTokenResponse,
)
from state_portal.telemetry.audit import get_audit_logger

router = APIRouter()


@router.post("/vendor/token", response_model=VendorTokenResponse)
async def create_vendor_token(
    body: VendorTokenRequest,
    vendor: VendorDep,
    config: ConfigDep,
) -> VendorTokenResponse:
    """Open a document verification session with the vendor.

    Args:
        body: Subject of the verification.
        vendor: Verification vendor client (injected).
        config: Portal configuration (injected).

    Returns:
        Transaction token and the SDK key for the capture widget.
    """
    session = await vendor.create_session(
        body.user_id,
        body.email,
        body.first_name,
        body.last_name,
        timeout=config.workflow.request_timeout_seconds,
    )
    return VendorTokenResponse(
        transaction_token=session.transaction_token,
        reference_id=session.reference_id,
        sdk_key=vendor.sdk_key,
        qr_code=session.qr_code,
        verify_url=session.verify_url,
    )


@router.post("/user/verify", response_model=MarkVerifiedResponse)
async def mark_user_verified(
    body: MarkVerifiedRequest,
    idp: IdentityProviderDep,
    config: ConfigDep,
    session: CurrentSessionDep,
) -> MarkVerifiedResponse:
    """Persist identityVerified and verifiedDate on the principal's profile.

    When the caller's own session is named, it is also marked provisionally
    verified so verification-gated routes open before the next token refresh.
    """
    verified_date = datetime.now(timezone.utc).isoformat()
    principal = await idp.update_profile(
        body.user_id,
        {"identityVerified": True, "verifiedDate": verified_date},
        timeout=config.workflow.request_timeout_seconds,
    )
    store = session_store_for(session, body.user_id)
    if store is not None:
        store.mark_verified()

    get_audit_logger().success("verification", "identity_verified", principal_id=body.user_id)
    return MarkVerifiedResponse(
        success=True,
        user_id=principal.id,
        identity_verified=principal.profile.identity_verified,
        verified_date=principal.profile.verified_date or verified_date,
    )
