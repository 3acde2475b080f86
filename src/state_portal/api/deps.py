"""Shared dependencies for API routes.

FastAPI convention: deps.py contains reusable request dependencies.
All route files should import dependencies from here rather than
defining their own helper functions.

Usage with Annotated:
    from state_portal.api.deps import IdentityProviderDep, CurrentSessionDep

    @router.get("/factors/{user_id}")
    async def list_factors(user_id: str, idp: IdentityProviderDep) -> FactorsResponse:
        ...
"""

from __future__ import annotations

__all__ = [
    # Dependency functions
    "get_config",
    "get_current_session",
    "get_required_session",
    "get_identity_provider",
    "get_request_claims",
    "get_session_manager",
    "get_token_validator",
    "get_vendor",
    "session_store_for",
    "validate_id_token",
    # Type aliases for Annotated pattern
    "ConfigDep",
    "CurrentSessionDep",
    "IdentityProviderDep",
    "RequestClaimsDep",
    "RequiredSessionDep",
    "SessionManagerDep",
    "TokenValidatorDep",
    "VendorDep",
    # Header names
    "SESSION_HEADER",
]

from typing import Annotated, Any, Callable

from fastapi import Depends, Header, HTTPException, Request

from state_portal.api.errors import APIError, ErrorCode
from state_portal.config import PortalConfig
from state_portal.exceptions import ValidationError
from state_portal.idp.client import IdentityProviderClient
from state_portal.session.claims import ClaimsSnapshot
from state_portal.session.manager import BoundSession, SessionManager, parse_bound_session_id
from state_portal.session.store import SessionStateStore
from state_portal.session.tokens import IdTokenValidator
from state_portal.vendor.client import VerificationVendorClient

SESSION_HEADER = "X-Session-Id"


# =============================================================================
# Factory for State Getters
# =============================================================================


def _create_state_getter(
    attr_name: str,
    type_hint: str,
    error_detail: str,
) -> Callable[[Request], Any]:
    """Create a dependency function that retrieves a value from app.state.

    Args:
        attr_name: Attribute name on app.state (e.g., "config", "idp").
        type_hint: Type name used in the generated docstring.
        error_detail: Error message when the value is absent.

    Returns:
        A dependency function compatible with FastAPI's Depends().
    """

    def getter(request: Request) -> Any:
        value = getattr(request.app.state, attr_name, None)
        if value is None:
            raise HTTPException(status_code=503, detail=error_detail)
        return value

    getter.__name__ = f"get_{attr_name}"
    getter.__doc__ = f"Get {type_hint} from app.state.\n\nRaises HTTPException 503 if not available."
    return getter


# =============================================================================
# Dependency Functions (generated via factory)
# =============================================================================

get_config: Callable[[Request], PortalConfig] = _create_state_getter(
    "config",
    "PortalConfig",
    "Config not available. Server may still be starting.",
)

get_identity_provider: Callable[[Request], IdentityProviderClient] = _create_state_getter(
    "idp",
    "IdentityProviderClient",
    "Identity provider client not available.",
)

get_vendor: Callable[[Request], VerificationVendorClient] = _create_state_getter(
    "vendor",
    "VerificationVendorClient",
    "Verification vendor client not available.",
)

get_session_manager: Callable[[Request], SessionManager] = _create_state_getter(
    "session_manager",
    "SessionManager",
    "Session manager not available.",
)


def get_token_validator(request: Request) -> IdTokenValidator:
    """Get the ID token validator.

    Raises:
        APIError: 500 when the identity provider issuer/client_id is not configured.
    """
    validator: IdTokenValidator | None = getattr(request.app.state, "token_validator", None)
    if validator is None:
        raise APIError(
            status_code=500,
            code=ErrorCode.NOT_CONFIGURED,
            message="ID token validation not configured. Set identity_provider.issuer and client_id.",
        )
    return validator


def validate_id_token(validator: IdTokenValidator, id_token: str) -> ClaimsSnapshot:
    """Validate an ID token, surfacing failures as 401.

    Raises:
        APIError: 401 if the token is malformed, expired or mis-addressed.
    """
    try:
        return validator.validate(id_token)
    except ValidationError as e:
        raise APIError(status_code=401, code=ErrorCode.AUTH_REQUIRED, message=e.message) from e


def get_request_claims(
    request: Request,
    authorization: Annotated[str | None, Header()] = None,
) -> ClaimsSnapshot | None:
    """Claims from an `Authorization: Bearer <id_token>` header, None when absent.

    Raises:
        APIError: 401 if a token is present but invalid.
    """
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token:
        raise APIError(status_code=401, code=ErrorCode.AUTH_REQUIRED, message="Expected a Bearer ID token")
    return validate_id_token(get_token_validator(request), token.strip())


def get_current_session(
    request: Request,
    x_session_id: Annotated[str | None, Header()] = None,
) -> BoundSession | None:
    """Session named by the X-Session-Id header, None when the header is absent.

    Raises:
        APIError: 401 if the header is present but names no live session.
    """
    if not x_session_id:
        return None
    if parse_bound_session_id(x_session_id) is None:
        raise APIError(status_code=401, code=ErrorCode.AUTH_SESSION_INVALID, message="Malformed session id")
    manager = get_session_manager(request)
    session = manager.get_session(x_session_id)
    if session is None:
        raise APIError(status_code=401, code=ErrorCode.AUTH_SESSION_INVALID, message="Session expired or unknown")
    return session


def get_required_session(
    session: Annotated[BoundSession | None, Depends(get_current_session)],
) -> BoundSession:
    """Session named by the X-Session-Id header.

    Raises:
        APIError: 401 if the header is absent.
    """
    if session is None:
        raise APIError(status_code=401, code=ErrorCode.AUTH_REQUIRED, message="A portal session is required")
    return session


def session_store_for(session: BoundSession | None, user_id: str) -> SessionStateStore | None:
    """The session store when the session belongs to `user_id`, else None."""
    if session is None or session.user_id != user_id:
        return None
    return session.store


# =============================================================================
# Type Aliases for Annotated Pattern
# =============================================================================

ConfigDep = Annotated[PortalConfig, Depends(get_config)]
IdentityProviderDep = Annotated[IdentityProviderClient, Depends(get_identity_provider)]
VendorDep = Annotated[VerificationVendorClient, Depends(get_vendor)]
SessionManagerDep = Annotated[SessionManager, Depends(get_session_manager)]
TokenValidatorDep = Annotated[IdTokenValidator, Depends(get_token_validator)]
RequestClaimsDep = Annotated[ClaimsSnapshot | None, Depends(get_request_claims)]
CurrentSessionDep = Annotated[BoundSession | None, Depends(get_current_session)]
RequiredSessionDep = Annotated[BoundSession, Depends(get_required_session)]
