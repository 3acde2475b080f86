"""FastAPI server exposing the portal's identity-assurance operations.

Currently implements:
- Session API (/api/session) - ID token exchange, sign-out, step-up callback
- Access API (/api/access) - route guard decisions
- Verification API (/api) - vendor session tokens, identityVerified persistence
- MFA API (/api/mfa) - challenges, push polling, OTP and WebAuthn verification
- Factors API (/api) - factor listing, WebAuthn enrollment
- Dependents API (/api/dependents) - lookup, creation, linking
- Health (/health)

Usage:
    state-portal serve

    For development:
        uvicorn state_portal.api.server:create_api_app \\
            --factory --host 127.0.0.1 --port 3051
"""

from __future__ import annotations

__all__ = ["create_api_app"]

from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException

from state_portal.config import PortalConfig
from state_portal.exceptions import NotConfiguredError, PortalError
from state_portal.idp.client import IdentityProviderClient
from state_portal.session.manager import SessionManager
from state_portal.session.tokens import IdTokenValidator
from state_portal.telemetry.system_logger import get_system_logger
from state_portal.vendor.client import VerificationVendorClient

from .errors import (
    APIError,
    api_error_handler,
    http_exception_handler,
    portal_error_handler,
    validation_error_handler,
)
from .routes import access, dependents, factors, health, mfa, session, verification


def _build_token_validator(config: PortalConfig) -> IdTokenValidator | None:
    try:
        return IdTokenValidator(config.identity_provider)
    except NotConfiguredError as e:
        get_system_logger().warning(
            {
                "event": "token_validation_disabled",
                "message": f"ID token validation disabled: {e.message}",
            }
        )
        return None


def create_api_app(
    config: PortalConfig | None = None,
    *,
    idp: IdentityProviderClient | None = None,
    vendor: VerificationVendorClient | None = None,
    session_manager: SessionManager | None = None,
    token_validator: IdTokenValidator | None = None,
) -> FastAPI:
    """Create the FastAPI application with all routes.

    Args:
        config: Portal configuration. Loaded from file and environment if None.
        idp: Identity provider client. Built from config if None.
        vendor: Verification vendor client. Built from config if None.
        session_manager: Session registry. A fresh one if None.
        token_validator: ID token validator. Built from config if None;
            left unset when the issuer or client id is missing.

    Returns:
        Configured FastAPI application.
    """
    config = config or PortalConfig.load()
    timeout = config.workflow.request_timeout_seconds
    idp = idp or IdentityProviderClient(config.identity_provider, timeout=timeout)
    vendor = vendor or VerificationVendorClient(config.vendor, timeout=timeout)
    session_manager = session_manager or SessionManager(
        freshness_window_ms=config.workflow.step_up_window_ms,
    )
    if token_validator is None:
        token_validator = _build_token_validator(config)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        get_system_logger().info(
            {
                "event": "api_started",
                "message": "State portal API started",
                "identity_provider_configured": config.identity_provider.is_configured,
                "vendor_configured": config.vendor.is_configured,
            }
        )
        try:
            yield
        finally:
            await idp.aclose()
            get_system_logger().info({"event": "api_stopped", "message": "State portal API stopped"})

    app = FastAPI(
        title="State Services Portal API",
        description="Identity assurance API for the state services portal",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.state.config = config
    app.state.idp = idp
    app.state.vendor = vendor
    app.state.session_manager = session_manager
    app.state.token_validator = token_validator

    if config.api.cors_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=config.api.cors_origins,
            allow_credentials="*" not in config.api.cors_origins,
            allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
            allow_headers=["Content-Type", "Authorization", "X-Session-Id"],
            max_age=3600,  # Cache preflight for 1 hour
        )

    # Register exception handlers for structured error responses
    app.add_exception_handler(APIError, api_error_handler)
    app.add_exception_handler(PortalError, portal_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)

    # Mount API routes
    app.include_router(health.router, prefix="/health", tags=["health"])
    app.include_router(session.router, prefix="/api/session", tags=["session"])
    app.include_router(access.router, prefix="/api/access", tags=["access"])
    app.include_router(verification.router, prefix="/api", tags=["verification"])
    app.include_router(mfa.router, prefix="/api/mfa", tags=["mfa"])
    app.include_router(factors.router, prefix="/api", tags=["factors"])
    app.include_router(dependents.router, prefix="/api/dependents", tags=["dependents"])

    return app
