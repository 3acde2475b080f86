"""Fixtures for API route tests.

The app is built with injected adapters (backed by the shared
RoutedTransport) and a token validator double that maps opaque test
tokens to claims.
"""

from __future__ import annotations

from dataclasses import replace

import pytest
from fastapi.testclient import TestClient

from state_portal.api.server import create_api_app
from state_portal.config import IdentityProviderConfig, PortalConfig, VendorConfig
from state_portal.exceptions import ValidationError
from state_portal.session.claims import ClaimsSnapshot
from state_portal.session.manager import SessionManager

PARENT_TOKEN = "parent-token"
VERIFIED_TOKEN = "verified-token"
OTHER_TOKEN = "other-token"


class FakeTokenValidator:
    """Maps known test tokens to claims; anything else is rejected."""

    def __init__(self, tokens: dict[str, ClaimsSnapshot]) -> None:
        self.tokens = tokens

    def validate(self, id_token: str, key: object = None) -> ClaimsSnapshot:
        claims = self.tokens.get(id_token)
        if claims is None:
            raise ValidationError("ID token validation error: Signature verification failed")
        return claims


@pytest.fixture
def config(idp_config: IdentityProviderConfig, vendor_config: VendorConfig) -> PortalConfig:
    return PortalConfig(identity_provider=idp_config, vendor=vendor_config)


@pytest.fixture
def session_manager() -> SessionManager:
    return SessionManager()


@pytest.fixture
def token_validator(claims: ClaimsSnapshot, verified_claims: ClaimsSnapshot) -> FakeTokenValidator:
    other = replace(claims, sub="00u-other", email="sam@example.com")
    return FakeTokenValidator({PARENT_TOKEN: claims, VERIFIED_TOKEN: verified_claims, OTHER_TOKEN: other})


@pytest.fixture
def client(
    config: PortalConfig,
    idp,
    vendor,
    session_manager: SessionManager,
    token_validator: FakeTokenValidator,
) -> TestClient:
    app = create_api_app(
        config,
        idp=idp,
        vendor=vendor,
        session_manager=session_manager,
        token_validator=token_validator,  # type: ignore[arg-type]
    )
    return TestClient(app)


def open_session(client: TestClient, token: str = PARENT_TOKEN) -> dict[str, str]:
    """Create a session and return the header that names it."""
    response = client.post("/api/session", json={"id_token": token})
    assert response.status_code == 201
    return {"X-Session-Id": response.json()["session_id"]}
