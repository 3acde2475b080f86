"""Shared fixtures: configuration, claims and a routed httpx.MockTransport.

The identity provider and vendor adapters accept an injected
httpx.AsyncClient, so tests drive them through MockTransport instead of
patching httpx.
"""

from __future__ import annotations

import json
from typing import Any, Callable

import httpx
import pytest

from state_portal.config import IdentityProviderConfig, VendorConfig
from state_portal.idp.client import IdentityProviderClient
from state_portal.session.claims import ClaimsSnapshot
from state_portal.session.store import SessionStateStore
from state_portal.vendor.client import VerificationVendorClient

IDP_BASE = "https://idp.example.com"
VENDOR_BASE = "https://vendor.example.com"

Handler = Callable[[httpx.Request], httpx.Response]


class RoutedTransport:
    """Fake upstream keyed on (method, path).

    Each route holds a queue of responses; the last one repeats once the
    queue is drained. Every request is recorded in `calls`.
    """

    def __init__(self) -> None:
        self.routes: dict[tuple[str, str], list[httpx.Response | Handler]] = {}
        self.calls: list[httpx.Request] = []

    def add(self, method: str, path: str, *responses: httpx.Response | Handler) -> "RoutedTransport":
        self.routes.setdefault((method.upper(), path), []).extend(responses)
        return self

    def json(self, method: str, path: str, body: Any, status: int = 200) -> "RoutedTransport":
        return self.add(method, path, httpx.Response(status, json=body))

    def calls_to(self, method: str, path: str) -> list[httpx.Request]:
        return [c for c in self.calls if c.method == method.upper() and c.url.path == path]

    def body_of(self, request: httpx.Request) -> Any:
        return json.loads(request.content) if request.content else None

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(request)
        queue = self.routes.get((request.method, request.url.path))
        if not queue:
            return httpx.Response(404, json={"errorCode": "E0000007", "errorSummary": "Not found"})
        entry = queue.pop(0) if len(queue) > 1 else queue[0]
        return entry(request) if callable(entry) else entry


@pytest.fixture
def transport() -> RoutedTransport:
    return RoutedTransport()


@pytest.fixture
def idp_config() -> IdentityProviderConfig:
    return IdentityProviderConfig(
        issuer=f"{IDP_BASE}/oauth2/default",
        client_id="portal-spa",
        api_token="ssws-test-token",
    )


@pytest.fixture
def vendor_config() -> VendorConfig:
    return VendorConfig(base_url=VENDOR_BASE, api_key="vendor-key", sdk_key="sdk-public-key")


@pytest.fixture
def idp(idp_config: IdentityProviderConfig, transport: RoutedTransport) -> IdentityProviderClient:
    client = httpx.AsyncClient(transport=httpx.MockTransport(transport))
    return IdentityProviderClient(idp_config, http_client=client)


@pytest.fixture
def vendor(vendor_config: VendorConfig, transport: RoutedTransport) -> VerificationVendorClient:
    client = httpx.AsyncClient(transport=httpx.MockTransport(transport))
    return VerificationVendorClient(vendor_config, http_client=client)


@pytest.fixture
def claims() -> ClaimsSnapshot:
    """A signed-in, not yet verified principal."""
    return ClaimsSnapshot(
        sub="00u-parent",
        email="pat@example.com",
        name="Pat Doe",
        given_name="Pat",
        family_name="Doe",
    )


@pytest.fixture
def verified_claims(claims: ClaimsSnapshot) -> ClaimsSnapshot:
    return ClaimsSnapshot(
        sub=claims.sub,
        email=claims.email,
        name=claims.name,
        given_name=claims.given_name,
        family_name=claims.family_name,
        identity_verified=True,
    )


class FakeClock:
    """Epoch-millisecond clock advanced by hand."""

    def __init__(self, start_ms: int = 1_700_000_000_000) -> None:
        self.now = start_ms

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(claims: ClaimsSnapshot, clock: FakeClock) -> SessionStateStore:
    return SessionStateStore(claims, clock=clock)


def factor_json(
    factor_id: str,
    factor_type: str = "token:software:totp",
    status: str = "ACTIVE",
    provider: str = "OKTA",
    **profile: Any,
) -> dict[str, Any]:
    return {
        "id": factor_id,
        "factorType": factor_type,
        "provider": provider,
        "status": status,
        "profile": profile,
    }


def user_json(user_id: str, **profile: Any) -> dict[str, Any]:
    return {"id": user_id, "status": "ACTIVE", "profile": profile}
