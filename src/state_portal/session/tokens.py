"""ID token validation with JWKS caching.

Validates OIDC ID tokens issued to the portal's SPA client using the
provider's JWKS and turns them into ClaimsSnapshot objects. The JWKS
location follows the issuer's discovery convention (`<issuer>/v1/keys`
for authorization-server issuers).
"""

from __future__ import annotations

__all__ = [
    "IdTokenValidator",
]

import time
from dataclasses import dataclass
from typing import Any

import jwt
from jwt import PyJWKClient, PyJWKClientError

from state_portal.config import IdentityProviderConfig
from state_portal.constants import JWKS_CACHE_TTL_SECONDS
from state_portal.exceptions import NotConfiguredError, UpstreamError, ValidationError
from state_portal.session.claims import ClaimsSnapshot

# Fail fast if the identity provider is unreachable
JWKS_FETCH_TIMEOUT_SECONDS = 5


@dataclass
class _CachedJWKS:
    """Cached JWKS client with expiration tracking."""

    client: PyJWKClient
    fetched_at: float
    ttl: float = JWKS_CACHE_TTL_SECONDS

    @property
    def is_expired(self) -> bool:
        return time.monotonic() - self.fetched_at > self.ttl


class IdTokenValidator:
    """Validates ID tokens and extracts a claims snapshot.

    Usage:
        validator = IdTokenValidator(config.identity_provider)
        claims = validator.validate(id_token)
    """

    def __init__(self, config: IdentityProviderConfig, jwks_uri: str | None = None) -> None:
        """Initialize the validator.

        Args:
            config: Identity provider settings (issuer, client_id).
            jwks_uri: Override for the JWKS endpoint.

        Raises:
            NotConfiguredError: If issuer or client_id is missing.
        """
        if not config.issuer or not config.client_id:
            raise NotConfiguredError("Identity provider issuer and client_id must be configured")
        self._config = config
        self._jwks_cache: _CachedJWKS | None = None
        self._jwks_uri = jwks_uri or f"{config.issuer.rstrip('/')}/v1/keys"

    def _get_jwks_client(self) -> PyJWKClient:
        if self._jwks_cache is not None and not self._jwks_cache.is_expired:
            return self._jwks_cache.client

        try:
            client = PyJWKClient(
                self._jwks_uri,
                cache_keys=True,
                lifespan=JWKS_CACHE_TTL_SECONDS,
                timeout=JWKS_FETCH_TIMEOUT_SECONDS,
            )
            _ = client.get_jwk_set()
        except PyJWKClientError as e:
            raise UpstreamError(f"Cannot fetch signing keys from {self._jwks_uri}: {e}") from e

        self._jwks_cache = _CachedJWKS(client=client, fetched_at=time.monotonic())
        return client

    def decode(self, id_token: str, key: Any | None = None) -> dict[str, Any]:
        """Verify signature, issuer, audience and expiry; return raw claims.

        Args:
            id_token: Compact JWT.
            key: Verification key. Resolved from JWKS when omitted.

        Raises:
            ValidationError: If the token is malformed, expired or mis-addressed.
            UpstreamError: If the JWKS cannot be fetched.
        """
        if key is None:
            try:
                key = self._get_jwks_client().get_signing_key_from_jwt(id_token).key
            except PyJWKClientError as e:
                raise ValidationError(f"Failed to get signing key: {e}") from e

        try:
            claims: dict[str, Any] = jwt.decode(
                id_token,
                key,
                algorithms=["RS256", "ES256"],
                issuer=self._config.issuer,
                audience=self._config.client_id,
                options={"require": ["exp", "iat", "sub", "iss", "aud"]},
            )
        except jwt.ExpiredSignatureError as e:
            raise ValidationError("ID token has expired") from e
        except jwt.InvalidIssuerError as e:
            raise ValidationError(f"ID token issuer mismatch: expected {self._config.issuer}") from e
        except jwt.InvalidAudienceError as e:
            raise ValidationError(f"ID token audience mismatch: expected {self._config.client_id}") from e
        except jwt.PyJWTError as e:
            raise ValidationError(f"ID token validation error: {e}") from e
        return claims

    def validate(self, id_token: str, key: Any | None = None) -> ClaimsSnapshot:
        """Validate an ID token and return its claims snapshot."""
        return ClaimsSnapshot.from_token_claims(self.decode(id_token, key=key))

    def clear_cache(self) -> None:
        """Force a fresh JWKS fetch, e.g. after key rotation."""
        self._jwks_cache = None
