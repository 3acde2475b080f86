"""Identity provider management API adapter.

Wraps the provider's user, factor and challenge endpoints used by the
portal's workflows. Authenticates with the `SSWS <token>` service credential
against the base authority derived from the issuer URL.

Error contract:
- NotConfiguredError before any request when the credential or issuer is missing
- NotFoundError on 404 lookups
- UpstreamError on other non-2xx or transport failures, carrying the payload,
  and on 2xx bodies that are not JSON
- ValidationError for absolute URLs outside the provider base URL; the
  service credential is only ever sent to the provider
- Business rejections of a challenge (wrong code, denied push) are returned as
  a Challenge with a non-SUCCESS result, never raised
"""

from __future__ import annotations

__all__ = [
    "IdentityProviderClient",
]

from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Mapping

import httpx

from state_portal.config import IdentityProviderConfig
from state_portal.constants import DEFAULT_HTTP_TIMEOUT_SECONDS
from state_portal.exceptions import (
    EnrollmentFailedError,
    NotConfiguredError,
    NotFoundError,
    UpstreamError,
    ValidationError,
)
from state_portal.idp.models import (
    Challenge,
    ChallengeResult,
    Factor,
    FactorType,
    Principal,
    WebAuthnActivation,
    WebAuthnAssertion,
)
from state_portal.telemetry.system_logger import get_system_logger

# Provider error code for an incorrect passcode
INVALID_PASSCODE_ERROR_CODE = "E0000068"


class IdentityProviderClient:
    """Async client for the identity provider management API.

    Usage:
        async with IdentityProviderClient(config.identity_provider) as idp:
            principal = await idp.get_user(user_id)
            factors = await idp.list_factors(user_id)

    A shared httpx.AsyncClient may be injected (tests pass one built on
    httpx.MockTransport). Without one, each call opens a short-lived client.
    """

    def __init__(
        self,
        config: IdentityProviderConfig,
        *,
        timeout: float = DEFAULT_HTTP_TIMEOUT_SECONDS,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._config = config
        self._timeout = timeout
        self._http_client = http_client
        self._logger = get_system_logger()

    @property
    def domain(self) -> str | None:
        return self._config.domain

    async def aclose(self) -> None:
        if self._http_client is not None:
            await self._http_client.aclose()

    async def __aenter__(self) -> "IdentityProviderClient":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    # =========================================================================
    # Users
    # =========================================================================

    async def get_user(self, user_id: str, *, timeout: float | None = None) -> Principal:
        """Fetch one principal.

        Raises:
            NotFoundError: If no such user exists.
            UpstreamError: On other non-2xx responses.
        """
        response = await self._request("GET", f"/api/v1/users/{user_id}", timeout=timeout)
        if response.status_code == 404:
            raise NotFoundError(f"User {user_id} not found")
        self._raise_for_status(response, "Failed to get user")
        return Principal.model_validate(self._decode(response, dict))

    async def update_profile(
        self,
        user_id: str,
        partial: Mapping[str, Any],
        *,
        timeout: float | None = None,
    ) -> Principal:
        """Merge `partial` into the principal's profile (partial update).

        Raises:
            UpstreamError: On non-2xx, with the provider payload attached.
        """
        response = await self._request(
            "POST",
            f"/api/v1/users/{user_id}",
            json={"profile": dict(partial)},
            timeout=timeout,
        )
        if response.status_code == 404:
            raise NotFoundError(f"User {user_id} not found")
        self._raise_for_status(response, "Failed to update user profile")
        return Principal.model_validate(self._decode(response, dict))

    async def find_by_email(self, email: str, *, timeout: float | None = None) -> Principal | None:
        """Exact-match lookup on profile.email. Returns None when absent."""
        response = await self._request(
            "GET",
            "/api/v1/users",
            params={"filter": f'profile.email eq "{email}"'},
            timeout=timeout,
        )
        self._raise_for_status(response, "Failed to search users")
        users = self._decode(response, list)
        if not users:
            return None
        return Principal.model_validate(users[0])

    async def find_by_parent_id(
        self,
        parent_id: str,
        *,
        timeout: float | None = None,
    ) -> list[Principal]:
        """All principals whose profile.parentId equals `parent_id`."""
        response = await self._request(
            "GET",
            "/api/v1/users",
            params={"search": f'profile.parentId eq "{parent_id}"'},
            timeout=timeout,
        )
        self._raise_for_status(response, "Failed to search dependents")
        return [Principal.model_validate(user) for user in self._decode(response, list)]

    async def create_user(
        self,
        profile: Mapping[str, Any],
        temp_credential: str,
        *,
        activate: bool = True,
        timeout: float | None = None,
    ) -> Principal:
        """Create a principal with a temporary password.

        Raises:
            UpstreamError: On non-2xx; `causes` lists the provider's errorCauses.
        """
        response = await self._request(
            "POST",
            "/api/v1/users",
            params={"activate": "true" if activate else "false"},
            json={
                "profile": dict(profile),
                "credentials": {"password": {"value": temp_credential}},
            },
            timeout=timeout,
        )
        self._raise_for_status(response, "Failed to create account")
        return Principal.model_validate(self._decode(response, dict))

    # =========================================================================
    # Factors
    # =========================================================================

    async def list_factors(self, user_id: str, *, timeout: float | None = None) -> list[Factor]:
        """All enrolled factors, unfiltered. Callers filter on ACTIVE."""
        response = await self._request("GET", f"/api/v1/users/{user_id}/factors", timeout=timeout)
        self._raise_for_status(response, "Failed to get MFA factors")
        return [Factor.model_validate(factor) for factor in self._decode(response, list)]

    async def get_factor(
        self,
        user_id: str,
        factor_id: str,
        *,
        timeout: float | None = None,
    ) -> Factor:
        response = await self._request(
            "GET", f"/api/v1/users/{user_id}/factors/{factor_id}", timeout=timeout
        )
        if response.status_code == 404:
            raise NotFoundError(f"Factor {factor_id} not found")
        self._raise_for_status(response, "Failed to get factor details")
        return Factor.model_validate(self._decode(response, dict))

    # =========================================================================
    # Challenges
    # =========================================================================

    async def issue_challenge(
        self,
        user_id: str,
        factor_id: str,
        *,
        timeout: float | None = None,
    ) -> Challenge:
        """Issue (or re-issue) a challenge for a factor.

        Push factors are re-triggered and report their current status; OTP
        factors send a fresh code; WebAuthn factors return challenge data plus
        the credential to allow.
        """
        response = await self._request(
            "POST",
            f"/api/v1/users/{user_id}/factors/{factor_id}/verify",
            json={},
            timeout=timeout,
        )
        self._raise_for_status(response, "Failed to send MFA challenge")
        data = self._decode(response, dict)
        challenge = self._parse_challenge(user_id, factor_id, data, default=ChallengeResult.CHALLENGE)
        embedded = (data.get("_embedded") or {}).get("challenge")
        if embedded:
            # WebAuthn: attach the credential to allow from the factor profile
            factor = await self.get_factor(user_id, factor_id, timeout=timeout)
            challenge = challenge.model_copy(
                update={
                    "challenge": embedded.get("challenge"),
                    "credential_id": factor.credential_id,
                    "rp_id": self.domain,
                }
            )
        self._logger.debug(
            {
                "event": "challenge_issued",
                "message": f"Challenge issued for factor {factor_id}",
                "factor_result": challenge.result.value,
            }
        )
        return challenge

    async def poll_challenge(self, challenge: Challenge, *, timeout: float | None = None) -> Challenge:
        """Fetch the latest status of a push challenge.

        Follows the poll link when the provider returned one, otherwise
        re-issues the challenge.

        Raises:
            ValidationError: If the poll link does not point at this user's
                factor on the provider.
        """
        if challenge.poll_url is None:
            if challenge.user_id is None:
                raise UpstreamError("Challenge has neither a poll link nor a user id")
            refreshed = await self.issue_challenge(challenge.user_id, challenge.factor_id, timeout=timeout)
            return refreshed.model_copy(update={"issued_at": challenge.issued_at})

        self._check_poll_link(challenge)
        response = await self._request("GET", challenge.poll_url, timeout=timeout)
        self._raise_for_status(response, "Failed to poll push challenge")
        polled = self._parse_challenge(
            challenge.user_id, challenge.factor_id, self._decode(response, dict), default=ChallengeResult.WAITING
        )
        return polled.model_copy(
            update={
                "issued_at": challenge.issued_at,
                "poll_url": polled.poll_url or challenge.poll_url,
            }
        )

    async def verify_challenge(
        self,
        user_id: str,
        factor_id: str,
        proof: str | WebAuthnAssertion,
        *,
        timeout: float | None = None,
    ) -> Challenge:
        """Submit a one-time code or a WebAuthn assertion.

        Returns:
            Challenge whose result is SUCCESS, or the rejection result
            (FAILED for an incorrect code).

        Raises:
            UpstreamError: On transport failures, auth failures or 5xx.
        """
        body = proof.to_wire() if isinstance(proof, WebAuthnAssertion) else {"passCode": proof}
        response = await self._request(
            "POST",
            f"/api/v1/users/{user_id}/factors/{factor_id}/verify",
            json=body,
            timeout=timeout,
        )
        data = _safe_json(response)

        if response.is_success:
            return self._parse_challenge(user_id, factor_id, data, default=ChallengeResult.FAILED)

        if 400 <= response.status_code < 500 and response.status_code != 401 and isinstance(data, dict):
            if data.get("factorResult") or data.get("errorCode") == INVALID_PASSCODE_ERROR_CODE:
                self._logger.info(
                    {
                        "event": "challenge_rejected",
                        "message": f"Verification rejected for factor {factor_id}",
                        "error_code": data.get("errorCode"),
                    }
                )
                return self._parse_challenge(user_id, factor_id, data, default=ChallengeResult.FAILED)

        raise self._upstream_error(response, "MFA verification failed")

    # =========================================================================
    # WebAuthn enrollment
    # =========================================================================

    async def begin_webauthn_enrollment(
        self,
        user_id: str,
        *,
        timeout: float | None = None,
    ) -> WebAuthnActivation:
        """Start enrolling a WebAuthn factor.

        Returns:
            The pending factor id and the provider's activation options, unmodified.
        """
        response = await self._request(
            "POST",
            f"/api/v1/users/{user_id}/factors",
            json={"factorType": FactorType.WEBAUTHN.value, "provider": "FIDO"},
            timeout=timeout,
        )
        self._raise_for_status(response, "Failed to start WebAuthn enrollment")
        data = self._decode(response, dict)
        activation = (data.get("_embedded") or {}).get("activation")
        if not activation:
            raise UpstreamError("Provider did not return WebAuthn activation options", payload=data)
        return WebAuthnActivation(factor_id=data["id"], activation=activation)

    async def complete_webauthn_enrollment(
        self,
        user_id: str,
        factor_id: str,
        attestation: str,
        client_data: str,
        *,
        timeout: float | None = None,
    ) -> Factor:
        """Activate a pending WebAuthn factor with the authenticator's attestation.

        Raises:
            EnrollmentFailedError: If the provider rejects the attestation.
            UpstreamError: On auth failures or 5xx.
        """
        response = await self._request(
            "POST",
            f"/api/v1/users/{user_id}/factors/{factor_id}/lifecycle/activate",
            json={"attestation": attestation, "clientData": client_data},
            timeout=timeout,
        )
        if 400 <= response.status_code < 500 and response.status_code != 401:
            data = _safe_json(response)
            summary = data.get("errorSummary") if isinstance(data, dict) else None
            reason = data.get("errorCode") if isinstance(data, dict) else None
            raise EnrollmentFailedError(summary or "Failed to activate WebAuthn factor", reason=reason)
        self._raise_for_status(response, "Failed to activate WebAuthn factor")
        return Factor.model_validate(self._decode(response, dict))

    # =========================================================================
    # Internals
    # =========================================================================

    def _require_configured(self) -> tuple[str, str]:
        base_url = self._config.base_url
        token = self._config.api_token
        if not base_url or not token:
            raise NotConfiguredError("Identity provider not configured")
        return base_url, token

    def _check_poll_link(self, challenge: Challenge) -> None:
        base_url, _ = self._require_configured()
        if challenge.user_id is None:
            raise ValidationError("Poll link requires the challenged user", fields=["user_id"])
        prefix = f"{base_url}/api/v1/users/{challenge.user_id}/factors/{challenge.factor_id}/"
        if not (challenge.poll_url or "").startswith(prefix):
            raise ValidationError("Poll link does not belong to this factor", fields=["poll_url"])

    @asynccontextmanager
    async def _client(self) -> AsyncIterator[httpx.AsyncClient]:
        if self._http_client is not None:
            yield self._http_client
            return
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            yield client

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: Any = None,
        params: Mapping[str, str] | None = None,
        timeout: float | None = None,
    ) -> httpx.Response:
        base_url, token = self._require_configured()
        if path.startswith(("http://", "https://")):
            if not path.startswith(f"{base_url}/"):
                raise ValidationError("Refusing to call a URL outside the identity provider", fields=["url"])
            url = path
        else:
            url = f"{base_url}{path}"
        headers = {"Authorization": f"SSWS {token}", "Accept": "application/json"}
        try:
            async with self._client() as client:
                return await client.request(
                    method,
                    url,
                    json=json,
                    params=params,
                    headers=headers,
                    timeout=timeout if timeout is not None else self._timeout,
                )
        except httpx.TimeoutException as e:
            raise UpstreamError(f"Identity provider request timed out: {method} {path}") from e
        except httpx.HTTPError as e:
            raise UpstreamError(f"Identity provider unreachable: {e}") from e

    def _decode(self, response: httpx.Response, expected: type = object) -> Any:
        """JSON body of a successful response.

        Raises:
            UpstreamError: If the body is not JSON of the expected shape (e.g. a
                gateway HTML page).
        """
        try:
            data = response.json()
        except ValueError:
            data = None
        if not isinstance(data, expected) or data is None:
            raise self._upstream_error(response, "Identity provider returned an unreadable response")
        return data

    def _raise_for_status(self, response: httpx.Response, message: str) -> None:
        if not response.is_success:
            raise self._upstream_error(response, message)

    def _upstream_error(self, response: httpx.Response, message: str) -> UpstreamError:
        payload = _safe_json(response)
        self._logger.warning(
            {
                "event": "idp_request_failed",
                "message": f"{message}: HTTP {response.status_code}",
                "status_code": response.status_code,
                "payload": payload,
            }
        )
        return UpstreamError(message, status_code=response.status_code, payload=payload)

    @staticmethod
    def _parse_challenge(
        user_id: str | None,
        factor_id: str,
        data: Any,
        *,
        default: ChallengeResult,
    ) -> Challenge:
        if not isinstance(data, dict):
            data = {}
        raw = data.get("factorResult")
        try:
            result = ChallengeResult(raw) if raw else default
        except ValueError:
            result = ChallengeResult.FAILED
        poll = ((data.get("_links") or {}).get("poll") or {}).get("href")
        return Challenge(factor_id=factor_id, user_id=user_id, result=result, poll_url=poll)


def _safe_json(response: httpx.Response) -> Any:
    """Parsed JSON body, or the raw text when the body is not JSON."""
    try:
        return response.json()
    except ValueError:
        return response.text
