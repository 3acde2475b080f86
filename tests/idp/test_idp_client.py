"""Unit tests for the identity provider management API adapter.

Requests go through httpx.MockTransport; assertions cover both the parsed
results and the requests the adapter sent.
"""

from __future__ import annotations

import httpx
import pytest

from state_portal.config import IdentityProviderConfig
from state_portal.exceptions import (
    EnrollmentFailedError,
    NotConfiguredError,
    NotFoundError,
    UpstreamError,
    ValidationError,
)
from state_portal.idp.client import IdentityProviderClient
from state_portal.idp.models import Challenge, ChallengeResult, WebAuthnAssertion
from tests.conftest import IDP_BASE, RoutedTransport, factor_json, user_json

USERS = "/api/v1/users"


class TestConfiguration:
    @pytest.mark.asyncio
    async def test_missing_token_raises_before_request(self, transport: RoutedTransport) -> None:
        config = IdentityProviderConfig(issuer=f"{IDP_BASE}/oauth2/default")
        client = IdentityProviderClient(config, http_client=httpx.AsyncClient(transport=httpx.MockTransport(transport)))

        with pytest.raises(NotConfiguredError):
            await client.get_user("00u1")
        assert transport.calls == []

    @pytest.mark.asyncio
    async def test_sends_service_credential(self, idp, transport: RoutedTransport) -> None:
        transport.json("GET", f"{USERS}/00u1", user_json("00u1"))

        await idp.get_user("00u1")

        request = transport.calls[0]
        assert request.headers["Authorization"] == "SSWS ssws-test-token"
        assert str(request.url).startswith(IDP_BASE)


class TestUsers:
    @pytest.mark.asyncio
    async def test_get_user_parses_profile(self, idp, transport: RoutedTransport) -> None:
        transport.json(
            "GET",
            f"{USERS}/00u1",
            user_json("00u1", firstName="Ada", lastName="Lee", identityVerified=True, dependents=["00u2"]),
        )

        principal = await idp.get_user("00u1")

        assert principal.profile.display_name == "Ada Lee"
        assert principal.profile.identity_verified is True
        assert principal.profile.dependents == ["00u2"]

    @pytest.mark.asyncio
    async def test_get_user_404_is_not_found(self, idp, transport: RoutedTransport) -> None:
        with pytest.raises(NotFoundError):
            await idp.get_user("missing")

    @pytest.mark.asyncio
    async def test_update_profile_sends_partial(self, idp, transport: RoutedTransport) -> None:
        transport.json("POST", f"{USERS}/00u1", user_json("00u1", identityVerified=True))

        await idp.update_profile("00u1", {"identityVerified": True})

        assert transport.body_of(transport.calls[0]) == {"profile": {"identityVerified": True}}

    @pytest.mark.asyncio
    async def test_update_profile_error_carries_payload(self, idp, transport: RoutedTransport) -> None:
        transport.json(
            "POST",
            f"{USERS}/00u1",
            {"errorSummary": "Invalid", "errorCauses": [{"errorSummary": "dependents: bad"}]},
            status=400,
        )

        with pytest.raises(UpstreamError) as exc_info:
            await idp.update_profile("00u1", {"dependents": ["x"]})

        assert exc_info.value.status_code == 400
        assert exc_info.value.causes == ["dependents: bad"]

    @pytest.mark.asyncio
    async def test_find_by_email_filters_exactly(self, idp, transport: RoutedTransport) -> None:
        transport.json("GET", USERS, [user_json("00u2", email="kid@example.com")])

        principal = await idp.find_by_email("kid@example.com")

        assert principal is not None and principal.id == "00u2"
        assert transport.calls[0].url.params["filter"] == 'profile.email eq "kid@example.com"'

    @pytest.mark.asyncio
    async def test_find_by_email_absent(self, idp, transport: RoutedTransport) -> None:
        transport.json("GET", USERS, [])
        assert await idp.find_by_email("nobody@example.com") is None

    @pytest.mark.asyncio
    async def test_find_by_parent_id_searches(self, idp, transport: RoutedTransport) -> None:
        transport.json("GET", USERS, [user_json("00u2", parentId="00u1"), user_json("00u3", parentId="00u1")])

        children = await idp.find_by_parent_id("00u1")

        assert [c.id for c in children] == ["00u2", "00u3"]
        assert transport.calls[0].url.params["search"] == 'profile.parentId eq "00u1"'

    @pytest.mark.asyncio
    async def test_create_user_activates_with_temporary_password(self, idp, transport: RoutedTransport) -> None:
        transport.json("POST", USERS, user_json("00u9", email="kid@example.com"))

        principal = await idp.create_user({"email": "kid@example.com"}, "Temp123!")

        request = transport.calls[0]
        assert principal.id == "00u9"
        assert request.url.params["activate"] == "true"
        assert transport.body_of(request)["credentials"] == {"password": {"value": "Temp123!"}}

    @pytest.mark.asyncio
    async def test_transport_error_is_upstream_error(self, idp, transport: RoutedTransport) -> None:
        def boom(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        transport.add("GET", f"{USERS}/00u1", boom)

        with pytest.raises(UpstreamError, match="unreachable"):
            await idp.get_user("00u1")


class TestFactorsAndChallenges:
    @pytest.mark.asyncio
    async def test_list_factors_returns_all_statuses(self, idp, transport: RoutedTransport) -> None:
        transport.json(
            "GET",
            f"{USERS}/00u1/factors",
            [factor_json("f1"), factor_json("f2", status="PENDING_ACTIVATION")],
        )

        factors = await idp.list_factors("00u1")

        assert [f.is_active for f in factors] == [True, False]

    @pytest.mark.asyncio
    async def test_issue_push_challenge_returns_poll_link(self, idp, transport: RoutedTransport) -> None:
        poll = f"{IDP_BASE}/api/v1/users/00u1/factors/push1/transactions/t1"
        transport.json(
            "POST",
            f"{USERS}/00u1/factors/push1/verify",
            {"factorResult": "WAITING", "_links": {"poll": {"href": poll}}},
        )

        challenge = await idp.issue_challenge("00u1", "push1")

        assert challenge.result is ChallengeResult.WAITING
        assert challenge.poll_url == poll
        assert transport.body_of(transport.calls[0]) == {}

    @pytest.mark.asyncio
    async def test_issue_otp_challenge_defaults_to_challenge(self, idp, transport: RoutedTransport) -> None:
        transport.json("POST", f"{USERS}/00u1/factors/sms1/verify", {})

        challenge = await idp.issue_challenge("00u1", "sms1")

        assert challenge.result is ChallengeResult.CHALLENGE
        assert challenge.poll_url is None

    @pytest.mark.asyncio
    async def test_issue_webauthn_challenge_attaches_credential(self, idp, transport: RoutedTransport) -> None:
        transport.json(
            "POST",
            f"{USERS}/00u1/factors/wa1/verify",
            {"factorResult": "CHALLENGE", "_embedded": {"challenge": {"challenge": "c2lnbi1tZQ"}}},
        )
        transport.json(
            "GET",
            f"{USERS}/00u1/factors/wa1",
            factor_json("wa1", factor_type="webauthn", provider="FIDO", credentialId="cred-1"),
        )

        challenge = await idp.issue_challenge("00u1", "wa1")

        assert challenge.challenge == "c2lnbi1tZQ"
        assert challenge.credential_id == "cred-1"
        assert challenge.rp_id == "idp.example.com"

    @pytest.mark.asyncio
    async def test_poll_follows_link_and_keeps_issue_time(self, idp, transport: RoutedTransport) -> None:
        poll_path = "/api/v1/users/00u1/factors/push1/transactions/t1"
        transport.json("GET", poll_path, {"factorResult": "SUCCESS"})
        pending = Challenge(
            factor_id="push1",
            user_id="00u1",
            result=ChallengeResult.WAITING,
            poll_url=f"{IDP_BASE}{poll_path}",
        )

        polled = await idp.poll_challenge(pending)

        assert polled.succeeded
        assert polled.issued_at == pending.issued_at
        assert polled.poll_url == pending.poll_url

    @pytest.mark.asyncio
    async def test_poll_without_link_reissues(self, idp, transport: RoutedTransport) -> None:
        transport.json("POST", f"{USERS}/00u1/factors/push1/verify", {"factorResult": "REJECTED"})
        pending = Challenge(factor_id="push1", user_id="00u1", result=ChallengeResult.WAITING)

        polled = await idp.poll_challenge(pending)

        assert polled.result is ChallengeResult.REJECTED
        assert polled.issued_at == pending.issued_at

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "poll_url",
        [
            "https://attacker.example/steal",
            f"{IDP_BASE}.attacker.example/api/v1/users/00u1/factors/push1/transactions/t1",
            f"{IDP_BASE}/api/v1/users/00u-other/factors/push1/transactions/t1",
            f"{IDP_BASE}/api/v1/users/00u1/factors/push2/transactions/t1",
        ],
    )
    async def test_foreign_poll_link_refused_without_request(
        self, idp, transport: RoutedTransport, poll_url: str
    ) -> None:
        pending = Challenge(factor_id="push1", user_id="00u1", result=ChallengeResult.WAITING, poll_url=poll_url)

        with pytest.raises(ValidationError):
            await idp.poll_challenge(pending)

        assert transport.calls == []

    @pytest.mark.asyncio
    async def test_gateway_page_on_poll_is_upstream_error(self, idp, transport: RoutedTransport) -> None:
        poll_path = "/api/v1/users/00u1/factors/push1/transactions/t1"
        transport.add("GET", poll_path, httpx.Response(200, text="<html>gateway</html>"))
        pending = Challenge(
            factor_id="push1", user_id="00u1", result=ChallengeResult.WAITING, poll_url=f"{IDP_BASE}{poll_path}"
        )

        with pytest.raises(UpstreamError, match="unreadable"):
            await idp.poll_challenge(pending)


class TestVerifyChallenge:
    @pytest.mark.asyncio
    async def test_correct_code_succeeds(self, idp, transport: RoutedTransport) -> None:
        transport.json("POST", f"{USERS}/00u1/factors/f1/verify", {"factorResult": "SUCCESS"})

        challenge = await idp.verify_challenge("00u1", "f1", "123456")

        assert challenge.succeeded
        assert transport.body_of(transport.calls[0]) == {"passCode": "123456"}

    @pytest.mark.asyncio
    async def test_wrong_code_is_returned_not_raised(self, idp, transport: RoutedTransport) -> None:
        transport.json(
            "POST",
            f"{USERS}/00u1/factors/f1/verify",
            {"errorCode": "E0000068", "errorSummary": "Invalid Passcode/Answer"},
            status=403,
        )

        challenge = await idp.verify_challenge("00u1", "f1", "000000")

        assert challenge.result is ChallengeResult.FAILED

    @pytest.mark.asyncio
    async def test_unauthorized_raises(self, idp, transport: RoutedTransport) -> None:
        transport.json("POST", f"{USERS}/00u1/factors/f1/verify", {"errorCode": "E0000011"}, status=401)

        with pytest.raises(UpstreamError) as exc_info:
            await idp.verify_challenge("00u1", "f1", "123456")
        assert exc_info.value.status_code == 401

    @pytest.mark.asyncio
    async def test_server_error_raises(self, idp, transport: RoutedTransport) -> None:
        transport.add("POST", f"{USERS}/00u1/factors/f1/verify", httpx.Response(500, text="oops"))

        with pytest.raises(UpstreamError) as exc_info:
            await idp.verify_challenge("00u1", "f1", "123456")
        assert exc_info.value.payload == "oops"

    @pytest.mark.asyncio
    async def test_webauthn_assertion_wire_format(self, idp, transport: RoutedTransport) -> None:
        transport.json("POST", f"{USERS}/00u1/factors/wa1/verify", {"factorResult": "SUCCESS"})
        assertion = WebAuthnAssertion(client_data="cd", authenticator_data="ad", signature_data="sig")

        await idp.verify_challenge("00u1", "wa1", assertion)

        assert transport.body_of(transport.calls[0]) == {
            "clientData": "cd",
            "authenticatorData": "ad",
            "signatureData": "sig",
        }


class TestWebAuthnEnrollment:
    @pytest.mark.asyncio
    async def test_begin_returns_activation_unmodified(self, idp, transport: RoutedTransport) -> None:
        activation = {"challenge": "abc", "rp": {"name": "Portal"}, "user": {"id": "dXNlcg"}}
        transport.json(
            "POST",
            f"{USERS}/00u1/factors",
            {"id": "wa1", "status": "PENDING_ACTIVATION", "_embedded": {"activation": activation}},
        )

        result = await idp.begin_webauthn_enrollment("00u1")

        assert result.factor_id == "wa1"
        assert result.activation == activation
        assert transport.body_of(transport.calls[0]) == {"factorType": "webauthn", "provider": "FIDO"}

    @pytest.mark.asyncio
    async def test_begin_without_activation_raises(self, idp, transport: RoutedTransport) -> None:
        transport.json("POST", f"{USERS}/00u1/factors", {"id": "wa1"})
        with pytest.raises(UpstreamError):
            await idp.begin_webauthn_enrollment("00u1")

    @pytest.mark.asyncio
    async def test_activate(self, idp, transport: RoutedTransport) -> None:
        transport.json(
            "POST",
            f"{USERS}/00u1/factors/wa1/lifecycle/activate",
            factor_json("wa1", factor_type="webauthn", provider="FIDO"),
        )

        factor = await idp.complete_webauthn_enrollment("00u1", "wa1", "att", "cd")

        assert factor.is_active and factor.is_webauthn
        assert transport.body_of(transport.calls[0]) == {"attestation": "att", "clientData": "cd"}

    @pytest.mark.asyncio
    async def test_activate_rejected(self, idp, transport: RoutedTransport) -> None:
        transport.json(
            "POST",
            f"{USERS}/00u1/factors/wa1/lifecycle/activate",
            {"errorCode": "E0000001", "errorSummary": "Attestation invalid"},
            status=400,
        )

        with pytest.raises(EnrollmentFailedError, match="Attestation invalid") as exc_info:
            await idp.complete_webauthn_enrollment("00u1", "wa1", "att", "cd")
        assert exc_info.value.reason == "E0000001"
