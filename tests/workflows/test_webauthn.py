"""Tests for WebAuthn factor enrollment."""

from __future__ import annotations

from typing import Any, Mapping

import httpx
import pytest

from state_portal.constants import (
    FLAG_MFA_ENROLLMENT_SKIPPED,
    FLAG_MFA_VERIFIED,
    FLAG_POST_ENROLLMENT_REDIRECT,
    WEBAUTHN_CEREMONY_TIMEOUT_MS,
)
from state_portal.exceptions import InvalidTransitionError
from state_portal.session.store import SessionStateStore
from state_portal.workflows.webauthn import (
    ALREADY_REGISTERED_MESSAGE,
    CANCELLED_MESSAGE,
    CeremonyError,
    CreatedCredential,
    EnrollmentState,
    WebAuthnEnrollment,
    build_creation_options,
    describe_ceremony_error,
)
from tests.conftest import RoutedTransport, factor_json

USER = "00u-parent"
FACTORS = f"/api/v1/users/{USER}/factors"
ACTIVATE = f"{FACTORS}/wa-pending/lifecycle/activate"

ACTIVATION = {
    "challenge": "Y2hhbGxlbmdl",
    "rp": {"name": "State Portal", "id": "idp.example.com"},
    "user": {"id": "dXNlcg", "name": "pat@example.com", "displayName": "Pat Doe"},
    "pubKeyCredParams": [{"type": "public-key", "alg": -7}],
    "authenticatorSelection": {"userVerification": "required"},
    "attestation": "direct",
    "excludeCredentials": [{"type": "public-key", "id": "b2xk"}],
}


class FakeCreator:
    """Stands in for the device credential ceremony."""

    def __init__(self, error: CeremonyError | None = None) -> None:
        self.error = error
        self.options: Mapping[str, Any] | None = None

    async def create(self, public_key: Mapping[str, Any]) -> CreatedCredential:
        self.options = public_key
        if self.error is not None:
            raise self.error
        return CreatedCredential(attestation="YXR0", client_data="Y2Q")


@pytest.fixture
def pending(transport: RoutedTransport) -> RoutedTransport:
    transport.json("POST", FACTORS, {"id": "wa-pending", "_embedded": {"activation": ACTIVATION}})
    return transport


class TestBuildCreationOptions:
    def test_passes_values_through(self) -> None:
        options = build_creation_options(ACTIVATION)

        assert options["challenge"] == "Y2hhbGxlbmdl"
        assert options["rp"] == {"name": "State Portal", "id": "idp.example.com"}
        assert options["user"]["displayName"] == "Pat Doe"
        assert options["excludeCredentials"] == [{"type": "public-key", "id": "b2xk"}]
        assert options["timeout"] == WEBAUTHN_CEREMONY_TIMEOUT_MS

    def test_missing_exclusions(self) -> None:
        assert build_creation_options({"challenge": "c"})["excludeCredentials"] == []


class TestDescribeCeremonyError:
    @pytest.mark.parametrize(
        ("error", "expected"),
        [
            (CeremonyError("NotAllowedError"), CANCELLED_MESSAGE),
            (CeremonyError("InvalidStateError"), ALREADY_REGISTERED_MESSAGE),
            (CeremonyError("UnknownError", "Authenticator exploded"), "Authenticator exploded"),
        ],
    )
    def test_messages(self, error: CeremonyError, expected: str) -> None:
        assert describe_ceremony_error(error) == expected


class TestEnroll:
    @pytest.mark.asyncio
    async def test_success_returns_pending_redirect(
        self, idp, store: SessionStateStore, pending: RoutedTransport
    ) -> None:
        pending.json("POST", ACTIVATE, factor_json("wa-pending", factor_type="webauthn"))
        store.set_flag(FLAG_POST_ENROLLMENT_REDIRECT, "/services")
        creator = FakeCreator()
        enrollment = WebAuthnEnrollment(idp, store, USER, creator)

        redirect = await enrollment.enroll()

        assert redirect == "/services"
        assert enrollment.state is EnrollmentState.ENROLLED
        assert enrollment.factor_id == "wa-pending"
        assert creator.options is not None and creator.options["challenge"] == "Y2hhbGxlbmdl"
        assert pending.body_of(pending.calls_to("POST", ACTIVATE)[0]) == {"attestation": "YXR0", "clientData": "Y2Q"}

    @pytest.mark.asyncio
    async def test_enrollment_is_not_step_up(self, idp, store: SessionStateStore, pending: RoutedTransport) -> None:
        pending.json("POST", ACTIVATE, factor_json("wa-pending", factor_type="webauthn"))

        redirect = await WebAuthnEnrollment(idp, store, USER, FakeCreator()).enroll()

        assert redirect == "/dashboard"
        assert store.get_flag(FLAG_MFA_VERIFIED) is None

    @pytest.mark.asyncio
    async def test_user_cancelled_ceremony(self, idp, store: SessionStateStore, pending: RoutedTransport) -> None:
        enrollment = WebAuthnEnrollment(idp, store, USER, FakeCreator(CeremonyError("NotAllowedError")))

        assert await enrollment.enroll() is None
        assert enrollment.state is EnrollmentState.ERROR
        assert enrollment.error == CANCELLED_MESSAGE
        assert pending.calls_to("POST", ACTIVATE) == []

    @pytest.mark.asyncio
    async def test_activation_rejected(self, idp, store: SessionStateStore, pending: RoutedTransport) -> None:
        pending.add(
            "POST",
            ACTIVATE,
            httpx.Response(400, json={"errorCode": "E0000001", "errorSummary": "Attestation invalid"}),
        )
        enrollment = WebAuthnEnrollment(idp, store, USER, FakeCreator())

        assert await enrollment.enroll() is None
        assert enrollment.error == "Attestation invalid"

    @pytest.mark.asyncio
    async def test_retry_after_error(self, idp, store: SessionStateStore, pending: RoutedTransport) -> None:
        pending.add(
            "POST",
            ACTIVATE,
            httpx.Response(400, json={"errorSummary": "Attestation invalid"}),
            httpx.Response(200, json=factor_json("wa-pending", factor_type="webauthn")),
        )
        enrollment = WebAuthnEnrollment(idp, store, USER, FakeCreator())

        await enrollment.enroll()
        redirect = await enrollment.enroll()

        assert redirect == "/dashboard"
        assert enrollment.state is EnrollmentState.ENROLLED

    @pytest.mark.asyncio
    async def test_enroll_twice_rejected(self, idp, store: SessionStateStore, pending: RoutedTransport) -> None:
        pending.json("POST", ACTIVATE, factor_json("wa-pending", factor_type="webauthn"))
        enrollment = WebAuthnEnrollment(idp, store, USER, FakeCreator())
        await enrollment.enroll()

        with pytest.raises(InvalidTransitionError):
            await enrollment.enroll()


class TestExistingAndSkip:
    @pytest.mark.asyncio
    async def test_active_factor_short_circuits(self, idp, store: SessionStateStore, transport) -> None:
        transport.json("GET", FACTORS, [factor_json("totp1")])
        store.set_flag(FLAG_POST_ENROLLMENT_REDIRECT, "/add-dependent")
        enrollment = WebAuthnEnrollment(idp, store, USER, FakeCreator())

        assert await enrollment.check_existing() == "/add-dependent"
        assert enrollment.state is EnrollmentState.ALREADY_ENROLLED

    @pytest.mark.asyncio
    async def test_only_pending_factors(self, idp, store: SessionStateStore, transport) -> None:
        transport.json("GET", FACTORS, [factor_json("wa1", factor_type="webauthn", status="PENDING_ACTIVATION")])
        enrollment = WebAuthnEnrollment(idp, store, USER, FakeCreator())

        assert await enrollment.check_existing() is None
        assert enrollment.state is EnrollmentState.IDLE

    @pytest.mark.asyncio
    async def test_lookup_failure_treated_as_not_enrolled(self, idp, store: SessionStateStore, transport) -> None:
        transport.add("GET", FACTORS, httpx.Response(500, json={"errorSummary": "Internal"}))
        enrollment = WebAuthnEnrollment(idp, store, USER, FakeCreator())

        assert await enrollment.check_existing() is None

    def test_skip_sets_flag(self, idp, store: SessionStateStore) -> None:
        enrollment = WebAuthnEnrollment(idp, store, USER, FakeCreator())

        assert enrollment.skip() == "/dashboard"
        assert store.get_flag(FLAG_MFA_ENROLLMENT_SKIPPED) is True
        assert enrollment.state is EnrollmentState.SKIPPED
