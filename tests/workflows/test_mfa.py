"""Tests for the step-up MFA workflow.

TestTransition covers the pure state machine; the flow tests drive
MfaChallengeFlow against a fake identity provider.
"""

from __future__ import annotations

import asyncio
import json
from dataclasses import replace
from typing import Any, Callable

import httpx
import pytest

from state_portal.constants import FLAG_MFA_REDIRECT_TO, FLAG_MFA_TIMESTAMP
from state_portal.exceptions import InvalidTransitionError, ValidationError
from state_portal.idp.models import Challenge, ChallengeResult, Factor, WebAuthnAssertion
from state_portal.session.claims import ClaimsSnapshot
from state_portal.session.store import SessionStateStore
from state_portal.workflows.mfa import (
    INVALID_CODE_MESSAGE,
    INVALID_INPUT_MESSAGE,
    NO_FACTORS_MESSAGE,
    Cancelled,
    ChallengeDispatched,
    Failed,
    FactorSelected,
    FactorsLoaded,
    MfaChallengeFlow,
    MfaSnapshot,
    MfaState,
    ProofRejected,
    ProofSubmitted,
    PushFailed,
    Retry,
    StepUpProof,
    Verified,
    accept_step_up_callback,
    begin_mfa_challenge,
    transition,
)
from tests.conftest import IDP_BASE, FakeClock, RoutedTransport, factor_json

USER = "00u-parent"
FACTORS = f"/api/v1/users/{USER}/factors"
POLL = f"{FACTORS}/push1/transactions/tx1"

TOTP = Factor.model_validate(factor_json("totp1"))
PUSH = Factor.model_validate(factor_json("push1", factor_type="push"))


def verify_path(factor_id: str) -> str:
    return f"{FACTORS}/{factor_id}/verify"


def otp_handler(correct: str = "123456") -> Callable[[httpx.Request], httpx.Response]:
    """Issue returns CHALLENGE; verify accepts only `correct`."""

    def handle(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content or b"{}")
        if "passCode" not in body:
            return httpx.Response(200, json={"factorResult": "CHALLENGE"})
        if body["passCode"] == correct:
            return httpx.Response(200, json={"factorResult": "SUCCESS"})
        return httpx.Response(403, json={"errorCode": "E0000068", "errorSummary": "Invalid Passcode/Answer"})

    return handle


def push_issued() -> httpx.Response:
    return httpx.Response(
        200,
        json={"factorResult": "WAITING", "_links": {"poll": {"href": f"{IDP_BASE}{POLL}"}}},
    )


def poll_result(result: str) -> httpx.Response:
    return httpx.Response(200, json={"factorResult": result})


async def wait_for(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not reached")
        await asyncio.sleep(0.01)


@pytest.fixture
def completions() -> list[StepUpProof]:
    return []


@pytest.fixture
def flow(idp, store: SessionStateStore, completions: list[StepUpProof]):
    return MfaChallengeFlow(
        idp,
        store,
        USER,
        on_complete=completions.append,
        poll_interval_seconds=0.01,
        push_timeout_seconds=2,
    )


def with_factors(transport: RoutedTransport, *factors: dict[str, Any]) -> None:
    transport.json("GET", FACTORS, list(factors))


async def select_totp(flow: MfaChallengeFlow) -> None:
    await flow.start()
    await flow.select_factor("totp1")


# =============================================================================
# Pure transition function
# =============================================================================


class TestTransition:
    def test_factors_loaded_keeps_only_active(self) -> None:
        inactive = Factor.model_validate(factor_json("sms1", factor_type="sms", status="PENDING_ACTIVATION"))

        snapshot = transition(MfaSnapshot(), FactorsLoaded((TOTP, inactive)))

        assert snapshot.state is MfaState.SELECT_FACTOR
        assert snapshot.factors == (TOTP,)

    def test_no_active_factors_is_error(self) -> None:
        snapshot = transition(MfaSnapshot(), FactorsLoaded(()))

        assert snapshot.state is MfaState.ERROR
        assert snapshot.error == NO_FACTORS_MESSAGE

    def test_push_selection_waits(self) -> None:
        snapshot = transition(MfaSnapshot(state=MfaState.SELECT_FACTOR, factors=(PUSH,)), FactorSelected(PUSH))
        assert snapshot.state is MfaState.PUSH_WAITING
        assert snapshot.selected == PUSH

    def test_otp_selection_waits_for_dispatch(self) -> None:
        snapshot = transition(MfaSnapshot(state=MfaState.SELECT_FACTOR, factors=(TOTP,)), FactorSelected(TOTP))
        assert snapshot.state is MfaState.SELECT_FACTOR

        challenge = Challenge(factor_id="totp1", result=ChallengeResult.CHALLENGE)
        snapshot = transition(snapshot, ChallengeDispatched(challenge))
        assert snapshot.state is MfaState.CHALLENGE

    def test_rejection_returns_to_challenge_with_inline_error(self) -> None:
        snapshot = MfaSnapshot(state=MfaState.CHALLENGE, factors=(TOTP,), selected=TOTP)

        snapshot = transition(transition(snapshot, ProofSubmitted()), ProofRejected())

        assert snapshot.state is MfaState.CHALLENGE
        assert snapshot.inline_error == INVALID_CODE_MESSAGE

    def test_push_failure_is_error(self) -> None:
        snapshot = MfaSnapshot(state=MfaState.PUSH_WAITING, factors=(PUSH,), selected=PUSH)

        snapshot = transition(snapshot, PushFailed(ChallengeResult.REJECTED, "rejected"))

        assert snapshot.state is MfaState.ERROR
        assert snapshot.error == "rejected"

    def test_retry_without_factors_reloads(self) -> None:
        snapshot = transition(MfaSnapshot(state=MfaState.ERROR, error="boom"), Retry())
        assert snapshot == MfaSnapshot(state=MfaState.LOADING)

    def test_retry_with_factors_returns_to_selection(self) -> None:
        snapshot = MfaSnapshot(state=MfaState.ERROR, factors=(TOTP,), selected=TOTP, error="boom")

        snapshot = transition(snapshot, Retry())

        assert snapshot.state is MfaState.SELECT_FACTOR
        assert snapshot.error is None

    def test_error_with_factors_accepts_another_selection(self) -> None:
        snapshot = MfaSnapshot(state=MfaState.ERROR, factors=(PUSH, TOTP), selected=PUSH, error="rejected")

        snapshot = transition(snapshot, FactorSelected(TOTP))

        assert snapshot.state is MfaState.SELECT_FACTOR
        assert snapshot.selected == TOTP
        assert snapshot.error is None

    def test_error_without_factors_rejects_selection(self) -> None:
        with pytest.raises(InvalidTransitionError):
            transition(MfaSnapshot(state=MfaState.ERROR, error="boom"), FactorSelected(TOTP))

    @pytest.mark.parametrize(
        "state",
        [MfaState.LOADING, MfaState.SELECT_FACTOR, MfaState.CHALLENGE, MfaState.PUSH_WAITING, MfaState.ERROR],
    )
    def test_cancel_from_any_non_terminal_state(self, state: MfaState) -> None:
        assert transition(MfaSnapshot(state=state), Cancelled()).state is MfaState.CANCELLED

    @pytest.mark.parametrize("state", [MfaState.SUCCESS, MfaState.CANCELLED])
    def test_terminal_states_accept_nothing(self, state: MfaState) -> None:
        with pytest.raises(InvalidTransitionError):
            transition(MfaSnapshot(state=state), Cancelled())

    @pytest.mark.parametrize(
        ("state", "event"),
        [
            (MfaState.LOADING, ProofSubmitted()),
            (MfaState.SELECT_FACTOR, Verified("/dashboard")),
            (MfaState.CHALLENGE, PushFailed(ChallengeResult.REJECTED, "x")),
            (MfaState.ERROR, Failed("again")),
            (MfaState.CHALLENGE, Retry()),
        ],
    )
    def test_invalid_transitions_raise(self, state: MfaState, event: Any) -> None:
        with pytest.raises(InvalidTransitionError):
            transition(MfaSnapshot(state=state), event)


# =============================================================================
# Flow: loading factors
# =============================================================================


class TestStart:
    @pytest.mark.asyncio
    async def test_loads_active_factors(self, flow: MfaChallengeFlow, transport: RoutedTransport) -> None:
        with_factors(transport, factor_json("totp1"), factor_json("sms1", factor_type="sms", status="INACTIVE"))

        snapshot = await flow.start()

        assert snapshot.state is MfaState.SELECT_FACTOR
        assert [f.id for f in snapshot.factors] == ["totp1"]

    @pytest.mark.asyncio
    async def test_no_factors(self, flow: MfaChallengeFlow, transport: RoutedTransport) -> None:
        with_factors(transport)

        snapshot = await flow.start()

        assert snapshot.state is MfaState.ERROR
        assert snapshot.error == NO_FACTORS_MESSAGE

    @pytest.mark.asyncio
    async def test_load_failure_then_retry(self, flow: MfaChallengeFlow, transport: RoutedTransport) -> None:
        transport.add(
            "GET",
            FACTORS,
            httpx.Response(500, json={"errorSummary": "Internal"}),
            httpx.Response(200, json=[factor_json("totp1")]),
        )

        assert (await flow.start()).state is MfaState.ERROR
        snapshot = await flow.retry()

        assert snapshot.state is MfaState.SELECT_FACTOR
        assert len(transport.calls_to("GET", FACTORS)) == 2

    @pytest.mark.asyncio
    async def test_start_twice_rejected(self, flow: MfaChallengeFlow, transport: RoutedTransport) -> None:
        with_factors(transport, factor_json("totp1"))
        await flow.start()

        with pytest.raises(InvalidTransitionError):
            await flow.start()

    @pytest.mark.asyncio
    async def test_begin_mfa_challenge_loads_factors(self, idp, store: SessionStateStore, transport) -> None:
        with_factors(transport, factor_json("totp1"))

        flow = await begin_mfa_challenge(idp, store, USER)

        assert flow.state is MfaState.SELECT_FACTOR
        await flow.close()


# =============================================================================
# Flow: one-time codes
# =============================================================================


class TestOtp:
    @pytest.fixture
    def challenged(self, flow: MfaChallengeFlow, transport: RoutedTransport) -> MfaChallengeFlow:
        with_factors(transport, factor_json("totp1"))
        transport.add("POST", verify_path("totp1"), otp_handler())
        return flow

    @pytest.mark.asyncio
    async def test_selection_dispatches_challenge(self, challenged: MfaChallengeFlow) -> None:
        await select_totp(challenged)
        assert challenged.state is MfaState.CHALLENGE
        assert challenged.snapshot.challenge is not None
        assert challenged.snapshot.challenge.result is ChallengeResult.CHALLENGE

    @pytest.mark.asyncio
    async def test_correct_code_records_step_up(
        self,
        challenged: MfaChallengeFlow,
        store: SessionStateStore,
        clock: FakeClock,
        completions: list[StepUpProof],
    ) -> None:
        await select_totp(challenged)
        snapshot = await challenged.submit_code(" 123456 ")

        assert snapshot.state is MfaState.SUCCESS
        assert snapshot.redirect_to == "/dashboard"
        assert store.get_flag(FLAG_MFA_TIMESTAMP) == clock.now
        assert store.is_step_up_fresh() is True
        assert completions == [
            StepUpProof(
                principal_id=USER,
                verified_at_ms=clock.now,
                redirect_to="/dashboard",
                factor_id="totp1",
                factor_type="token:software:totp",
            )
        ]

    @pytest.mark.asyncio
    async def test_pending_redirect_consumed(self, challenged: MfaChallengeFlow, store: SessionStateStore) -> None:
        await select_totp(challenged)
        store.set_flag(FLAG_MFA_REDIRECT_TO, "/services/snap-assistance")

        snapshot = await challenged.submit_code("123456")

        assert snapshot.redirect_to == "/services/snap-assistance"
        assert store.get_flag(FLAG_MFA_REDIRECT_TO) is None

    @pytest.mark.asyncio
    async def test_wrong_code_stays_in_challenge(
        self, challenged: MfaChallengeFlow, store: SessionStateStore, completions: list[StepUpProof]
    ) -> None:
        await select_totp(challenged)
        snapshot = await challenged.submit_code("000000")

        assert snapshot.state is MfaState.CHALLENGE
        assert snapshot.inline_error == INVALID_CODE_MESSAGE
        assert store.is_step_up_fresh() is False
        assert completions == []

    @pytest.mark.asyncio
    async def test_wrong_code_then_correct(self, challenged: MfaChallengeFlow) -> None:
        await select_totp(challenged)
        await challenged.submit_code("000000")
        snapshot = await challenged.submit_code("123456")
        assert snapshot.state is MfaState.SUCCESS

    @pytest.mark.asyncio
    @pytest.mark.parametrize("code", ["", "   ", "12ab56"])
    async def test_non_numeric_input_makes_no_request(
        self, challenged: MfaChallengeFlow, transport: RoutedTransport, code: str
    ) -> None:
        await select_totp(challenged)
        before = len(transport.calls)

        snapshot = await challenged.submit_code(code)

        assert snapshot.state is MfaState.CHALLENGE
        assert snapshot.inline_error == INVALID_INPUT_MESSAGE
        assert len(transport.calls) == before

    @pytest.mark.asyncio
    async def test_resend_reissues(self, challenged: MfaChallengeFlow, transport: RoutedTransport) -> None:
        await select_totp(challenged)
        snapshot = await challenged.resend()

        assert snapshot.state is MfaState.CHALLENGE
        assert len(transport.calls_to("POST", verify_path("totp1"))) == 2

    @pytest.mark.asyncio
    async def test_verify_outage_is_error(self, challenged: MfaChallengeFlow, transport: RoutedTransport) -> None:
        await select_totp(challenged)
        transport.routes[("POST", verify_path("totp1"))] = [httpx.Response(503, json={"errorSummary": "down"})]

        snapshot = await challenged.submit_code("123456")

        assert snapshot.state is MfaState.ERROR

    @pytest.mark.asyncio
    async def test_submit_outside_challenge_rejected(self, flow: MfaChallengeFlow) -> None:
        with pytest.raises(InvalidTransitionError):
            await flow.submit_code("123456")

    @pytest.mark.asyncio
    async def test_submit_without_selected_factor_rejected(
        self, flow: MfaChallengeFlow, transport: RoutedTransport
    ) -> None:
        flow._snapshot = MfaSnapshot(state=MfaState.CHALLENGE)

        with pytest.raises(InvalidTransitionError):
            await flow.submit_code("123456")

        assert transport.calls == []
        assert flow.state is MfaState.CHALLENGE

    @pytest.mark.asyncio
    async def test_unknown_factor_id(self, flow: MfaChallengeFlow, transport: RoutedTransport) -> None:
        with_factors(transport, factor_json("totp1"))
        await flow.start()

        with pytest.raises(ValidationError):
            await flow.select_factor("nope")


# =============================================================================
# Flow: push
# =============================================================================


class TestPush:
    @pytest.fixture
    def push_factors(self, transport: RoutedTransport) -> RoutedTransport:
        with_factors(transport, factor_json("push1", factor_type="push"), factor_json("totp1"))
        transport.add("POST", verify_path("push1"), push_issued())
        transport.add("POST", verify_path("totp1"), otp_handler())
        return transport

    @pytest.mark.asyncio
    async def test_push_approved(
        self,
        flow: MfaChallengeFlow,
        push_factors: RoutedTransport,
        store: SessionStateStore,
        completions: list[StepUpProof],
    ) -> None:
        push_factors.add("GET", POLL, poll_result("WAITING"), poll_result("WAITING"), poll_result("SUCCESS"))
        await flow.start()

        snapshot = await flow.select_factor("push1")
        assert snapshot.state is MfaState.PUSH_WAITING
        assert flow.is_polling is True

        await wait_for(lambda: flow.state is MfaState.SUCCESS)

        assert store.is_step_up_fresh() is True
        assert completions[0].factor_type == "push"
        assert flow.is_polling is False

    @pytest.mark.asyncio
    async def test_push_rejected(self, flow: MfaChallengeFlow, push_factors: RoutedTransport) -> None:
        push_factors.add("GET", POLL, poll_result("REJECTED"))
        await flow.start()

        await flow.select_factor("push1")
        await wait_for(lambda: flow.state is MfaState.ERROR)

        assert flow.snapshot.error == "Push notification was rejected."

    @pytest.mark.asyncio
    async def test_retry_after_rejection_reissues_push(
        self, flow: MfaChallengeFlow, push_factors: RoutedTransport
    ) -> None:
        push_factors.add("GET", POLL, poll_result("REJECTED"), poll_result("SUCCESS"))
        await flow.start()
        await flow.select_factor("push1")
        await wait_for(lambda: flow.state is MfaState.ERROR)

        snapshot = await flow.retry()
        assert snapshot.state is MfaState.PUSH_WAITING
        await wait_for(lambda: flow.state is MfaState.SUCCESS)

        assert len(push_factors.calls_to("POST", verify_path("push1"))) == 2

    @pytest.mark.asyncio
    async def test_other_factor_after_rejection(
        self, flow: MfaChallengeFlow, push_factors: RoutedTransport, store: SessionStateStore
    ) -> None:
        # Arrange
        push_factors.add("GET", POLL, poll_result("REJECTED"))
        await flow.start()
        await flow.select_factor("push1")
        await wait_for(lambda: flow.state is MfaState.ERROR)

        # Act
        snapshot = await flow.select_factor("totp1")

        # Assert
        assert snapshot.state is MfaState.CHALLENGE
        assert snapshot.selected is not None and snapshot.selected.id == "totp1"
        assert snapshot.error is None
        snapshot = await flow.submit_code("123456")
        assert snapshot.state is MfaState.SUCCESS
        assert store.is_step_up_fresh() is True

    @pytest.mark.asyncio
    async def test_push_hard_ceiling(self, idp, store: SessionStateStore, push_factors: RoutedTransport) -> None:
        push_factors.add("GET", POLL, poll_result("WAITING"))
        flow = MfaChallengeFlow(idp, store, USER, poll_interval_seconds=0.01, push_timeout_seconds=0.05)
        await flow.start()

        await flow.select_factor("push1")
        await wait_for(lambda: flow.state is MfaState.ERROR)

        assert flow.snapshot.error == "Push notification timed out. Please try again."
        assert store.is_step_up_fresh() is False

    @pytest.mark.asyncio
    async def test_switching_factor_cancels_poll(
        self, flow: MfaChallengeFlow, push_factors: RoutedTransport
    ) -> None:
        push_factors.add("GET", POLL, poll_result("WAITING"), poll_result("SUCCESS"))
        await flow.start()
        await flow.select_factor("push1")

        snapshot = await flow.select_factor("totp1")
        polls = len(push_factors.calls_to("GET", POLL))
        await asyncio.sleep(0.1)

        assert snapshot.state is MfaState.CHALLENGE
        assert flow.is_polling is False
        assert flow.state is MfaState.CHALLENGE
        assert len(push_factors.calls_to("GET", POLL)) == polls

    @pytest.mark.asyncio
    async def test_immediate_success_skips_polling(
        self, flow: MfaChallengeFlow, transport: RoutedTransport
    ) -> None:
        with_factors(transport, factor_json("push1", factor_type="push"))
        transport.json("POST", verify_path("push1"), {"factorResult": "SUCCESS"})
        await flow.start()

        snapshot = await flow.select_factor("push1")

        assert snapshot.state is MfaState.SUCCESS
        assert transport.calls_to("GET", POLL) == []

    @pytest.mark.asyncio
    async def test_cancel_stops_polling(self, flow: MfaChallengeFlow, push_factors: RoutedTransport) -> None:
        push_factors.add("GET", POLL, poll_result("WAITING"))
        await flow.start()
        await flow.select_factor("push1")

        snapshot = await flow.cancel()

        assert snapshot.state is MfaState.CANCELLED
        assert flow.is_polling is False
        assert (await flow.cancel()).state is MfaState.CANCELLED

    @pytest.mark.asyncio
    async def test_context_manager_stops_polling(self, idp, store, push_factors: RoutedTransport) -> None:
        push_factors.add("GET", POLL, poll_result("WAITING"))

        async with MfaChallengeFlow(idp, store, USER, poll_interval_seconds=0.01) as flow:
            await flow.start()
            await flow.select_factor("push1")
            assert flow.is_polling is True

        assert flow.is_polling is False


# =============================================================================
# Flow: WebAuthn assertion
# =============================================================================


class TestWebAuthnAssertion:
    @pytest.mark.asyncio
    async def test_assertion_verified(self, flow: MfaChallengeFlow, transport: RoutedTransport) -> None:
        with_factors(transport, factor_json("wa1", factor_type="webauthn", credentialId="cred-1"))
        transport.json("GET", f"{FACTORS}/wa1", factor_json("wa1", factor_type="webauthn", credentialId="cred-1"))

        def handle(request: httpx.Request) -> httpx.Response:
            body = json.loads(request.content or b"{}")
            if "clientData" in body:
                return httpx.Response(200, json={"factorResult": "SUCCESS"})
            return httpx.Response(
                200, json={"factorResult": "CHALLENGE", "_embedded": {"challenge": {"challenge": "abc"}}}
            )

        transport.add("POST", verify_path("wa1"), handle)
        await flow.start()

        snapshot = await flow.select_factor("wa1")
        assert snapshot.challenge is not None
        assert snapshot.challenge.credential_id == "cred-1"

        snapshot = await flow.submit_assertion(
            WebAuthnAssertion(client_data="cd", authenticator_data="ad", signature_data="sd")
        )
        assert snapshot.state is MfaState.SUCCESS


# =============================================================================
# Listeners
# =============================================================================


class TestSubscribe:
    @pytest.mark.asyncio
    async def test_listener_sees_transitions(self, flow: MfaChallengeFlow, transport: RoutedTransport) -> None:
        with_factors(transport, factor_json("totp1"))
        seen: list[tuple[MfaState, MfaState]] = []
        unsubscribe = flow.subscribe(lambda prev, cur: seen.append((prev.state, cur.state)))

        await flow.start()
        unsubscribe()
        await flow.cancel()

        assert seen == [(MfaState.LOADING, MfaState.SELECT_FACTOR)]


# =============================================================================
# OIDC step-up callback
# =============================================================================


class TestAcceptStepUpCallback:
    def _claims(self, base: ClaimsSnapshot, auth_time: int | None) -> ClaimsSnapshot:
        return replace(base, auth_time=auth_time)

    def test_recent_auth_time_records_step_up(self, store: SessionStateStore, claims: ClaimsSnapshot) -> None:
        store.set_flag(FLAG_MFA_REDIRECT_TO, "/add-dependent")

        proof = accept_step_up_callback(store, self._claims(claims, 1_000), now=1_010)

        assert proof.redirect_to == "/add-dependent"
        assert proof.factor_type == "oidc"
        assert store.is_step_up_fresh() is True

    def test_stale_auth_time_still_records(self, store: SessionStateStore, claims: ClaimsSnapshot) -> None:
        proof = accept_step_up_callback(store, self._claims(claims, 1_000), now=5_000, max_age_seconds=300)

        assert proof.redirect_to == "/dashboard"
        assert store.is_step_up_fresh() is True

    def test_missing_auth_time_still_records(self, store: SessionStateStore, claims: ClaimsSnapshot) -> None:
        accept_step_up_callback(store, self._claims(claims, None), now=5_000)
        assert store.is_step_up_fresh() is True

    def test_not_signed_in(self, store: SessionStateStore) -> None:
        with pytest.raises(ValidationError):
            accept_step_up_callback(store, None)
