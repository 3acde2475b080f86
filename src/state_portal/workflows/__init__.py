"""Identity-assurance workflows.

- mfa: step-up challenge state machine (push, OTP, WebAuthn)
- polling: cancellable push poller
- webauthn: WebAuthn factor enrollment
- verification: identity verification state machine
- dependents: dependent linking with delegated verification
"""

from state_portal.workflows.dependents import (
    AddedDependent,
    ChildLookup,
    ChildProfile,
    CreatedChild,
    DependentLinker,
    LinkedDependent,
    generate_temporary_password,
)
from state_portal.workflows.mfa import (
    MfaChallengeFlow,
    MfaSnapshot,
    MfaState,
    StepUpProof,
    accept_step_up_callback,
    begin_mfa_challenge,
)
from state_portal.workflows.polling import PushPoller
from state_portal.workflows.verification import (
    DependentVerificationCompletion,
    IdentityVerificationFlow,
    SelfVerificationCompletion,
    VerificationSnapshot,
    VerificationStep,
    VerificationSubject,
    begin_verification,
)
from state_portal.workflows.webauthn import (
    CeremonyError,
    CreatedCredential,
    CredentialCreator,
    EnrollmentState,
    WebAuthnEnrollment,
    build_creation_options,
    describe_ceremony_error,
)

__all__ = [
    "AddedDependent",
    "CeremonyError",
    "ChildLookup",
    "ChildProfile",
    "CreatedChild",
    "CreatedCredential",
    "CredentialCreator",
    "DependentLinker",
    "DependentVerificationCompletion",
    "EnrollmentState",
    "IdentityVerificationFlow",
    "LinkedDependent",
    "MfaChallengeFlow",
    "MfaSnapshot",
    "MfaState",
    "PushPoller",
    "SelfVerificationCompletion",
    "StepUpProof",
    "VerificationSnapshot",
    "VerificationStep",
    "VerificationSubject",
    "WebAuthnEnrollment",
    "accept_step_up_callback",
    "begin_mfa_challenge",
    "begin_verification",
    "build_creation_options",
    "describe_ceremony_error",
    "generate_temporary_password",
]
