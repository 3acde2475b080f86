"""state-portal: identity-assurance core for the State Services Portal demo.

Drives sign-in claims, document verification, step-up MFA, WebAuthn
enrollment and dependent linking on top of an external OIDC identity
provider and a document-verification vendor.
"""

__version__ = "0.1.0"
