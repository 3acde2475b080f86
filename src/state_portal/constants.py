"""Application-wide constants for state-portal.

Constants that define workflow behavior.
For user-configurable settings per deployment, see config.py.
"""

__all__ = [
    # Application identity
    "APP_NAME",
    # HTTP
    "DEFAULT_HTTP_TIMEOUT_SECONDS",
    "DEFAULT_API_PORT",
    "DEFAULT_VENDOR_BASE_URL",
    # Step-up authentication
    "MFA_FRESHNESS_WINDOW_MS",
    "STEP_UP_CALLBACK_MAX_AGE_SECONDS",
    "STEP_UP_ACR_VALUES",
    # Push polling
    "PUSH_POLL_INTERVAL_SECONDS",
    "PUSH_TIMEOUT_SECONDS",
    # WebAuthn
    "WEBAUTHN_CEREMONY_TIMEOUT_MS",
    # Authentication
    "JWKS_CACHE_TTL_SECONDS",
    # Session flags
    "FLAG_IDENTITY_VERIFIED",
    "FLAG_IDENTITY_VERIFIED_AT",
    "FLAG_MFA_VERIFIED",
    "FLAG_MFA_TIMESTAMP",
    "FLAG_MFA_REDIRECT_TO",
    "FLAG_PENDING_CHILD",
    "FLAG_PENDING_CHILD_TEMP_PASSWORD",
    "FLAG_POST_ENROLLMENT_REDIRECT",
    "FLAG_MFA_ENROLLMENT_SKIPPED",
    # Application paths
    "PATH_HOME",
    "PATH_SIGN_IN",
    "PATH_DASHBOARD",
    "PATH_VERIFY",
    "PATH_SERVICES",
    "PATH_MFA_CHALLENGE",
    "PATH_SECURE_ACCOUNT",
    "PATH_ADD_DEPENDENT",
    "PATH_VERIFY_DEPENDENT",
]

# ============================================================================
# Application Identity
# ============================================================================

APP_NAME: str = "state-portal"

# ============================================================================
# HTTP
# ============================================================================

# Default per-request timeout for identity provider and vendor calls (seconds)
DEFAULT_HTTP_TIMEOUT_SECONDS: float = 30.0

DEFAULT_API_PORT: int = 3051

DEFAULT_VENDOR_BASE_URL: str = "https://service.socure.com"

# ============================================================================
# Step-up Authentication
# ============================================================================

# A step-up proof older than this is treated as absent (5 minutes)
MFA_FRESHNESS_WINDOW_MS: int = 5 * 60 * 1000

# auth_time older than this on an OIDC step-up callback is logged as stale
STEP_UP_CALLBACK_MAX_AGE_SECONDS: int = 60

STEP_UP_ACR_VALUES: str = "urn:okta:loa:2fa:any"

# ============================================================================
# Push Polling
# ============================================================================

PUSH_POLL_INTERVAL_SECONDS: float = 3.0

# Hard ceiling for a push challenge, independent of provider-side expiry
PUSH_TIMEOUT_SECONDS: float = 60.0

# ============================================================================
# WebAuthn
# ============================================================================

WEBAUTHN_CEREMONY_TIMEOUT_MS: int = 60000

# ============================================================================
# Authentication
# ============================================================================

# JWKS cache TTL for ID token validation (10 minutes)
JWKS_CACHE_TTL_SECONDS: int = 600

# ============================================================================
# Session Flags
# ============================================================================

FLAG_IDENTITY_VERIFIED: str = "identity_verified"
FLAG_IDENTITY_VERIFIED_AT: str = "identity_verified_at"
FLAG_MFA_VERIFIED: str = "mfa_verified"
FLAG_MFA_TIMESTAMP: str = "mfa_timestamp"
FLAG_MFA_REDIRECT_TO: str = "mfa_redirect_to"
FLAG_PENDING_CHILD: str = "pending_child"
FLAG_PENDING_CHILD_TEMP_PASSWORD: str = "pending_child_temp_password"
FLAG_POST_ENROLLMENT_REDIRECT: str = "post_enrollment_redirect"
FLAG_MFA_ENROLLMENT_SKIPPED: str = "mfa_enrollment_skipped"

# ============================================================================
# Application Paths
# ============================================================================

PATH_HOME: str = "/"
PATH_SIGN_IN: str = "/login"
PATH_DASHBOARD: str = "/dashboard"
PATH_VERIFY: str = "/verify"
PATH_SERVICES: str = "/services"
PATH_MFA_CHALLENGE: str = "/mfa-challenge"
PATH_SECURE_ACCOUNT: str = "/secure-account"
PATH_ADD_DEPENDENT: str = "/add-dependent"
PATH_VERIFY_DEPENDENT: str = "/verify-dependent"
