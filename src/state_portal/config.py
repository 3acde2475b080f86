"""Application configuration for state-portal.

Defines configuration models for the identity provider, the verification
vendor, workflow timing, logging and the HTTP API. Config is stored as JSON
in click's per-user app directory or assembled from
environment variables for container deployments.

Example usage:
    # Load from config file
    config = PortalConfig.load_from_file(config_path)

    # Or from the environment
    config = PortalConfig.from_env()
"""

from __future__ import annotations

__all__ = [
    "ApiConfig",
    "IdentityProviderConfig",
    "LoggingConfig",
    "PortalConfig",
    "VendorConfig",
    "WorkflowConfig",
    "get_config_path",
]

import json
import os
import re
from pathlib import Path
from typing import Literal, Mapping

import click
from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from state_portal.constants import (
    APP_NAME,
    DEFAULT_API_PORT,
    DEFAULT_HTTP_TIMEOUT_SECONDS,
    DEFAULT_VENDOR_BASE_URL,
    MFA_FRESHNESS_WINDOW_MS,
    PUSH_POLL_INTERVAL_SECONDS,
    PUSH_TIMEOUT_SECONDS,
    STEP_UP_CALLBACK_MAX_AGE_SECONDS,
)

_ISSUER_HOST_PATTERN = re.compile(r"https?://([^/]+)")

_RECOVERY_HINT = "Fix the file, or delete it to configure through environment variables."


def get_config_path() -> Path:
    """Default config file: config.json in click's per-user app directory."""
    return Path(click.get_app_dir(APP_NAME)) / "config.json"


def _describe_validation_error(error: PydanticValidationError) -> str:
    return "\n".join(f"  - {'.'.join(str(part) for part in e['loc'])}: {e['msg']}" for e in error.errors())


def _read_config_json(config_path: Path) -> dict:
    """Parse the config file into a dict.

    Raises:
        FileNotFoundError: If the file does not exist.
        ValueError: If the file is unreadable or not a JSON object.
    """
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found at {config_path}.")
    try:
        data = json.loads(config_path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise ValueError(f"Config file {config_path} is not valid JSON: {e}") from e
    except OSError as e:
        raise ValueError(f"Cannot read config file {config_path}: {e}") from e
    if not isinstance(data, dict):
        raise ValueError(f"Config file {config_path} must contain a JSON object")
    return data


# =============================================================================
# Identity Provider
# =============================================================================


class IdentityProviderConfig(BaseModel):
    """OIDC identity provider configuration.

    The management API base authority is resolved from the issuer URL
    (e.g. "https://dev-1.okta.com/oauth2/default" -> "dev-1.okta.com").

    Attributes:
        issuer: OIDC issuer URL.
        client_id: SPA client ID (audience of ID tokens).
        api_token: Service credential for the management API (SSWS token).
    """

    issuer: str = ""
    client_id: str = ""
    api_token: str | None = None

    @property
    def domain(self) -> str | None:
        """Provider base authority extracted from the issuer URL."""
        match = _ISSUER_HOST_PATTERN.match(self.issuer or "")
        return match.group(1) if match else None

    @property
    def base_url(self) -> str | None:
        """Management API base URL, or None when the issuer is unusable."""
        domain = self.domain
        return f"https://{domain}" if domain else None

    @property
    def is_configured(self) -> bool:
        return bool(self.api_token) and self.domain is not None


# =============================================================================
# Verification Vendor
# =============================================================================


class VendorConfig(BaseModel):
    """Document-verification vendor configuration.

    Attributes:
        base_url: Vendor API base URL.
        api_key: Server-side API key. Absent means verification is unavailable.
        sdk_key: Public key handed to the client-side widget.
    """

    base_url: str = DEFAULT_VENDOR_BASE_URL
    api_key: str | None = None
    sdk_key: str | None = None

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key)


# =============================================================================
# Workflow Timing
# =============================================================================


class WorkflowConfig(BaseModel):
    """Timing parameters for the step-up and verification workflows.

    Attributes:
        step_up_window_ms: Freshness window for a step-up proof.
        push_poll_interval_seconds: Delay between push status polls.
        push_timeout_seconds: Hard ceiling for a push challenge.
        step_up_callback_max_age_seconds: Expected auth_time age on OIDC step-up.
        request_timeout_seconds: Default timeout for every adapter call.
        success_delay_seconds: UX pause before handing control to the caller.
    """

    step_up_window_ms: int = Field(default=MFA_FRESHNESS_WINDOW_MS, gt=0)
    push_poll_interval_seconds: float = Field(default=PUSH_POLL_INTERVAL_SECONDS, gt=0)
    push_timeout_seconds: float = Field(default=PUSH_TIMEOUT_SECONDS, gt=0)
    step_up_callback_max_age_seconds: int = Field(default=STEP_UP_CALLBACK_MAX_AGE_SECONDS, gt=0)
    request_timeout_seconds: float = Field(default=DEFAULT_HTTP_TIMEOUT_SECONDS, gt=0)
    success_delay_seconds: float = Field(default=0.0, ge=0)


# =============================================================================
# Logging
# =============================================================================


class LoggingConfig(BaseModel):
    """Logging configuration settings.

    Logs are stored in <log_dir>/state-portal/:
        <log_dir>/state-portal/
            ├── system.jsonl     # WARNING and above
            └── workflow.jsonl   # Step-up, verification and linking events

    Attributes:
        log_dir: Base directory for logs. None uses the platform log directory.
        log_level: Console logging level.
    """

    log_dir: str | None = None
    log_level: Literal["DEBUG", "INFO", "WARNING"] = "INFO"


# =============================================================================
# HTTP API
# =============================================================================


class ApiConfig(BaseModel):
    """HTTP API server settings."""

    host: str = "0.0.0.0"
    port: int = Field(default=DEFAULT_API_PORT, ge=1, le=65535)
    cors_origins: list[str] = Field(default_factory=lambda: ["*"])


class PortalConfig(BaseModel):
    """Main application configuration for state-portal.

    Attributes:
        identity_provider: OIDC provider and management API settings.
        vendor: Document-verification vendor settings.
        workflow: Step-up and polling timing.
        logging: Log destinations.
        api: HTTP server settings.
    """

    identity_provider: IdentityProviderConfig = Field(default_factory=IdentityProviderConfig)
    vendor: VendorConfig = Field(default_factory=VendorConfig)
    workflow: WorkflowConfig = Field(default_factory=WorkflowConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    api: ApiConfig = Field(default_factory=ApiConfig)

    def save_to_file(self, config_path: Path) -> None:
        """Write the configuration as JSON, readable by the owner only (it holds credentials)."""
        config_path.parent.mkdir(parents=True, exist_ok=True)
        config_path.write_text(json.dumps(self.model_dump(), indent=2) + "\n", encoding="utf-8")
        config_path.chmod(0o600)

    @classmethod
    def load_from_file(cls, config_path: Path) -> "PortalConfig":
        """Load and validate the JSON config file.

        Raises:
            FileNotFoundError: If the file does not exist.
            ValueError: If the file is not valid JSON or fails validation. The
                message lists every offending field.
        """
        data = _read_config_json(config_path)
        try:
            return cls.model_validate(data)
        except PydanticValidationError as e:
            raise ValueError(
                f"Invalid config file {config_path}:\n{_describe_validation_error(e)}\n{_RECOVERY_HINT}"
            ) from e

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "PortalConfig":
        """Build configuration from environment variables.

        Recognized variables: OKTA_ISSUER (or VITE_OKTA_ISSUER), OKTA_CLIENT_ID
        (or VITE_OKTA_CLIENT_ID), OKTA_API_TOKEN, SOCURE_API_KEY,
        SOCURE_BASE_URL, SOCURE_SDK_KEY (or VITE_SOCURE_SDK_KEY), API_PORT,
        STATE_PORTAL_LOG_DIR, STATE_PORTAL_LOG_LEVEL.
        """
        env = os.environ if environ is None else environ

        def first(*names: str) -> str | None:
            for name in names:
                value = env.get(name)
                if value:
                    return value
            return None

        api = ApiConfig()
        if env.get("API_PORT"):
            api = ApiConfig(port=int(env["API_PORT"]))

        return cls(
            identity_provider=IdentityProviderConfig(
                issuer=first("OKTA_ISSUER", "VITE_OKTA_ISSUER") or "",
                client_id=first("OKTA_CLIENT_ID", "VITE_OKTA_CLIENT_ID") or "",
                api_token=first("OKTA_API_TOKEN"),
            ),
            vendor=VendorConfig(
                base_url=first("SOCURE_BASE_URL") or DEFAULT_VENDOR_BASE_URL,
                api_key=first("SOCURE_API_KEY"),
                sdk_key=first("SOCURE_SDK_KEY", "VITE_SOCURE_SDK_KEY"),
            ),
            logging=LoggingConfig(
                log_dir=first("STATE_PORTAL_LOG_DIR"),
                log_level=first("STATE_PORTAL_LOG_LEVEL") or "INFO",  # type: ignore[arg-type]
            ),
            api=api,
        )

    @classmethod
    def load(cls, config_path: Path | None = None) -> "PortalConfig":
        """Load from the config file when present, otherwise from the environment."""
        path = config_path or get_config_path()
        if path.exists():
            return cls.load_from_file(path)
        return cls.from_env()
