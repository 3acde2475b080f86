"""Config command group for state-portal CLI."""

from __future__ import annotations

__all__ = ["config"]

import json
import sys
from pathlib import Path

import click

from state_portal.config import PortalConfig, get_config_path
from state_portal.telemetry.log_paths import get_log_path

from ..styling import style_dim, style_error, style_header, style_success


def _mask(secret: str | None) -> str | None:
    if not secret:
        return None
    return f"{secret[:4]}…" if len(secret) > 8 else "****"


@click.group()
def config() -> None:
    """Configuration management commands.

    \b
    Configuration is read from the config file when it exists, otherwise
    from environment variables (OKTA_ISSUER, OKTA_CLIENT_ID, OKTA_API_TOKEN,
    SOCURE_API_KEY, SOCURE_SDK_KEY, API_PORT).
    """
    pass


@config.command("show")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON (secrets masked)")
@click.option("--config", "config_path", type=click.Path(path_type=Path), help="Config file path")
def config_show(as_json: bool, config_path: Path | None) -> None:
    """Display the effective configuration."""
    try:
        loaded = PortalConfig.load(config_path)
    except (FileNotFoundError, ValueError) as e:
        click.echo(style_error(str(e)), err=True)
        sys.exit(1)

    if as_json:
        data = loaded.model_dump(mode="json")
        data["identity_provider"]["api_token"] = _mask(loaded.identity_provider.api_token)
        data["vendor"]["api_key"] = _mask(loaded.vendor.api_key)
        click.echo(json.dumps(data, indent=2))
        return

    click.echo("\nstate-portal configuration:\n")

    click.echo(style_header("Identity Provider"))
    click.echo(f"  issuer: {loaded.identity_provider.issuer or style_dim('(not set)')}")
    click.echo(f"  client_id: {loaded.identity_provider.client_id or style_dim('(not set)')}")
    click.echo(f"  api_token: {_mask(loaded.identity_provider.api_token) or style_dim('(not set)')}")
    click.echo()

    click.echo(style_header("Verification Vendor"))
    click.echo(f"  base_url: {loaded.vendor.base_url}")
    click.echo(f"  api_key: {_mask(loaded.vendor.api_key) or style_dim('(not set)')}")
    click.echo(f"  sdk_key: {loaded.vendor.sdk_key or style_dim('(not set)')}")
    click.echo()

    click.echo(style_header("Workflow"))
    workflow = loaded.workflow
    click.echo(f"  step_up_window_ms: {workflow.step_up_window_ms}")
    click.echo(f"  push_poll_interval_seconds: {workflow.push_poll_interval_seconds}")
    click.echo(f"  push_timeout_seconds: {workflow.push_timeout_seconds}")
    click.echo(f"  step_up_callback_max_age_seconds: {workflow.step_up_callback_max_age_seconds}")
    click.echo(f"  request_timeout_seconds: {workflow.request_timeout_seconds}")
    click.echo()

    click.echo(style_header("Logging"))
    click.echo(f"  log_level: {loaded.logging.log_level}")
    click.echo(f"  system: {get_log_path('system', loaded.logging.log_dir)}")
    click.echo(f"  workflow: {get_log_path('workflow', loaded.logging.log_dir)}")
    click.echo()

    click.echo(style_header("API"))
    click.echo(f"  host: {loaded.api.host}")
    click.echo(f"  port: {loaded.api.port}")
    click.echo(f"  cors_origins: {', '.join(loaded.api.cors_origins) or style_dim('(none)')}")


@config.command("path")
def config_path_cmd() -> None:
    """Show the config file location."""
    path = get_config_path()
    click.echo(str(path))
    if not path.exists():
        click.echo(style_dim("(file does not exist; environment variables are used)"), err=True)


@config.command("validate")
@click.option("--config", "config_path", type=click.Path(path_type=Path), help="Config file path")
def config_validate(config_path: Path | None) -> None:
    """Validate configuration and report missing credentials.

    Exits 1 when the file is invalid or a required credential is missing.
    """
    try:
        loaded = PortalConfig.load(config_path)
    except (FileNotFoundError, ValueError) as e:
        click.echo(style_error(str(e)), err=True)
        sys.exit(1)

    problems: list[str] = []
    if not loaded.identity_provider.issuer:
        problems.append("identity_provider.issuer is not set")
    if not loaded.identity_provider.client_id:
        problems.append("identity_provider.client_id is not set")
    if not loaded.identity_provider.api_token:
        problems.append("identity_provider.api_token is not set (management API unavailable)")
    if not loaded.vendor.api_key:
        problems.append("vendor.api_key is not set (identity verification unavailable)")

    if problems:
        for problem in problems:
            click.echo(style_error(problem), err=True)
        sys.exit(1)
    click.echo(style_success("Configuration is valid"))


@config.command("init")
@click.option("--force", is_flag=True, help="Overwrite an existing config file")
def config_init(force: bool) -> None:
    """Write a config file seeded from the current environment."""
    path = get_config_path()
    if path.exists() and not force:
        click.echo(style_error(f"Config file already exists: {path} (use --force)"), err=True)
        sys.exit(1)
    PortalConfig.from_env().save_to_file(path)
    click.echo(style_success(f"Configuration saved to {path}"))
