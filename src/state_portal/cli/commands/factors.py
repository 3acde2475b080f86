"""Factors command group: inspect a principal's MFA factors."""

from __future__ import annotations

__all__ = ["factors"]

import asyncio
import json
import sys

import click

from state_portal.config import PortalConfig
from state_portal.exceptions import PortalError
from state_portal.idp.client import IdentityProviderClient
from state_portal.idp.models import Factor

from ..styling import style_dim, style_error, style_factor_status, style_label


async def _fetch(config: PortalConfig, user_id: str) -> list[Factor]:
    async with IdentityProviderClient(config.identity_provider) as idp:
        return await idp.list_factors(user_id)


@click.group()
def factors() -> None:
    """MFA factor commands."""
    pass


@factors.command("list")
@click.argument("user_id")
@click.option("--active", is_flag=True, help="Only factors that can be challenged")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def factors_list(user_id: str, active: bool, as_json: bool) -> None:
    """List MFA factors enrolled for USER_ID."""
    try:
        enrolled = asyncio.run(_fetch(PortalConfig.load(), user_id))
    except PortalError as e:
        click.echo(style_error(e.message), err=True)
        sys.exit(1)

    if active:
        enrolled = [f for f in enrolled if f.is_active]

    if as_json:
        click.echo(json.dumps([f.model_dump(mode="json", by_alias=True) for f in enrolled], indent=2))
        return

    if not enrolled:
        click.echo(style_dim("No factors."))
        return

    click.echo(style_label("Factors") + f" {len(enrolled)}")
    for factor in enrolled:
        provider = factor.provider or "-"
        click.echo(f"  {factor.id}  {factor.factor_type}  {provider}  {style_factor_status(factor.status)}")
