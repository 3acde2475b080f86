"""Dependents command group: inspect child accounts linked to a parent."""

from __future__ import annotations

__all__ = ["dependents"]

import asyncio
import json
import sys

import click

from state_portal.config import PortalConfig
from state_portal.exceptions import PortalError
from state_portal.idp.client import IdentityProviderClient
from state_portal.idp.models import Principal

from ..styling import style_dim, style_error, style_label, style_verified


async def _fetch(config: PortalConfig, parent_id: str) -> list[Principal]:
    async with IdentityProviderClient(config.identity_provider) as idp:
        return await idp.find_by_parent_id(parent_id)


@click.group()
def dependents() -> None:
    """Dependent account commands."""
    pass


@dependents.command("list")
@click.argument("parent_id")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def dependents_list(parent_id: str, as_json: bool) -> None:
    """List child accounts whose parentId is PARENT_ID."""
    try:
        children = asyncio.run(_fetch(PortalConfig.load(), parent_id))
    except PortalError as e:
        click.echo(style_error(e.message), err=True)
        sys.exit(1)

    if as_json:
        click.echo(json.dumps([c.model_dump(mode="json", by_alias=True) for c in children], indent=2))
        return

    if not children:
        click.echo(style_dim("No dependents."))
        return

    click.echo(style_label("Dependents") + f" {len(children)}")
    for child in children:
        click.echo(
            f"  {child.id}  {child.profile.display_name}  <{child.profile.email}>  "
            f"{style_verified(child.profile.identity_verified)}"
        )
