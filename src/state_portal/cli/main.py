"""Main CLI entry point for state-portal.

Defines the CLI group and registers all subcommands.

Commands:
    config      - Configuration management (show, path, validate, init)
    dependents  - Dependent accounts (list)
    factors     - MFA factors (list)
    serve       - Start the HTTP API

Subcommand help:
    state-portal COMMAND -h         Show help for a specific command
"""

from __future__ import annotations

__all__ = ["cli", "main"]

import sys

import click

from state_portal import __version__

from .commands.config import config
from .commands.dependents import dependents
from .commands.factors import factors
from .commands.serve import serve


@click.group(
    invoke_without_command=True,
    context_settings={"help_option_names": ["-h", "--help"]},
)
@click.option("--version", "-v", is_flag=True, help="Show version")
@click.pass_context
def cli(ctx: click.Context, version: bool) -> None:
    """state-portal: identity assurance for the State Services Portal."""
    if version:
        click.echo(f"state-portal {__version__}")
        sys.exit(0)
    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())


# Register commands
cli.add_command(config)
cli.add_command(dependents)
cli.add_command(factors)
cli.add_command(serve)


def main() -> None:
    """Console script entry point."""
    cli()


if __name__ == "__main__":
    main()
