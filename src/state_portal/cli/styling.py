"""Terminal styling for state-portal output.

Generic message styles plus the badges used when listing factors and
dependents. click strips the colors when output is not a terminal.
"""

from __future__ import annotations

__all__ = [
    "style_dim",
    "style_error",
    "style_factor_status",
    "style_header",
    "style_label",
    "style_success",
    "style_verified",
]

import click

from state_portal.idp.models import FactorStatus

_FACTOR_STATUS_COLORS: dict[str, str] = {
    FactorStatus.ACTIVE.value: "green",
    FactorStatus.PENDING_ACTIVATION.value: "yellow",
}


def style_header(title: str) -> str:
    """Section header, e.g. "--- Identity Provider ---"."""
    return click.style(f"--- {title} ---", fg="cyan", bold=True)


def style_label(label: str) -> str:
    """Count prefix for listings: style_label("Factors") + " 2" renders "Factors: 2"."""
    return click.style(f"{label}:", fg="cyan", bold=True)


def style_success(message: str) -> str:
    return click.style(f"✓ {message}", fg="green")


def style_error(message: str) -> str:
    return click.style(f"✗ {message}", fg="red")


def style_dim(message: str) -> str:
    return click.style(message, dim=True)


def style_factor_status(status: str | None) -> str:
    """Color a factor lifecycle status; unknown or missing statuses are dimmed."""
    if not status:
        return style_dim("-")
    color = _FACTOR_STATUS_COLORS.get(status)
    return click.style(status, fg=color) if color else style_dim(status)


def style_verified(verified: bool) -> str:
    return click.style("verified", fg="green") if verified else click.style("unverified", fg="yellow")
