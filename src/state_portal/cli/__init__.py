"""Command-line interface for state-portal.

Provides commands for serving the API, managing configuration and
inspecting principals at the identity provider.
"""

from .main import cli, main

__all__ = ["cli", "main"]
