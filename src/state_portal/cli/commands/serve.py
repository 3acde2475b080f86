"""Serve command: run the HTTP API with uvicorn."""

from __future__ import annotations

__all__ = ["serve"]

import sys
from pathlib import Path

import click
import uvicorn

from state_portal.api.server import create_api_app
from state_portal.config import PortalConfig
from state_portal.telemetry import configure_logging, get_system_logger

from ..styling import style_error


@click.command()
@click.option("--host", help="Bind address (default from config)")
@click.option("--port", type=int, help="Port (default from config)")
@click.option("--config", "config_path", type=click.Path(path_type=Path), help="Config file path")
def serve(host: str | None, port: int | None, config_path: Path | None) -> None:
    """Start the HTTP API."""
    try:
        loaded = PortalConfig.load(config_path)
    except (FileNotFoundError, ValueError) as e:
        click.echo(style_error(str(e)), err=True)
        sys.exit(1)

    configure_logging(loaded.logging)
    bind_host = host or loaded.api.host
    bind_port = port or loaded.api.port
    get_system_logger().info(
        {
            "event": "api_starting",
            "message": f"Serving on {bind_host}:{bind_port}",
        }
    )
    uvicorn.run(
        create_api_app(loaded),
        host=bind_host,
        port=bind_port,
        log_level=loaded.logging.log_level.lower(),
    )
