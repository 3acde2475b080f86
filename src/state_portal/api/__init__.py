"""HTTP API for the portal (FastAPI)."""

from __future__ import annotations

__all__ = ["create_api_app"]

from state_portal.api.server import create_api_app
