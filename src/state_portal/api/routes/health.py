"""Health endpoint.

Routes mounted at: /health
"""

from __future__ import annotations

__all__ = ["router"]

from fastapi import APIRouter

from state_portal.api.deps import ConfigDep, SessionManagerDep

router = APIRouter()


@router.get("")
async def health(config: ConfigDep, manager: SessionManagerDep) -> dict[str, object]:
    """Liveness plus which upstreams are configured."""
    return {
        "status": "ok",
        "identity_provider_configured": config.identity_provider.is_configured,
        "vendor_configured": config.vendor.is_configured,
        "active_sessions": manager.active_session_count,
    }
