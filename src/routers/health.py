"""Health check endpoint."""

from __future__ import annotations

from datetime import datetime, timezone

from fastapi import APIRouter

from src.dependencies import AppSettings, Runtime

router = APIRouter(tags=["system"])


@router.get("/health")
async def health_check(settings: AppSettings, runtime: Runtime) -> dict:
    """Liveness probe. Returns 200 if the API process is up.

    Reports ``degraded`` while the link to the peer device is down.
    """
    state = runtime.channel.state
    link_ok = runtime.channel.is_ready
    return {
        "status": "healthy" if link_ok else "degraded",
        "version": settings.app_version,
        "environment": settings.environment,
        "role": runtime.role,
        "link": {
            "activation": state.activation.value,
            "reachable": state.reachable,
            "pending": len(runtime.channel.pending),
        },
        "session": runtime.controller.state.value,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
