"""Shared FastAPI dependencies injected into route handlers."""

from __future__ import annotations

from typing import Annotated

from fastapi import Depends, HTTPException, Request

from src.config import Settings, get_settings
from src.workouts.errors import (
    AuthorizationDenied,
    InvalidTransition,
    LinkUnavailable,
    PlatformSessionError,
    PlatformUnavailable,
    RequestTimeout,
    SessionConflict,
    WorkoutError,
)
from src.workouts.runtime import COMPANION, HANDHELD, DeviceRuntime


async def get_runtime(request: Request) -> DeviceRuntime:
    """Return the device runtime built by the app lifespan."""
    runtime: DeviceRuntime | None = getattr(request.app.state, "runtime", None)
    if runtime is None:
        raise HTTPException(status_code=503, detail="Device runtime not started")
    return runtime


def _runtime_for(runtime: DeviceRuntime, role: str) -> DeviceRuntime:
    if runtime.role == role:
        return runtime
    if runtime.peer is not None and runtime.peer.role == role:
        return runtime.peer
    raise HTTPException(status_code=404, detail=f"No {role} device on this host")


async def get_handheld(runtime: Annotated[DeviceRuntime, Depends(get_runtime)]) -> DeviceRuntime:
    return _runtime_for(runtime, HANDHELD)


async def get_companion(runtime: Annotated[DeviceRuntime, Depends(get_runtime)]) -> DeviceRuntime:
    return _runtime_for(runtime, COMPANION)


def http_error(exc: WorkoutError) -> HTTPException:
    """Map a workout error to the HTTP status the API reports for it."""
    if isinstance(exc, (SessionConflict, InvalidTransition)):
        status = 409
    elif isinstance(exc, (PlatformSessionError, PlatformUnavailable, AuthorizationDenied)):
        status = 502
    elif isinstance(exc, LinkUnavailable):
        status = 503
    elif isinstance(exc, RequestTimeout):
        status = 504
    else:
        status = 400
    return HTTPException(status_code=status, detail=str(exc))


# Annotated shortcuts for route signatures
Runtime = Annotated[DeviceRuntime, Depends(get_runtime)]
Handheld = Annotated[DeviceRuntime, Depends(get_handheld)]
Companion = Annotated[DeviceRuntime, Depends(get_companion)]
AppSettings = Annotated[Settings, Depends(get_settings)]
