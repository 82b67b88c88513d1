"""Companion endpoints: projected app state and remote activity start."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, HTTPException

from src.dependencies import Companion, http_error
from src.models.sessions import CompanionStartResponse, StartSessionRequest
from src.workouts.devices import CompanionService
from src.workouts.errors import WorkoutError
from src.workouts.projector import describe
from src.workouts.runtime import DeviceRuntime

router = APIRouter(prefix="/companion", tags=["companion"])


def _service(runtime: DeviceRuntime) -> CompanionService:
    if not isinstance(runtime.service, CompanionService):
        raise HTTPException(status_code=404, detail="No companion device on this host")
    return runtime.service


@router.get("/state")
async def companion_state(runtime: Companion) -> dict:
    return describe(_service(runtime).projector.state)


@router.post("/refresh")
async def refresh_state(runtime: Companion) -> dict:
    state = await _service(runtime).refresh()
    return describe(state)


@router.post("/start", response_model=CompanionStartResponse)
async def start_from_companion(runtime: Companion, body: StartSessionRequest) -> Any:
    """Ask the handheld to start an activity (the companion's chooser action)."""
    try:
        ack = await _service(runtime).start_activity(body.activity, body.location, body.workout_id)
    except WorkoutError as exc:
        raise http_error(exc) from exc
    return CompanionStartResponse(status=str(ack.get("status", ack.get("error", "unknown"))))
