"""Session control endpoints for the local device."""

from __future__ import annotations

import uuid
from typing import Any

from fastapi import APIRouter, HTTPException

from src.dependencies import Runtime, http_error
from src.models.sessions import (
    EndSessionResponse,
    SessionRecordRead,
    SessionStatus,
    SnapshotRead,
    StartSessionRequest,
)
from src.workouts.base import CompletedSessionRecord
from src.workouts.errors import WorkoutError
from src.workouts.runtime import DeviceRuntime

router = APIRouter(prefix="/sessions", tags=["sessions"])


def _status(runtime: DeviceRuntime) -> SessionStatus:
    controller = runtime.controller
    snapshot = controller.last_snapshot
    return SessionStatus(
        state=controller.state,
        mode=controller.mode.value if controller.mode else None,
        activity=controller.activity,
        location=controller.location,
        workout_id=controller.workout_id,
        started_at=controller.started_at,
        elapsed_seconds=controller.elapsed_seconds(),
        snapshot=SnapshotRead.model_validate(snapshot),
        record_id=controller.record.id if controller.record else None,
    )


def _record(record: CompletedSessionRecord) -> SessionRecordRead:
    return SessionRecordRead.model_validate({**record.to_dict(), "name": record.name})


@router.get("/current", response_model=SessionStatus)
async def current_session(runtime: Runtime) -> Any:
    return _status(runtime)


@router.post("/start", response_model=SessionStatus, status_code=201)
async def start_session(runtime: Runtime, body: StartSessionRequest) -> Any:
    try:
        runtime.controller.start(body.activity, body.location, workout_id=body.workout_id)
    except WorkoutError as exc:
        raise http_error(exc) from exc
    return _status(runtime)


@router.post("/pause", response_model=SessionStatus)
async def pause_session(runtime: Runtime) -> Any:
    try:
        runtime.controller.pause()
    except WorkoutError as exc:
        raise http_error(exc) from exc
    return _status(runtime)


@router.post("/resume", response_model=SessionStatus)
async def resume_session(runtime: Runtime) -> Any:
    try:
        runtime.controller.resume()
    except WorkoutError as exc:
        raise http_error(exc) from exc
    return _status(runtime)


@router.post("/end", response_model=EndSessionResponse)
async def end_session(runtime: Runtime) -> Any:
    try:
        record = await runtime.controller.end()
    except WorkoutError as exc:
        raise http_error(exc) from exc
    return EndSessionResponse(
        state=runtime.controller.state,
        record=_record(record) if record else None,
    )


@router.get("/records", response_model=list[SessionRecordRead])
async def list_records(runtime: Runtime) -> Any:
    return [_record(r) for r in runtime.sink.all()]


@router.get("/records/{record_id}", response_model=SessionRecordRead)
async def get_record(record_id: uuid.UUID, runtime: Runtime) -> Any:
    record = runtime.sink.get(record_id)
    if record is None:
        raise HTTPException(status_code=404, detail="Record not found")
    return _record(record)
