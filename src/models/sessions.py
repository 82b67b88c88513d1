"""Pydantic models for session control, records and companion state."""

from __future__ import annotations

import uuid
from datetime import datetime

from pydantic import Field

from src.models.base import PacelinkBase
from src.workouts.base import ActivityKind, LocationType
from src.workouts.session.controller import SessionState


# ---------- Requests ----------

class StartSessionRequest(PacelinkBase):
    activity: ActivityKind = ActivityKind.RUN
    location: LocationType = LocationType.OUTDOOR
    workout_id: str | None = None


# ---------- Live status ----------

class SnapshotRead(PacelinkBase):
    heart_rate: float = 0.0
    active_energy: float = 0.0
    distance_meters: float = 0.0
    cadence_spm: float = 0.0
    elapsed_seconds: int = 0


class SessionStatus(PacelinkBase):
    state: SessionState
    mode: str | None = None
    activity: ActivityKind | None = None
    location: LocationType | None = None
    workout_id: str | None = None
    started_at: datetime | None = None
    elapsed_seconds: int = 0
    snapshot: SnapshotRead = Field(default_factory=SnapshotRead)
    record_id: uuid.UUID | None = None


# ---------- Completed records ----------

class SplitRead(PacelinkBase):
    kilometer: int
    duration_seconds: float
    pace_seconds_per_km: float
    elevation_change: float = 0.0


class HeartRatePointRead(PacelinkBase):
    offset_seconds: float
    bpm: int


class RoutePointRead(PacelinkBase):
    latitude: float
    longitude: float
    timestamp: datetime
    vertical_accuracy: float
    altitude: float | None = None


class SessionRecordRead(PacelinkBase):
    id: uuid.UUID
    name: str
    activity: ActivityKind
    location: LocationType
    start: datetime
    duration: float
    energy: int = 0
    heart_rate_avg: int = 0
    heart_rate_max: int = 0
    heart_rate_series: list[HeartRatePointRead] = Field(default_factory=list)
    distance: float = 0.0
    route: list[RoutePointRead] = Field(default_factory=list)
    splits: list[SplitRead] = Field(default_factory=list)
    elevation_gain: float = 0.0
    elevation_loss: float = 0.0
    cadence_avg: int = 0
    unavailable: list[str] = Field(default_factory=list)


class EndSessionResponse(PacelinkBase):
    state: SessionState
    record: SessionRecordRead | None = None


# ---------- Link / companion ----------

class LinkStatus(PacelinkBase):
    activation: str
    reachable: bool
    pending: int


class CompanionStartResponse(PacelinkBase):
    status: str
