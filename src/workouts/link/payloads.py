"""Pydantic schemas for link message parameters.

Field names are snake_case in Python and camelCase on the wire.  Wire maps
hold primitives only, so list- and object-valued fields (schedule items, workout
summaries, context sections) are carried as compact JSON strings and decoded
on validation.
"""

from __future__ import annotations

import json
from datetime import datetime
from typing import Any, Literal, Mapping
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic.alias_generators import to_camel

from src.workouts.base import ActivityKind, LocationType, SessionSnapshot
from src.workouts.errors import SerializationError

CommandName = Literal["start", "end", "pause", "resume"]


def _decode_json(value: Any) -> Any:
    if isinstance(value, (str, bytes)):
        try:
            return json.loads(value)
        except json.JSONDecodeError as exc:
            raise ValueError(f"invalid JSON value: {exc}") from exc
    return value


class WirePayload(BaseModel):
    """Base for every schema that travels inside a link message."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )

    def to_params(self) -> dict[str, Any]:
        """Dump to a flat primitive map (camelCase keys, None omitted)."""
        data = self.model_dump(by_alias=True, mode="json", exclude_none=True)
        return {
            key: json.dumps(value, separators=(",", ":")) if isinstance(value, (list, dict)) else value
            for key, value in data.items()
        }

    @classmethod
    def from_params(cls, params: Mapping[str, Any]):
        """Validate a wire map.

        Raises:
            SerializationError: If the map does not match the schema.
        """
        try:
            return cls.model_validate(dict(params))
        except ValidationError as exc:
            raise SerializationError(f"Invalid {cls.__name__}: {exc.error_count()} error(s)") from exc


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------


class MetricsPayload(WirePayload):
    activity: ActivityKind
    heart_rate: float = 0.0
    distance_meters: float = 0.0
    active_energy_kcal: float = 0.0
    cadence_spm: float = 0.0
    elapsed_seconds: int = 0
    is_paused: bool = False

    @classmethod
    def from_snapshot(
        cls, activity: ActivityKind, snapshot: SessionSnapshot, is_paused: bool = False
    ) -> "MetricsPayload":
        return cls(
            activity=activity,
            heart_rate=snapshot.heart_rate,
            distance_meters=snapshot.distance_meters,
            active_energy_kcal=snapshot.active_energy,
            cadence_spm=snapshot.cadence_spm,
            elapsed_seconds=snapshot.elapsed_seconds,
            is_paused=is_paused,
        )

    def to_snapshot(self) -> SessionSnapshot:
        return SessionSnapshot(
            heart_rate=self.heart_rate,
            active_energy=self.active_energy_kcal,
            distance_meters=self.distance_meters,
            cadence_spm=self.cadence_spm,
            elapsed_seconds=self.elapsed_seconds,
        )


class FailedPayload(WirePayload):
    reason: str | None = None


class EndedPayload(WirePayload):
    uuid: UUID | None = None


class CommandPayload(WirePayload):
    command: CommandName
    activity: ActivityKind | None = None
    location: LocationType | None = None


# ---------------------------------------------------------------------------
# Requests / replies
# ---------------------------------------------------------------------------


class StartActivityParams(WirePayload):
    activity: ActivityKind = ActivityKind.WORKOUT
    location: LocationType = LocationType.INDOOR
    workout_id: str | None = None


class StartActivityAck(WirePayload):
    status: str = "started"


class ScheduleItem(WirePayload):
    id: str
    type: str
    name: str
    icon: str = ""
    color_hex: str = ""
    workout_id: str | None = None
    run_type: str | None = None


class ScheduleData(WirePayload):
    today_items: list[ScheduleItem] = Field(default_factory=list)
    day_name: str = "Today"

    @field_validator("today_items", mode="before")
    @classmethod
    def decode_today_items(cls, value: Any) -> Any:
        return _decode_json(value)


class WorkoutSummary(WirePayload):
    id: str
    name: str
    icon: str = ""
    exercise_count: int = 0


class ActivityData(WirePayload):
    workouts: list[WorkoutSummary] = Field(default_factory=list)
    has_active_session: bool = False
    active_session_type: ActivityKind | None = None
    active_session_name: str | None = None
    active_session_workout_id: str | None = None
    active_session_location: LocationType | None = None

    @field_validator("workouts", mode="before")
    @classmethod
    def decode_workouts(cls, value: Any) -> Any:
        return _decode_json(value)


# ---------------------------------------------------------------------------
# Application context
# ---------------------------------------------------------------------------


class SessionSummary(WirePayload):
    """One completed session in the weekly summary."""

    id: str
    type: ActivityKind
    name: str
    date: datetime
    duration: int = 0
    calories: int = 0


class ContextPayload(WirePayload):
    """Last-known handheld state, pushed whenever the link becomes usable."""

    schedule: ScheduleData | None = None
    activities: ActivityData | None = None
    weekly_sessions: list[SessionSummary] = Field(default_factory=list)

    @field_validator("schedule", "activities", "weekly_sessions", mode="before")
    @classmethod
    def decode_nested(cls, value: Any) -> Any:
        return _decode_json(value)
