"""Canonical data models shared by the link channel, aggregator and controller.

Every biometric reading, live snapshot and completed session flowing through
Pacelink uses the types defined here.  Samples and records are frozen; the
live ``SessionSnapshot`` is the only mutable aggregate and is owned by the
aggregator.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from uuid import UUID


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class ActivityKind(str, Enum):
    """Activity families understood by both devices (wire value = enum value)."""

    RUN = "run"
    WORKOUT = "workout"

    @property
    def display_name(self) -> str:
        return "Running" if self is ActivityKind.RUN else "Workout"


class LocationType(str, Enum):
    INDOOR = "indoor"
    OUTDOOR = "outdoor"


class BiometricKind(str, Enum):
    """Biometric quantity kinds exposed by the platform store.

    ``CADENCE`` samples carry the number of steps counted during the sample
    interval; cadence in steps per minute is derived from them.
    """

    HEART_RATE = "heart_rate"
    DISTANCE = "distance"
    ENERGY = "energy"
    CADENCE = "cadence"
    LOCATION = "location"


class AuthorizationStatus(str, Enum):
    NOT_DETERMINED = "not_determined"
    DENIED = "denied"
    AUTHORIZED = "authorized"


# ---------------------------------------------------------------------------
# Platform readings
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class BiometricSample:
    """A single reading sourced from the biometric store.  Never mutated.

    Attributes:
        kind:      Quantity kind.
        timestamp: UTC end timestamp of the sample interval.
        value:     bpm for heart rate, metres for distance, kcal for energy,
                   step count for cadence.
    """

    kind: BiometricKind
    timestamp: datetime
    value: float


@dataclass(frozen=True)
class RoutePoint:
    """One GPS fix from a route query.

    A negative ``vertical_accuracy`` (or a missing altitude) marks the altitude
    reading as invalid; the horizontal position is still usable.
    """

    latitude: float
    longitude: float
    timestamp: datetime
    vertical_accuracy: float
    altitude: float | None = None

    @property
    def has_valid_altitude(self) -> bool:
        return self.altitude is not None and self.vertical_accuracy >= 0


@dataclass(frozen=True)
class Statistics:
    """Result of a statistics query.  ``None`` means no samples in range."""

    average: float | None = None
    maximum: float | None = None
    total: float | None = None


@dataclass(frozen=True)
class ActivityWindow:
    """Identity and time bounds of an activity, used to scope finalize queries.

    Attributes:
        activity_id:      Platform workout identifier.
        activity:         Activity family.
        location:         Indoor or outdoor.
        start:            UTC start (inclusive).
        end:              UTC end (exclusive).
        duration_seconds: Active duration excluding pauses; falls back to
                          ``end - start`` when unknown.
    """

    activity_id: UUID
    activity: ActivityKind
    location: LocationType
    start: datetime
    end: datetime
    duration_seconds: float | None = None

    @property
    def duration(self) -> float:
        if self.duration_seconds is not None:
            return self.duration_seconds
        return max((self.end - self.start).total_seconds(), 0.0)

    def contains(self, moment: datetime) -> bool:
        return self.start <= moment < self.end


# ---------------------------------------------------------------------------
# Live snapshot
# ---------------------------------------------------------------------------


@dataclass
class SessionSnapshot:
    """Latest-known value per metric during a live session.

    Each field reflects only the most recent observation of its own kind;
    fields are never merged across timestamps.  Consumers receive a
    ``copy()`` so they never observe an in-place update.
    """

    heart_rate: float = 0.0
    active_energy: float = 0.0
    distance_meters: float = 0.0
    cadence_spm: float = 0.0
    elapsed_seconds: int = 0

    def copy(self) -> "SessionSnapshot":
        return replace(self)


# ---------------------------------------------------------------------------
# Completed session record
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class HeartRatePoint:
    offset_seconds: float
    bpm: int


@dataclass(frozen=True)
class Split:
    """One kilometre split.

    Attributes:
        kilometer:            1-based kilometre index.
        duration_seconds:     Time since the previous boundary crossing.
        pace_seconds_per_km:  Same as duration for a full kilometre split.
        elevation_change:     Altitude delta across the split in metres.
    """

    kilometer: int
    duration_seconds: float
    pace_seconds_per_km: float
    elevation_change: float = 0.0


@dataclass(frozen=True)
class CompletedSessionRecord:
    """Immutable result of finalize.  Built exactly once per session.

    Optional enrichment fields are zero/empty when their query returned no data.
    ``unavailable`` names the fields whose query could not run at all
    (authorization denied or platform unavailable), which distinguishes
    "unknown" from "genuinely zero".
    """

    id: UUID
    activity: ActivityKind
    location: LocationType
    start: datetime
    duration: float
    energy: int = 0
    heart_rate_avg: int = 0
    heart_rate_max: int = 0
    heart_rate_series: tuple[HeartRatePoint, ...] = ()
    distance: float = 0.0
    route: tuple[RoutePoint, ...] = ()
    splits: tuple[Split, ...] = ()
    elevation_gain: float = 0.0
    elevation_loss: float = 0.0
    cadence_avg: int = 0
    unavailable: frozenset[str] = field(default_factory=frozenset)

    @property
    def name(self) -> str:
        return self.activity.display_name

    @property
    def is_enriched(self) -> bool:
        return not self.unavailable

    def to_dict(self) -> dict:
        """Serialize for storage.  Deterministic for identical inputs."""
        data = asdict(self)
        data["id"] = str(self.id)
        data["activity"] = self.activity.value
        data["location"] = self.location.value
        data["start"] = self.start.isoformat()
        data["heart_rate_series"] = list(data["heart_rate_series"])
        data["splits"] = list(data["splits"])
        data["route"] = [
            {**asdict(p), "timestamp": p.timestamp.isoformat()} for p in self.route
        ]
        data["unavailable"] = sorted(self.unavailable)
        return data
