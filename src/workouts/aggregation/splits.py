"""Per-kilometre splits and elevation accumulation.

Pure functions over time-ordered samples; no I/O.  The aggregator feeds them
the results of its distance-series and route queries.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Sequence

from src.workouts.base import BiometricSample, RoutePoint, Split

DEFAULT_SPLIT_DISTANCE_M = 1000.0


@dataclass(frozen=True)
class SplitCrossing:
    """Moment cumulative distance passed a split boundary."""

    kilometer: int
    at: datetime
    duration_seconds: float


def find_crossings(
    samples: Iterable[BiometricSample],
    start: datetime,
    split_distance: float = DEFAULT_SPLIT_DISTANCE_M,
) -> list[SplitCrossing]:
    """Walk cumulative distance and record every boundary crossing.

    Each crossing's duration runs from the previous crossing's sample
    timestamp (``start`` for the first) to the sample that crossed.  A single
    sample that crosses several boundaries yields one full-duration crossing
    followed by zero-duration ones.
    """
    ordered = sorted(samples, key=lambda s: s.timestamp)
    crossings: list[SplitCrossing] = []
    cumulative = 0.0
    previous_at = start
    next_boundary = 1
    for sample in ordered:
        cumulative += sample.value
        while cumulative >= next_boundary * split_distance:
            duration = max((sample.timestamp - previous_at).total_seconds(), 0.0)
            crossings.append(SplitCrossing(next_boundary, sample.timestamp, duration))
            previous_at = sample.timestamp
            next_boundary += 1
    return crossings


def altitude_at(route: Sequence[RoutePoint], moment: datetime) -> float | None:
    """Altitude of the last valid route point at or before ``moment``.

    Falls back to the first valid point after ``moment`` when none precede it.
    """
    before: float | None = None
    for point in route:
        if not point.has_valid_altitude:
            continue
        if point.timestamp <= moment:
            before = point.altitude
        elif before is None:
            return point.altitude
        else:
            break
    return before


def compute_splits(
    samples: Iterable[BiometricSample],
    start: datetime,
    route: Sequence[RoutePoint] = (),
    split_distance: float = DEFAULT_SPLIT_DISTANCE_M,
) -> list[Split]:
    """Build splits from distance samples, with elevation change from ``route``.

    Returns an empty list when no boundary is crossed (including no samples).
    """
    crossings = find_crossings(samples, start, split_distance)
    if not crossings:
        return []

    ordered_route = sorted(route, key=lambda p: p.timestamp)
    splits: list[Split] = []
    previous_altitude = altitude_at(ordered_route, start)
    for crossing in crossings:
        altitude = altitude_at(ordered_route, crossing.at)
        change = 0.0
        if altitude is not None and previous_altitude is not None:
            change = altitude - previous_altitude
        splits.append(
            Split(
                kilometer=crossing.kilometer,
                duration_seconds=crossing.duration_seconds,
                pace_seconds_per_km=crossing.duration_seconds * 1000.0 / split_distance,
                elevation_change=change,
            )
        )
        if altitude is not None:
            previous_altitude = altitude
    return splits


def accumulate_elevation(route: Iterable[RoutePoint]) -> tuple[float, float]:
    """Return ``(gain, loss)`` in metres from consecutive valid altitude readings.

    Invalid readings are skipped and do not reset the reference altitude.
    """
    gain = 0.0
    loss = 0.0
    last: float | None = None
    for point in route:
        if not point.has_valid_altitude:
            continue
        altitude = float(point.altitude)  # type: ignore[arg-type]
        if last is not None:
            delta = altitude - last
            if delta > 0:
                gain += delta
            else:
                loss -= delta
        last = altitude
    return gain, loss
