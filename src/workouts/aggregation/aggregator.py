"""Session aggregator: live snapshots and post-session finalize.

Live mode
---------
``begin_live()`` opens one observation subscription per configured biometric
kind.  Each observation updates only its own ``SessionSnapshot`` field and
immediately emits a copy; fields are allowed to be stale relative to each
other.

Finalize
--------
``finalize()`` fans out a fixed set of six queries over the activity window
and joins them through a ``FanInJoin``.  Every sub-query reports exactly once:
a failed query reports its empty default, so the join never blocks.  When the
store cannot be queried at all (authorization denied, platform unavailable)
the record is built from identity and duration alone, with every enrichment
field listed in ``unavailable``.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable
from uuid import UUID

from src.workouts.aggregation.join import FanInJoin
from src.workouts.aggregation.splits import accumulate_elevation, compute_splits
from src.workouts.base import (
    ActivityKind,
    ActivityWindow,
    BiometricKind,
    BiometricSample,
    CompletedSessionRecord,
    HeartRatePoint,
    LocationType,
    RoutePoint,
    SessionSnapshot,
    Statistics,
)
from src.workouts.biometrics.adapter import BiometricQueryAdapter, Subscription
from src.workouts.biometrics.store import Observation
from src.workouts.config_loader import SessionConfig
from src.workouts.errors import AuthorizationDenied, PlatformUnavailable

logger = logging.getLogger("pacelink.workouts.aggregation")

# Finalize sub-query keys
HEART_RATE_STATS = "heart_rate_stats"
HEART_RATE_SERIES = "heart_rate_series"
CADENCE = "cadence"
ROUTE = "route"
SPLITS = "splits"
ENERGY = "energy"

FINALIZE_QUERIES: tuple[str, ...] = (
    HEART_RATE_STATS,
    HEART_RATE_SERIES,
    CADENCE,
    ROUTE,
    SPLITS,
    ENERGY,
)

# Record fields filled by each sub-query
QUERY_FIELDS: dict[str, tuple[str, ...]] = {
    HEART_RATE_STATS: ("heart_rate_avg", "heart_rate_max"),
    HEART_RATE_SERIES: ("heart_rate_series",),
    CADENCE: ("cadence_avg",),
    ROUTE: ("route", "elevation_gain", "elevation_loss"),
    SPLITS: ("splits", "distance"),
    ENERGY: ("energy",),
}

ENRICHMENT_FIELDS: frozenset[str] = frozenset(f for fields in QUERY_FIELDS.values() for f in fields)

_DEGRADING_ERRORS = (AuthorizationDenied, PlatformUnavailable)


@dataclass
class _QueryOutcome:
    value: Any
    unavailable: bool = False


# ---------------------------------------------------------------------------
# Live aggregation
# ---------------------------------------------------------------------------


@dataclass
class LiveHandle:
    """Running live aggregation for one session.

    Attributes:
        activity:   Activity family being recorded.
        location:   Indoor or outdoor.
        route:      Location fixes buffered during the session.
    """

    activity: ActivityKind
    location: LocationType
    _on_snapshot: Callable[[SessionSnapshot], None]
    _elapsed: Callable[[], int]
    _min_cadence_minutes: float
    started_at: datetime
    route: list[RoutePoint] = field(default_factory=list)
    _snapshot: SessionSnapshot = field(default_factory=SessionSnapshot)
    _subscriptions: list[Subscription] = field(default_factory=list)
    _last_cadence_at: datetime | None = None
    active: bool = True

    @property
    def snapshot(self) -> SessionSnapshot:
        return self._snapshot.copy()

    @property
    def kinds(self) -> tuple[BiometricKind, ...]:
        return tuple(s.kind for s in self._subscriptions)

    def emit(self) -> None:
        """Publish the current snapshot with a fresh elapsed time."""
        if not self.active:
            return
        self._snapshot.elapsed_seconds = int(self._elapsed())
        self._on_snapshot(self._snapshot.copy())

    def stop(self) -> None:
        """Cancel every subscription; no further snapshots are emitted."""
        if not self.active:
            return
        self.active = False
        for subscription in self._subscriptions:
            subscription.cancel()
        logger.debug("Live aggregation stopped (%d route points)", len(self.route))

    def _apply(self, observation: Observation) -> None:
        if not self.active:
            return
        if isinstance(observation, RoutePoint):
            self.route.append(observation)
            return
        snap = self._snapshot
        kind = observation.kind
        if kind is BiometricKind.HEART_RATE:
            snap.heart_rate = observation.value
        elif kind is BiometricKind.ENERGY:
            snap.active_energy += observation.value
        elif kind is BiometricKind.DISTANCE:
            snap.distance_meters += observation.value
        elif kind is BiometricKind.CADENCE:
            snap.cadence_spm = self._cadence(observation)
        self.emit()

    def _cadence(self, sample: BiometricSample) -> float:
        since = self._last_cadence_at or self.started_at
        self._last_cadence_at = sample.timestamp
        minutes = max((sample.timestamp - since).total_seconds() / 60.0, self._min_cadence_minutes)
        return sample.value / minutes


# ---------------------------------------------------------------------------
# Aggregator
# ---------------------------------------------------------------------------


class SessionAggregator:
    """Builds live snapshots and completed-session records.

    Args:
        adapter: Biometric query adapter for this device.
        config:  Validated session config (live kinds, split distance).
    """

    def __init__(self, adapter: BiometricQueryAdapter, config: SessionConfig) -> None:
        self.adapter = adapter
        self.config = config

    # ------------------------------------------------------------------
    # Live
    # ------------------------------------------------------------------

    def begin_live(
        self,
        activity: ActivityKind,
        location: LocationType,
        on_snapshot: Callable[[SessionSnapshot], None],
        elapsed: Callable[[], int],
        started_at: datetime,
    ) -> LiveHandle:
        handle = LiveHandle(
            activity=activity,
            location=location,
            _on_snapshot=on_snapshot,
            _elapsed=elapsed,
            _min_cadence_minutes=self.config.finalize.min_cadence_minutes,
            started_at=started_at,
        )
        for kind in self.config.live.kinds_for(location):
            handle._subscriptions.append(self.adapter.observe(kind, handle._apply))
        logger.info(
            "Live aggregation started for %s/%s: %s",
            activity.value,
            location.value,
            ", ".join(k.value for k in handle.kinds),
        )
        return handle

    # ------------------------------------------------------------------
    # Finalize
    # ------------------------------------------------------------------

    async def finalize(
        self,
        activity_id: UUID,
        window: ActivityWindow | None = None,
        fallback: ActivityWindow | None = None,
    ) -> CompletedSessionRecord:
        """Build the completed record for ``activity_id``.

        Args:
            activity_id: Record identifier (the platform workout id when known).
            window:      Explicit time bounds.  Looked up by id when omitted.
            fallback:    Bounds to use if the lookup finds nothing.

        Raises:
            LookupError: No window was given and none could be resolved.
        """
        if window is None:
            window = await self._resolve_window(activity_id, fallback)

        try:
            self.adapter.ensure_access()
        except _DEGRADING_ERRORS as exc:
            logger.warning("Finalize for %s degraded to identity only: %s", activity_id, exc)
            return self._bare_record(activity_id, window, ENRICHMENT_FIELDS)

        join = FanInJoin(FINALIZE_QUERIES)
        queries: dict[str, Callable[[], Awaitable[Any]]] = {
            HEART_RATE_STATS: lambda: self.adapter.statistics(BiometricKind.HEART_RATE, window.start, window.end),
            HEART_RATE_SERIES: lambda: self.adapter.series(BiometricKind.HEART_RATE, window.start, window.end),
            CADENCE: lambda: self.adapter.series(BiometricKind.CADENCE, window.start, window.end),
            ROUTE: lambda: self.adapter.route(window.start, window.end),
            SPLITS: lambda: self.adapter.series(BiometricKind.DISTANCE, window.start, window.end),
            ENERGY: lambda: self.adapter.statistics(BiometricKind.ENERGY, window.start, window.end),
        }
        defaults: dict[str, Any] = {
            HEART_RATE_STATS: Statistics(),
            HEART_RATE_SERIES: [],
            CADENCE: [],
            ROUTE: [],
            SPLITS: [],
            ENERGY: Statistics(),
        }
        tasks = [
            asyncio.create_task(self._run_query(join, key, queries[key], defaults[key]))
            for key in FINALIZE_QUERIES
        ]
        results = await join.wait()
        await asyncio.gather(*tasks)
        return self._build_record(activity_id, window, results)

    async def _resolve_window(
        self, activity_id: UUID, fallback: ActivityWindow | None
    ) -> ActivityWindow:
        try:
            found = await self.adapter.lookup_workout(activity_id)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Workout lookup for %s failed: %s", activity_id, exc)
            found = None
        if found is not None:
            return found
        if fallback is not None:
            logger.info("Workout %s not found in store; using local window", activity_id)
            return fallback
        raise LookupError(f"No activity window for {activity_id}")

    @staticmethod
    async def _run_query(
        join: FanInJoin,
        key: str,
        query: Callable[[], Awaitable[Any]],
        default: Any,
    ) -> None:
        try:
            outcome = _QueryOutcome(await query())
        except _DEGRADING_ERRORS as exc:
            logger.warning("Finalize query %s unavailable: %s", key, exc)
            outcome = _QueryOutcome(default, unavailable=True)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Finalize query %s failed, reporting empty: %s", key, exc)
            outcome = _QueryOutcome(default)
        join.report(key, outcome)

    def _build_record(
        self, activity_id: UUID, window: ActivityWindow, results: dict[str, _QueryOutcome]
    ) -> CompletedSessionRecord:
        unavailable = frozenset(
            f for key, outcome in results.items() if outcome.unavailable for f in QUERY_FIELDS[key]
        )

        hr_stats: Statistics = results[HEART_RATE_STATS].value
        hr_series = tuple(
            HeartRatePoint(
                offset_seconds=(s.timestamp - window.start).total_seconds(),
                bpm=int(round(s.value)),
            )
            for s in results[HEART_RATE_SERIES].value
        )

        cadence_samples: list[BiometricSample] = results[CADENCE].value
        cadence_avg = 0
        if cadence_samples:
            steps = sum(s.value for s in cadence_samples)
            minutes = max(window.duration / 60.0, self.config.finalize.min_cadence_minutes)
            cadence_avg = int(round(steps / minutes))

        route: list[RoutePoint] = sorted(results[ROUTE].value, key=lambda p: p.timestamp)
        gain, loss = accumulate_elevation(route)

        distance_samples: list[BiometricSample] = results[SPLITS].value
        splits = compute_splits(
            distance_samples,
            window.start,
            route,
            self.config.finalize.split_distance_m,
        )
        distance = sum(s.value for s in distance_samples)

        energy: Statistics = results[ENERGY].value

        record = CompletedSessionRecord(
            id=activity_id,
            activity=window.activity,
            location=window.location,
            start=window.start,
            duration=window.duration,
            energy=int(round(energy.total or 0)),
            heart_rate_avg=int(round(hr_stats.average or 0)),
            heart_rate_max=int(round(hr_stats.maximum or 0)),
            heart_rate_series=hr_series,
            distance=distance,
            route=tuple(route),
            splits=tuple(splits),
            elevation_gain=gain,
            elevation_loss=loss,
            cadence_avg=cadence_avg,
            unavailable=unavailable,
        )
        logger.info(
            "Finalized %s: %.0fs, %.0fm, %d splits, %d route points",
            activity_id,
            record.duration,
            record.distance,
            len(record.splits),
            len(record.route),
        )
        return record

    @staticmethod
    def _bare_record(
        activity_id: UUID, window: ActivityWindow, unavailable: frozenset[str]
    ) -> CompletedSessionRecord:
        return CompletedSessionRecord(
            id=activity_id,
            activity=window.activity,
            location=window.location,
            start=window.start,
            duration=window.duration,
            unavailable=unavailable,
        )
