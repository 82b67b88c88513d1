"""In-memory biometric store used for simulation and tests.

Behaves like a platform store: samples can be recorded, queried and observed,
workout sessions can be started, paused and ended, and authorization or
availability can be revoked.  Callbacks run inline by default, or on a
supplied ``concurrent.futures.Executor`` to mimic platform worker threads.
"""

from __future__ import annotations

import itertools
import logging
import threading
from concurrent.futures import Executor
from datetime import datetime
from typing import Any, Callable, Iterable
from uuid import UUID, uuid4

from src.workouts.base import (
    ActivityKind,
    ActivityWindow,
    AuthorizationStatus,
    BiometricKind,
    BiometricSample,
    LocationType,
    RoutePoint,
    Statistics,
)
from src.workouts.biometrics.store import (
    AuthorizationCompletion,
    BiometricStore,
    EndCompletion,
    ObservationHandler,
    PlatformWorkoutSession,
    RouteHandler,
    SeriesCompletion,
    StatisticsCompletion,
    WorkoutCompletion,
)
from src.workouts.errors import AuthorizationDenied, PlatformSessionError, PlatformUnavailable

logger = logging.getLogger("pacelink.workouts.biometrics.memory")


class InMemoryWorkoutSession(PlatformWorkoutSession):
    """Workout session that saves its window into the owning store on end."""

    def __init__(
        self, store: "InMemoryBiometricStore", activity: ActivityKind, location: LocationType
    ) -> None:
        self._store = store
        self.activity = activity
        self.location = location
        self.started_at: datetime | None = None
        self.ended_at: datetime | None = None
        self._paused_at: datetime | None = None
        self._paused_seconds = 0.0
        self._on_failure: Callable[[Exception], None] | None = None
        self.save_on_end = True

    @property
    def is_paused(self) -> bool:
        return self._paused_at is not None

    def start(self, at: datetime) -> None:
        self.started_at = at

    def pause(self, at: datetime) -> None:
        if self._paused_at is None:
            self._paused_at = at

    def resume(self, at: datetime) -> None:
        if self._paused_at is not None:
            self._paused_seconds += (at - self._paused_at).total_seconds()
            self._paused_at = None

    def end(self, at: datetime, completion: EndCompletion) -> None:
        if self._paused_at is not None:
            self.resume(at)
        self.ended_at = at
        workout_id: UUID | None = None
        if self.save_on_end and self.started_at is not None:
            workout_id = uuid4()
            active = max((at - self.started_at).total_seconds() - self._paused_seconds, 0.0)
            self._store.save_workout(
                ActivityWindow(
                    activity_id=workout_id,
                    activity=self.activity,
                    location=self.location,
                    start=self.started_at,
                    end=at,
                    duration_seconds=active,
                )
            )
        self._store._end_session(self)
        self._store._deliver(completion, workout_id, None)

    def set_failure_handler(self, handler: Callable[[Exception], None]) -> None:
        self._on_failure = handler

    def fail(self, error: Exception | None = None) -> None:
        """Simulate a platform failure while the session is running."""
        exc = error or PlatformSessionError("Workout session failed")
        self._store._end_session(self)
        if self._on_failure is not None:
            self._store._deliver(self._on_failure, exc)


class InMemoryBiometricStore(BiometricStore):
    """Thread-safe in-memory store.

    Args:
        authorized:       Initial authorization state.
        available:        Whether biometric data is available at all.
        route_batch_size: Route query batch size before the done signal.
        executor:         Optional executor used to run callbacks off-thread.
    """

    def __init__(
        self,
        authorized: bool = True,
        available: bool = True,
        route_batch_size: int = 50,
        executor: Executor | None = None,
    ) -> None:
        self.available = available
        self.status = AuthorizationStatus.AUTHORIZED if authorized else AuthorizationStatus.DENIED
        self.route_batch_size = route_batch_size
        self.fail_on_create = False
        self._executor = executor
        self._lock = threading.Lock()
        self._samples: dict[BiometricKind, list[BiometricSample]] = {}
        self._route: list[RoutePoint] = []
        self._workouts: dict[UUID, ActivityWindow] = {}
        self._observers: dict[int, tuple[BiometricKind, ObservationHandler]] = {}
        self._tokens = itertools.count(1)
        self.active_session: InMemoryWorkoutSession | None = None

    # ------------------------------------------------------------------
    # Recording (simulation side)
    # ------------------------------------------------------------------

    def add_sample(self, sample: BiometricSample) -> None:
        """Store a sample and notify observers of its kind."""
        with self._lock:
            self._samples.setdefault(sample.kind, []).append(sample)
            handlers = [h for k, h in self._observers.values() if k is sample.kind]
        for handler in handlers:
            self._deliver(handler, sample)

    def add_samples(self, samples: Iterable[BiometricSample]) -> None:
        for sample in samples:
            self.add_sample(sample)

    def add_route_point(self, point: RoutePoint) -> None:
        """Store a route point and notify location observers."""
        with self._lock:
            self._route.append(point)
            handlers = [h for k, h in self._observers.values() if k is BiometricKind.LOCATION]
        for handler in handlers:
            self._deliver(handler, point)

    def save_workout(self, window: ActivityWindow) -> None:
        with self._lock:
            self._workouts[window.activity_id] = window

    # ------------------------------------------------------------------
    # BiometricStore interface
    # ------------------------------------------------------------------

    def is_available(self) -> bool:
        return self.available

    def authorization_status(self) -> AuthorizationStatus:
        return self.status

    def request_authorization(
        self, kinds: Iterable[BiometricKind], completion: AuthorizationCompletion
    ) -> None:
        if not self.available:
            self._deliver(completion, False, PlatformUnavailable("Biometric data unavailable"))
            return
        if self.status is AuthorizationStatus.NOT_DETERMINED:
            self.status = AuthorizationStatus.AUTHORIZED
        self._deliver(completion, self.status is AuthorizationStatus.AUTHORIZED, None)

    def execute_statistics(
        self,
        kind: BiometricKind,
        start: datetime,
        end: datetime,
        completion: StatisticsCompletion,
    ) -> None:
        error = self._access_error()
        if error is not None:
            self._deliver(completion, None, error)
            return
        values = [s.value for s in self._in_range(kind, start, end)]
        if not values:
            self._deliver(completion, Statistics(), None)
            return
        stats = Statistics(
            average=sum(values) / len(values),
            maximum=max(values),
            total=sum(values),
        )
        self._deliver(completion, stats, None)

    def execute_series(
        self,
        kind: BiometricKind,
        start: datetime,
        end: datetime,
        completion: SeriesCompletion,
    ) -> None:
        error = self._access_error()
        if error is not None:
            self._deliver(completion, None, error)
            return
        self._deliver(completion, self._in_range(kind, start, end), None)

    def execute_route(self, start: datetime, end: datetime, handler: RouteHandler) -> None:
        error = self._access_error()
        if error is not None:
            self._deliver(handler, [], True, error)
            return
        with self._lock:
            points = sorted(
                (p for p in self._route if start <= p.timestamp <= end),
                key=lambda p: p.timestamp,
            )
        size = self.route_batch_size
        batches = [points[i:i + size] for i in range(0, len(points), size)]

        # Batches and the done signal come from one worker, in order
        def _stream() -> None:
            for batch in batches:
                handler(batch, False, None)
            handler([], True, None)

        self._deliver(_stream)

    def lookup_workout(self, activity_id: UUID, completion: WorkoutCompletion) -> None:
        error = self._access_error()
        if error is not None:
            self._deliver(completion, None, error)
            return
        with self._lock:
            window = self._workouts.get(activity_id)
        self._deliver(completion, window, None)

    def observe(self, kind: BiometricKind, handler: ObservationHandler) -> object:
        token = next(self._tokens)
        with self._lock:
            self._observers[token] = (kind, handler)
        return token

    def stop_observing(self, token: object) -> None:
        with self._lock:
            self._observers.pop(token, None)  # type: ignore[arg-type]

    def create_session(
        self, activity: ActivityKind, location: LocationType
    ) -> InMemoryWorkoutSession:
        if not self.available:
            raise PlatformSessionError("Biometric data unavailable on this device")
        if self.fail_on_create:
            raise PlatformSessionError("Platform refused to create a workout session")
        if self.active_session is not None:
            raise PlatformSessionError("A workout session is already running")
        session = InMemoryWorkoutSession(self, activity, location)
        self.active_session = session
        logger.debug("Created %s/%s workout session", activity.value, location.value)
        return session

    @property
    def observer_count(self) -> int:
        return len(self._observers)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _end_session(self, session: InMemoryWorkoutSession) -> None:
        if self.active_session is session:
            self.active_session = None

    def _access_error(self) -> Exception | None:
        if not self.available:
            return PlatformUnavailable("Biometric data unavailable")
        if self.status is not AuthorizationStatus.AUTHORIZED:
            return AuthorizationDenied("Biometric store access not granted")
        return None

    def _in_range(self, kind: BiometricKind, start: datetime, end: datetime) -> list[BiometricSample]:
        # Timestamps are interval ends: a sample ending at the window start belongs to the previous interval
        with self._lock:
            samples = [s for s in self._samples.get(kind, []) if start < s.timestamp <= end]
        return sorted(samples, key=lambda s: s.timestamp)

    def _deliver(self, fn: Callable[..., Any], *args: Any) -> None:
        if self._executor is None:
            fn(*args)
        else:
            self._executor.submit(fn, *args)
