"""Platform biometric store interface.

The platform store is an opaque authorize / query / observe service.  Every
method is callback based and callbacks may fire on any worker thread; the
``BiometricQueryAdapter`` is responsible for marshalling them back onto the
device's serialized context.

Implementations must honour one completion contract: every query calls its
completion (or, for route queries, delivers a ``done=True`` batch) exactly
once, whether it succeeded, found nothing, or failed.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Callable, Iterable, Union
from uuid import UUID

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

Observation = Union[BiometricSample, RoutePoint]

StatisticsCompletion = Callable[[Statistics | None, Exception | None], None]
SeriesCompletion = Callable[[list[BiometricSample] | None, Exception | None], None]
RouteHandler = Callable[[list[RoutePoint], bool, Exception | None], None]
ObservationHandler = Callable[[Observation], None]
AuthorizationCompletion = Callable[[bool, Exception | None], None]
WorkoutCompletion = Callable[[ActivityWindow | None, Exception | None], None]
EndCompletion = Callable[[UUID | None, Exception | None], None]


class PlatformWorkoutSession(ABC):
    """A running platform workout session (at most one per device)."""

    activity: ActivityKind
    location: LocationType

    @abstractmethod
    def start(self, at: datetime) -> None:
        """Begin the session and sample collection at ``at``."""

    @abstractmethod
    def pause(self, at: datetime) -> None:
        """Pause collection."""

    @abstractmethod
    def resume(self, at: datetime) -> None:
        """Resume collection."""

    @abstractmethod
    def end(self, at: datetime, completion: EndCompletion) -> None:
        """Stop collection and save the workout.

        The completion receives the saved workout identifier, or ``None`` when
        the platform could not save one.
        """

    @abstractmethod
    def set_failure_handler(self, handler: Callable[[Exception], None]) -> None:
        """Register the callback invoked if the session fails while running."""


class BiometricStore(ABC):
    """Abstract platform biometric store."""

    @abstractmethod
    def is_available(self) -> bool:
        """Return True if biometric data is available on this device."""

    @abstractmethod
    def authorization_status(self) -> AuthorizationStatus:
        """Return the current read/share authorization status."""

    @abstractmethod
    def request_authorization(
        self, kinds: Iterable[BiometricKind], completion: AuthorizationCompletion
    ) -> None:
        """Ask the user for access to ``kinds``."""

    @abstractmethod
    def execute_statistics(
        self,
        kind: BiometricKind,
        start: datetime,
        end: datetime,
        completion: StatisticsCompletion,
    ) -> None:
        """Average / maximum / sum of ``kind`` over ``(start, end]``; timestamps are interval ends."""

    @abstractmethod
    def execute_series(
        self,
        kind: BiometricKind,
        start: datetime,
        end: datetime,
        completion: SeriesCompletion,
    ) -> None:
        """Time-ordered samples of ``kind`` over ``(start, end]``; timestamps are interval ends."""

    @abstractmethod
    def execute_route(self, start: datetime, end: datetime, handler: RouteHandler) -> None:
        """Ordered route points over ``[start, end]``, delivered in batches.

        The final call has ``done=True``.
        """

    @abstractmethod
    def lookup_workout(self, activity_id: UUID, completion: WorkoutCompletion) -> None:
        """Resolve a saved workout's bounds by identifier."""

    @abstractmethod
    def observe(self, kind: BiometricKind, handler: ObservationHandler) -> object:
        """Subscribe to new observations of ``kind``.  Returns an opaque token."""

    @abstractmethod
    def stop_observing(self, token: object) -> None:
        """Cancel a subscription created by ``observe``."""

    @abstractmethod
    def create_session(
        self, activity: ActivityKind, location: LocationType
    ) -> PlatformWorkoutSession:
        """Create a workout session.

        Raises:
            PlatformSessionError: If the platform refuses to create one.
        """
