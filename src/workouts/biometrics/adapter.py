"""Biometric query adapter.

Wraps a callback-based ``BiometricStore`` behind awaitable queries and
serialized observation subscriptions.  Every platform callback is marshalled
onto the device's ``SerialContext`` before it resolves a future or reaches a
subscriber, so aggregator and controller state is only ever touched from the
event loop.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Any, Callable, Iterable
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
from src.workouts.biometrics.store import BiometricStore, Observation, PlatformWorkoutSession
from src.workouts.dispatch import SerialContext
from src.workouts.errors import AuthorizationDenied, PlatformUnavailable

logger = logging.getLogger("pacelink.workouts.biometrics")


class Subscription:
    """Handle for one live observation subscription."""

    def __init__(self, adapter: "BiometricQueryAdapter", kind: BiometricKind, token: object) -> None:
        self.kind = kind
        self._adapter = adapter
        self._token = token
        self.active = True

    def cancel(self) -> None:
        if not self.active:
            return
        self.active = False
        self._adapter.store.stop_observing(self._token)


class BiometricQueryAdapter:
    """Awaitable, loop-safe facade over the platform biometric store.

    Args:
        store:   Platform store handle, built once by the composition root.
        context: Serialized execution context of the owning device.
    """

    def __init__(self, store: BiometricStore, context: SerialContext) -> None:
        self.store = store
        self.context = context

    # ------------------------------------------------------------------
    # Availability / authorization
    # ------------------------------------------------------------------

    def is_available(self) -> bool:
        return self.store.is_available()

    def authorization_status(self) -> AuthorizationStatus:
        return self.store.authorization_status()

    def ensure_access(self) -> None:
        """Raise if queries cannot run at all.

        Raises:
            PlatformUnavailable: Biometric data is not available on this device.
            AuthorizationDenied: Read access has not been granted.
        """
        if not self.store.is_available():
            raise PlatformUnavailable("Biometric data unavailable on this device")
        if self.store.authorization_status() is not AuthorizationStatus.AUTHORIZED:
            raise AuthorizationDenied(
                f"Biometric access is {self.store.authorization_status().value}"
            )

    async def request_authorization(self, kinds: Iterable[BiometricKind]) -> bool:
        future = self._future()

        def _done(granted: bool, error: Exception | None) -> None:
            self.context.resolve(future, granted, error)

        self.store.request_authorization(tuple(kinds), _done)
        return await future

    # ------------------------------------------------------------------
    # Finalize queries
    # ------------------------------------------------------------------

    async def statistics(self, kind: BiometricKind, start: datetime, end: datetime) -> Statistics:
        """Average / maximum / sum of ``kind`` over the window ``(start, end]``."""
        future = self._future()
        self.store.execute_statistics(kind, start, end, self._completion(future))
        result = await future
        return result or Statistics()

    async def series(
        self, kind: BiometricKind, start: datetime, end: datetime
    ) -> list[BiometricSample]:
        """Time-ordered samples of ``kind`` over the window ``(start, end]``."""
        future = self._future()
        self.store.execute_series(kind, start, end, self._completion(future))
        samples = await future
        return sorted(samples or [], key=lambda s: s.timestamp)

    async def route(self, start: datetime, end: datetime) -> list[RoutePoint]:
        """Collect every route batch until the store signals done."""
        future = self._future()
        points: list[RoutePoint] = []

        def _collect(batch: list[RoutePoint], done: bool, error: Exception | None) -> None:
            points.extend(batch)
            if error is not None:
                self.context.resolve(future, error=error)
            elif done:
                self.context.resolve(future, list(points))

        self.store.execute_route(start, end, lambda *args: self.context.post(_collect, *args))
        return await future

    async def lookup_workout(self, activity_id: UUID) -> ActivityWindow | None:
        future = self._future()
        self.store.lookup_workout(activity_id, self._completion(future))
        return await future

    # ------------------------------------------------------------------
    # Live observation
    # ------------------------------------------------------------------

    def observe(self, kind: BiometricKind, handler: Callable[[Observation], None]) -> Subscription:
        """Subscribe ``handler`` to ``kind``; it always runs on the serialized context."""
        subscription: Subscription

        def _on_loop(observation: Observation) -> None:
            if subscription.active:
                handler(observation)

        token = self.store.observe(kind, lambda obs: self.context.post(_on_loop, obs))
        subscription = Subscription(self, kind, token)
        logger.debug("Observing %s", kind.value)
        return subscription

    # ------------------------------------------------------------------
    # Workout sessions
    # ------------------------------------------------------------------

    def create_session(
        self,
        activity: ActivityKind,
        location: LocationType,
        on_failure: Callable[[Exception], None] | None = None,
    ) -> PlatformWorkoutSession:
        """Create a platform session whose failure callback is marshalled to the loop.

        Raises:
            PlatformSessionError: If the platform refuses to create the session.
        """
        session = self.store.create_session(activity, location)
        if on_failure is not None:
            session.set_failure_handler(lambda exc: self.context.post(on_failure, exc))
        return session

    async def end_session(self, session: PlatformWorkoutSession, at: datetime) -> UUID | None:
        """End ``session`` and return the saved workout id, or None if none was saved."""
        future = self._future()
        session.end(at, self._completion(future))
        try:
            return await future
        except Exception as exc:  # noqa: BLE001
            logger.warning("Platform session end failed: %s", exc)
            return None

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _future(self) -> asyncio.Future:
        return self.context.loop.create_future()

    def _completion(self, future: asyncio.Future) -> Callable[[Any, Exception | None], None]:
        def _done(value: Any, error: Exception | None) -> None:
            self.context.resolve(future, value, error)

        return _done
