"""Session controller: the per-activity state machine.

States::

    IDLE --start--> ACTIVE --pause--> PAUSED --resume--> ACTIVE
    ACTIVE/PAUSED --end--> FINALIZING --record--> COMPLETED
    ACTIVE/PAUSED --platform failure--> FAILED

A new session may start from IDLE, COMPLETED or FAILED.  Elapsed time accrues
only while ACTIVE.

Exactly one device drives the platform workout session.  In LOCAL mode this
controller owns it, runs live aggregation and broadcasts every snapshot as a
``metrics`` event.  In REMOTE mode it sends ``command`` events to the
companion, mirrors the companion's ``metrics``, and finalizes once the
companion's ``ended`` event arrives.  If no ``ended`` arrives within
``remote_end_timeout`` the session is finalized here over the locally tracked
window.  A platform failure on the driving side is reported to the peer with a
``failed`` event.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from enum import Enum
from typing import Callable
from uuid import UUID, uuid4

from src.workouts.aggregation.aggregator import LiveHandle, SessionAggregator
from src.workouts.base import (
    ActivityKind,
    ActivityWindow,
    CompletedSessionRecord,
    LocationType,
    SessionSnapshot,
    utc_now,
)
from src.workouts.biometrics.adapter import BiometricQueryAdapter
from src.workouts.biometrics.store import PlatformWorkoutSession
from src.workouts.collaborators import RecordSink
from src.workouts.errors import InvalidTransition, PlatformSessionError, SessionConflict
from src.workouts.link.channel import LinkChannel
from src.workouts.link.messages import COMMAND, ENDED, FAILED, METRICS
from src.workouts.link.payloads import CommandPayload, EndedPayload, FailedPayload, MetricsPayload

logger = logging.getLogger("pacelink.workouts.session")


class SessionState(str, Enum):
    IDLE = "idle"
    ACTIVE = "active"
    PAUSED = "paused"
    FINALIZING = "finalizing"
    COMPLETED = "completed"
    FAILED = "failed"


class DriveMode(str, Enum):
    LOCAL = "local"
    REMOTE = "remote"


LIVE_STATES = frozenset({SessionState.ACTIVE, SessionState.PAUSED})
BUSY_STATES = frozenset({SessionState.ACTIVE, SessionState.PAUSED, SessionState.FINALIZING})


class SessionController:
    """Owns the current session and its state transitions.

    Args:
        adapter:               Biometric query adapter.
        aggregator:            Live / finalize aggregator.
        channel:               Link to the peer device.
        sink:                  Receives completed records.
        clock:                 Returns the current UTC time; injectable for tests.
        delegate_to_companion: Drive sessions on the companion when it is reachable.
        snapshot_interval:     Seconds between periodic snapshots; None disables the ticker.
        remote_end_timeout:    Seconds to wait for the companion's ``ended`` event
                               before finalizing a remote session locally.
    """

    def __init__(
        self,
        adapter: BiometricQueryAdapter,
        aggregator: SessionAggregator,
        channel: LinkChannel,
        sink: RecordSink,
        clock: Callable[[], datetime] = utc_now,
        delegate_to_companion: bool = False,
        snapshot_interval: float | None = None,
        remote_end_timeout: float = 30.0,
    ) -> None:
        self.adapter = adapter
        self.aggregator = aggregator
        self.channel = channel
        self.sink = sink
        self.clock = clock
        self.delegate_to_companion = delegate_to_companion
        self.snapshot_interval = snapshot_interval
        self.remote_end_timeout = remote_end_timeout

        self.state = SessionState.IDLE
        self.mode: DriveMode | None = None
        self.activity: ActivityKind | None = None
        self.location: LocationType | None = None
        self.workout_id: str | None = None
        self.started_at: datetime | None = None
        self.last_snapshot = SessionSnapshot()
        self.record: CompletedSessionRecord | None = None

        self._session: PlatformWorkoutSession | None = None
        self._live: LiveHandle | None = None
        self._accrued = 0.0
        self._active_since: datetime | None = None
        self._ticker: asyncio.Task | None = None
        self._finalize_task: asyncio.Task | None = None
        self._end_watch: asyncio.Task | None = None
        self._listeners: list[Callable[[SessionSnapshot], None]] = []
        self._record_listeners: list[Callable[[CompletedSessionRecord], None]] = []

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    def is_live(self) -> bool:
        return self.state in LIVE_STATES

    def elapsed_seconds(self) -> int:
        """Active time so far.  Frozen outside ACTIVE."""
        total = self._accrued
        if self.state is SessionState.ACTIVE and self._active_since is not None:
            total += (self.clock() - self._active_since).total_seconds()
        return int(max(total, 0.0))

    def add_snapshot_listener(self, listener: Callable[[SessionSnapshot], None]) -> None:
        self._listeners.append(listener)

    def add_record_listener(self, listener: Callable[[CompletedSessionRecord], None]) -> None:
        """Call ``listener`` with each completed record after it is saved."""
        self._record_listeners.append(listener)

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def start(
        self,
        activity: ActivityKind,
        location: LocationType,
        workout_id: str | None = None,
        remote_origin: bool = False,
    ) -> SessionState:
        """Start a session.

        Args:
            remote_origin: The peer asked for this session; always drive it locally.

        Raises:
            SessionConflict:      A session is already live or finalizing.
            PlatformSessionError: The platform refused to create the session
                                  (the controller is left in FAILED).
        """
        if self.state in BUSY_STATES:
            raise SessionConflict(f"Cannot start: session is {self.state.value}")
        self._reset(activity, location, workout_id)

        if not remote_origin and self.delegate_to_companion and self.channel.is_ready:
            self.mode = DriveMode.REMOTE
            self.channel.send_event(
                COMMAND,
                CommandPayload(command="start", activity=activity, location=location).to_params(),
            )
            self._enter_active()
            logger.info("Delegated %s/%s session to companion", activity.value, location.value)
            return self.state

        self.mode = DriveMode.LOCAL
        try:
            self._session = self.adapter.create_session(
                activity, location, on_failure=self._on_platform_failure
            )
        except PlatformSessionError as exc:
            self.state = SessionState.FAILED
            logger.error("Platform refused %s/%s session", activity.value, location.value)
            if remote_origin:
                self.channel.send_event(FAILED, FailedPayload(reason=str(exc)).to_params())
            raise

        now = self.clock()
        self._session.start(now)
        self._enter_active()
        self._live = self.aggregator.begin_live(
            activity, location, self._on_snapshot, self.elapsed_seconds, now
        )
        self._start_ticker()
        self._live.emit()
        logger.info("Started %s/%s session locally", activity.value, location.value)
        return self.state

    def pause(self) -> SessionState:
        if self.state is not SessionState.ACTIVE:
            raise InvalidTransition(self.state.value, "pause")
        self._accrue()
        self.state = SessionState.PAUSED
        if self.mode is DriveMode.REMOTE:
            self.channel.send_event(COMMAND, CommandPayload(command="pause").to_params())
        else:
            if self._session is not None:
                self._session.pause(self.clock())
            if self._live is not None:
                self._live.emit()
        logger.info("Session paused at %ds", self.elapsed_seconds())
        return self.state

    def resume(self) -> SessionState:
        if self.state is not SessionState.PAUSED:
            raise InvalidTransition(self.state.value, "resume")
        self._active_since = self.clock()
        self.state = SessionState.ACTIVE
        if self.mode is DriveMode.REMOTE:
            self.channel.send_event(COMMAND, CommandPayload(command="resume").to_params())
        else:
            if self._session is not None:
                self._session.resume(self.clock())
            if self._live is not None:
                self._live.emit()
        logger.info("Session resumed")
        return self.state

    async def end(self) -> CompletedSessionRecord | None:
        """End the session.

        Locally driven sessions are finalized before returning the record; the
        finalize task is shielded so cancelling the caller does not abandon the
        outstanding queries.  Remote sessions return None at once; the record
        follows the companion's ``ended`` event, or the local fallback after
        ``remote_end_timeout`` (see ``wait_for_record``).
        """
        if self.state not in LIVE_STATES:
            raise InvalidTransition(self.state.value, "end")
        self._accrue()
        self.state = SessionState.FINALIZING
        self._stop_live()

        if self.mode is DriveMode.REMOTE:
            self.channel.send_event(COMMAND, CommandPayload(command="end").to_params())
            self._end_watch = asyncio.get_running_loop().create_task(
                self._await_remote_end(self.clock())
            )
            logger.info("Asked companion to end the session")
            return None

        ended_at = self.clock()
        self._finalize_task = asyncio.get_running_loop().create_task(self._finish_local(ended_at))
        return await asyncio.shield(self._finalize_task)

    async def wait_for_record(self) -> CompletedSessionRecord | None:
        """Wait for the in-flight finalize, if any, and return the record."""
        if self._finalize_task is not None:
            return await asyncio.shield(self._finalize_task)
        return self.record

    # ------------------------------------------------------------------
    # Inbound from the peer
    # ------------------------------------------------------------------

    def apply_remote_metrics(self, payload: MetricsPayload) -> None:
        """Mirror a ``metrics`` event from the device driving the session."""
        if self.mode is not DriveMode.REMOTE or not self.is_live:
            logger.debug("Ignoring metrics in %s state", self.state.value)
            return
        if payload.is_paused and self.state is SessionState.ACTIVE:
            self._accrue()
            self.state = SessionState.PAUSED
        elif not payload.is_paused and self.state is SessionState.PAUSED:
            self._active_since = self.clock()
            self.state = SessionState.ACTIVE
        self.last_snapshot = payload.to_snapshot()
        self._notify(self.last_snapshot)

    def handle_remote_ended(self, workout_id: UUID | None) -> None:
        """The companion finished the session; finalize it here."""
        if self.mode is not DriveMode.REMOTE or self.state not in BUSY_STATES:
            logger.info("Ignoring ended event in %s state", self.state.value)
            return
        if self._finalize_task is not None:
            logger.warning("Duplicate ended event for the current session")
            return
        if self.state in LIVE_STATES:
            self._accrue()
            self.state = SessionState.FINALIZING
        self._cancel_end_watch()
        self._finalize_task = asyncio.get_running_loop().create_task(
            self._finish_remote(self.clock(), workout_id)
        )

    def handle_remote_failed(self, reason: str | None = None) -> None:
        """The companion's platform session failed; fail the mirrored session."""
        if self.mode is not DriveMode.REMOTE or self.state not in BUSY_STATES:
            logger.info("Ignoring failed event in %s state", self.state.value)
            return
        if self._finalize_task is not None:
            logger.warning("Failed event after finalize started; keeping the record")
            return
        self._accrue()
        self._cancel_end_watch()
        self.state = SessionState.FAILED
        logger.error("Companion session failed after %ds: %s", self.elapsed_seconds(), reason)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _reset(self, activity: ActivityKind, location: LocationType, workout_id: str | None) -> None:
        self.activity = activity
        self.location = location
        self.workout_id = workout_id
        self.record = None
        self.last_snapshot = SessionSnapshot()
        self._session = None
        self._live = None
        self._accrued = 0.0
        self._active_since = None
        self._finalize_task = None
        self._cancel_end_watch()

    def _enter_active(self) -> None:
        now = self.clock()
        self.started_at = now
        self._active_since = now
        self.state = SessionState.ACTIVE

    def _accrue(self) -> None:
        if self.state is SessionState.ACTIVE and self._active_since is not None:
            self._accrued += (self.clock() - self._active_since).total_seconds()
        self._active_since = None

    def _on_snapshot(self, snapshot: SessionSnapshot) -> None:
        if not self.is_live:
            return
        self.last_snapshot = snapshot
        self._notify(snapshot)
        self.channel.send_event(
            METRICS,
            MetricsPayload.from_snapshot(
                self.activity, snapshot, is_paused=self.state is SessionState.PAUSED
            ).to_params(),
        )

    def _notify(self, snapshot: SessionSnapshot) -> None:
        for listener in list(self._listeners):
            listener(snapshot.copy())

    def _on_platform_failure(self, error: Exception) -> None:
        if not self.is_live:
            return
        self._accrue()
        self.state = SessionState.FAILED
        self._stop_live()
        self._session = None
        logger.error("Platform session failed after %ds: %s", self.elapsed_seconds(), error)
        self.channel.send_event(FAILED, FailedPayload(reason=str(error)).to_params())

    async def _await_remote_end(self, ended_at: datetime) -> None:
        await asyncio.sleep(self.remote_end_timeout)
        if self.state is not SessionState.FINALIZING or self._finalize_task is not None:
            return
        logger.warning(
            "No ended event within %.1fs; finalizing the remote session locally",
            self.remote_end_timeout,
        )
        self._end_watch = None
        self._finalize_task = asyncio.get_running_loop().create_task(
            self._finish_remote(ended_at, None)
        )

    def _cancel_end_watch(self) -> None:
        if self._end_watch is not None:
            self._end_watch.cancel()
            self._end_watch = None

    def _start_ticker(self) -> None:
        if self.snapshot_interval is None:
            return
        self._ticker = asyncio.get_running_loop().create_task(self._tick())

    async def _tick(self) -> None:
        while self._live is not None and self._live.active:
            await asyncio.sleep(self.snapshot_interval)
            if self.state is SessionState.ACTIVE and self._live is not None:
                self._live.emit()

    def _stop_live(self) -> None:
        if self._ticker is not None:
            self._ticker.cancel()
            self._ticker = None
        if self._live is not None:
            self._live.stop()

    def _local_window(self, ended_at: datetime, activity_id: UUID) -> ActivityWindow:
        return ActivityWindow(
            activity_id=activity_id,
            activity=self.activity,
            location=self.location,
            start=self.started_at or ended_at,
            end=ended_at,
            duration_seconds=self._accrued,
        )

    async def _finish_local(self, ended_at: datetime) -> CompletedSessionRecord:
        workout_id: UUID | None = None
        if self._session is not None:
            workout_id = await self.adapter.end_session(self._session, ended_at)
            self._session = None
        if workout_id is not None:
            record = await self.aggregator.finalize(
                workout_id, fallback=self._local_window(ended_at, workout_id)
            )
        else:
            local_id = uuid4()
            logger.warning("Platform saved no workout; finalizing under local id %s", local_id)
            record = await self.aggregator.finalize(local_id, window=self._local_window(ended_at, local_id))
        self._complete(record)
        self.channel.send_event(ENDED, EndedPayload(uuid=workout_id).to_params())
        return record

    async def _finish_remote(self, ended_at: datetime, workout_id: UUID | None) -> CompletedSessionRecord:
        if workout_id is not None:
            record = await self.aggregator.finalize(
                workout_id, fallback=self._local_window(ended_at, workout_id)
            )
        else:
            local_id = uuid4()
            record = await self.aggregator.finalize(local_id, window=self._local_window(ended_at, local_id))
        self._complete(record)
        return record

    def _complete(self, record: CompletedSessionRecord) -> None:
        self.record = record
        self.sink.save(record)
        self.state = SessionState.COMPLETED
        logger.info("Session %s completed (%.0fs)", record.id, record.duration)
        for listener in list(self._record_listeners):
            listener(record)
