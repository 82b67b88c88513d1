"""Inbound routing for each device role.

``HandheldService`` answers the companion's requests (schedule, activities,
startActivity), mirrors its metrics / ended / failed events into the
controller, and pushes a ``context`` event with its last-known state whenever
the link becomes usable or a session completes.
``CompanionService`` executes commands from the handheld and keeps the
companion's app state projection fresh.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, time, timedelta
from typing import Any

from src.workouts.base import ActivityKind, CompletedSessionRecord, LocationType
from src.workouts.collaborators import ScheduleProvider, WorkoutCatalog
from src.workouts.errors import (
    InvalidTransition,
    LinkUnavailable,
    PlatformSessionError,
    RequestTimeout,
    SerializationError,
    SessionConflict,
)
from src.workouts.link.channel import ERROR_KEY, ConnectionState, InboundMessage, LinkChannel
from src.workouts.link.messages import (
    ACTIVITIES,
    COMMAND,
    CONTEXT,
    ENDED,
    FAILED,
    METRICS,
    SCHEDULE,
    START_ACTIVITY,
    Reply,
    Request,
)
from src.workouts.link.payloads import (
    ActivityData,
    CommandPayload,
    ContextPayload,
    EndedPayload,
    FailedPayload,
    MetricsPayload,
    SessionSummary,
    StartActivityAck,
    StartActivityParams,
)
from src.workouts.projector import AppState, AppStateProjector
from src.workouts.session.controller import SessionController

logger = logging.getLogger("pacelink.workouts.devices")


class HandheldService:
    """Inbound handler for the handheld device."""

    def __init__(
        self,
        channel: LinkChannel,
        controller: SessionController,
        schedule: ScheduleProvider,
        catalog: WorkoutCatalog,
    ) -> None:
        self.channel = channel
        self.controller = controller
        self.schedule = schedule
        self.catalog = catalog
        self._was_ready = False
        channel.on_inbound_message(self.handle)
        channel.add_listener(self._on_link_state)
        controller.add_record_listener(self._on_record)

    def activity_data(self) -> ActivityData:
        controller = self.controller
        if not controller.is_live or controller.activity is None:
            return ActivityData(workouts=self.catalog.summaries())
        name = None
        if controller.workout_id:
            name = self.catalog.name_for(controller.workout_id)
        return ActivityData(
            workouts=self.catalog.summaries(),
            has_active_session=True,
            active_session_type=controller.activity,
            active_session_name=name or controller.activity.display_name,
            active_session_workout_id=controller.workout_id,
            active_session_location=controller.location,
        )

    def weekly_sessions(self, now: datetime | None = None) -> list[SessionSummary]:
        """Completed sessions from this week (Monday 00:00 onwards), newest first."""
        now = now or self.controller.clock()
        week_start = datetime.combine(
            now.date() - timedelta(days=now.weekday()), time.min, tzinfo=now.tzinfo
        )
        week_end = week_start + timedelta(days=7)
        return [
            SessionSummary(
                id=str(record.id),
                type=record.activity,
                name=record.name,
                date=record.start,
                duration=int(record.duration),
                calories=record.energy,
            )
            for record in self.controller.sink.all()
            if week_start <= record.start < week_end
        ]

    def push_context(self) -> None:
        """Send the last-known schedule, activities and weekly sessions to the companion."""
        context = ContextPayload(
            schedule=self.schedule.today(),
            activities=self.activity_data(),
            weekly_sessions=self.weekly_sessions(),
        )
        self.channel.send_event(CONTEXT, context.to_params())

    def _on_link_state(self, state: ConnectionState) -> None:
        ready = self.channel.is_ready
        if ready and not self._was_ready:
            self.push_context()
        self._was_ready = ready

    def _on_record(self, record: CompletedSessionRecord) -> None:
        self.push_context()

    async def handle(self, message: InboundMessage) -> dict[str, Any] | None:
        if isinstance(message, Request):
            return self._answer(message)

        if message.kind == METRICS:
            self.controller.apply_remote_metrics(MetricsPayload.from_params(message.params))
        elif message.kind == ENDED:
            self.controller.handle_remote_ended(EndedPayload.from_params(message.params).uuid)
        elif message.kind == FAILED:
            self.controller.handle_remote_failed(FailedPayload.from_params(message.params).reason)
        else:
            logger.debug("Handheld ignores %s events", message.kind)
        return None

    def _answer(self, request: Request) -> dict[str, Any]:
        if request.kind == SCHEDULE:
            return self.schedule.today().to_params()
        if request.kind == ACTIVITIES:
            return self.activity_data().to_params()
        if request.kind == START_ACTIVITY:
            params = StartActivityParams.from_params(request.params)
            self.controller.start(params.activity, params.location, workout_id=params.workout_id)
            return StartActivityAck().to_params()
        logger.warning("Unknown request kind %r", request.kind)
        return {ERROR_KEY: f"unknown request {request.kind!r}"}


class CompanionService:
    """Inbound handler and state refresher for the companion device."""

    def __init__(
        self,
        channel: LinkChannel,
        controller: SessionController,
        projector: AppStateProjector,
    ) -> None:
        self.channel = channel
        self.controller = controller
        self.projector = projector
        self._tasks: set[asyncio.Task] = set()
        channel.on_inbound_message(self.handle)
        channel.add_listener(self._on_link_state)

    # ------------------------------------------------------------------
    # Inbound
    # ------------------------------------------------------------------

    async def handle(self, message: InboundMessage) -> dict[str, Any] | None:
        if isinstance(message, Request):
            logger.warning("Companion does not serve %r requests", message.kind)
            return {ERROR_KEY: f"unknown request {message.kind!r}"}
        if message.kind == COMMAND:
            await self._run_command(CommandPayload.from_params(message.params))
        elif message.kind == CONTEXT:
            self.projector.apply_context(ContextPayload.from_params(message.params))
        else:
            logger.debug("Companion ignores %s events", message.kind)
        return None

    async def _run_command(self, command: CommandPayload) -> None:
        controller = self.controller
        try:
            if command.command == "start":
                controller.start(
                    command.activity or ActivityKind.WORKOUT,
                    command.location or LocationType.INDOOR,
                    remote_origin=True,
                )
            elif command.command == "pause":
                controller.pause()
            elif command.command == "resume":
                controller.resume()
            elif command.command == "end":
                await controller.end()
                self.projector.clear_active_session()
                self.schedule_refresh()
        except PlatformSessionError as exc:
            logger.error("Remote start failed: %s", exc)
        except (SessionConflict, InvalidTransition) as exc:
            logger.warning("Ignoring %s command: %s", command.command, exc)

    # ------------------------------------------------------------------
    # Projection
    # ------------------------------------------------------------------

    def _on_link_state(self, state: ConnectionState) -> None:
        was_reachable = self.projector.reachable
        self.projector.set_reachable(self.channel.is_ready)
        if self.channel.is_ready and not was_reachable:
            self.schedule_refresh()

    def schedule_refresh(self) -> None:
        task = asyncio.get_running_loop().create_task(self.refresh())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def refresh(self) -> AppState:
        """Re-query ``activities`` then ``schedule`` and project the result.

        An unreachable or silent peer projects to Disconnected.
        """
        try:
            self._apply(await self.channel.send_request(ACTIVITIES))
            self._apply(await self.channel.send_request(SCHEDULE))
        except (LinkUnavailable, RequestTimeout) as exc:
            logger.info("Refresh failed: %s", exc)
            return self.projector.set_reachable(False)
        return self.projector.set_reachable(True)

    def _apply(self, reply: Reply) -> None:
        if ERROR_KEY in reply.payload:
            logger.warning("%s request failed on peer: %s", reply.kind, reply.payload[ERROR_KEY])
            return
        try:
            self.projector.apply_reply(reply)
        except SerializationError as exc:
            logger.warning("Dropping malformed %s reply: %s", reply.kind, exc)

    async def start_activity(
        self,
        activity: ActivityKind,
        location: LocationType,
        workout_id: str | None = None,
    ) -> dict[str, Any]:
        """Ask the handheld to start an activity, then refresh the projection.

        Raises:
            LinkUnavailable: The handheld is not reachable.
            RequestTimeout:  The handheld did not acknowledge in time.
        """
        params = StartActivityParams(activity=activity, location=location, workout_id=workout_id)
        reply = await self.channel.send_request(START_ACTIVITY, params.to_params())
        await self.refresh()
        return dict(reply.payload)

    async def close(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
