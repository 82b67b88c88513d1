"""Companion app state projector.

Derives the companion's UI state from the latest ``schedule`` and
``activities`` replies, the handheld's pushed ``context`` event and link
reachability.  The derivation itself is the pure ``derive()`` function;
``AppStateProjector`` only keeps the freshest data of each kind and recomputes
on every change.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Union

from src.workouts.base import ActivityKind, LocationType
from src.workouts.link.messages import ACTIVITIES, SCHEDULE, Reply
from src.workouts.link.payloads import ActivityData, ContextPayload, ScheduleData, SessionSummary

logger = logging.getLogger("pacelink.workouts.projector")


@dataclass(frozen=True)
class Loading:
    pass


@dataclass(frozen=True)
class Disconnected:
    pass


@dataclass(frozen=True)
class ActiveSession:
    kind: ActivityKind
    name: str
    location: LocationType | None = None
    workout_id: str | None = None


@dataclass(frozen=True)
class ChooseActivity:
    schedule: ScheduleData
    activities: ActivityData
    weekly_sessions: tuple[SessionSummary, ...] = ()


AppState = Union[Loading, Disconnected, ActiveSession, ChooseActivity]


def derive(
    reachable: bool,
    schedule: ScheduleData | None,
    activities: ActivityData | None,
    weekly_sessions: tuple[SessionSummary, ...] = (),
) -> AppState:
    """Compute the app state.  An active session always wins over schedule data."""
    if not reachable:
        return Disconnected()
    if (
        activities is not None
        and activities.has_active_session
        and activities.active_session_type is not None
        and activities.active_session_name
    ):
        return ActiveSession(
            kind=activities.active_session_type,
            name=activities.active_session_name,
            location=activities.active_session_location,
            workout_id=activities.active_session_workout_id,
        )
    if schedule is not None and activities is not None:
        return ChooseActivity(schedule=schedule, activities=activities, weekly_sessions=weekly_sessions)
    return Loading()


def describe(state: AppState) -> dict:
    """Flatten a state for the HTTP surface."""
    if isinstance(state, Loading):
        return {"state": "loading"}
    if isinstance(state, Disconnected):
        return {"state": "disconnected"}
    if isinstance(state, ActiveSession):
        return {
            "state": "active_session",
            "activity": state.kind.value,
            "name": state.name,
            "location": state.location.value if state.location else None,
            "workout_id": state.workout_id,
        }
    if isinstance(state, ChooseActivity):
        return {
            "state": "choose_activity",
            "day_name": state.schedule.day_name,
            "today_items": [item.model_dump() for item in state.schedule.today_items],
            "workouts": [w.model_dump() for w in state.activities.workouts],
            "weekly_sessions": [s.model_dump(mode="json") for s in state.weekly_sessions],
        }
    raise TypeError(f"Unknown app state: {state!r}")


class AppStateProjector:
    """Holds the freshest replies and the derived state."""

    def __init__(self) -> None:
        self.reachable = False
        self.schedule: ScheduleData | None = None
        self.activities: ActivityData | None = None
        self.weekly_sessions: tuple[SessionSummary, ...] = ()
        self._applied: dict[str, int] = {}
        self.state: AppState = Loading()
        self._listeners: list[Callable[[AppState], None]] = []

    def add_listener(self, listener: Callable[[AppState], None]) -> None:
        self._listeners.append(listener)

    def set_reachable(self, reachable: bool) -> AppState:
        self.reachable = reachable
        return self._recompute()

    def apply_reply(self, reply: Reply) -> AppState:
        """Apply a ``schedule`` or ``activities`` reply unless a newer one was applied.

        Raises:
            SerializationError: The reply payload does not match its schema.
        """
        last = self._applied.get(reply.kind)
        if last is not None and reply.request_id < last:
            logger.debug("Ignoring stale %s reply #%d (have #%d)", reply.kind, reply.request_id, last)
            return self.state
        if reply.kind == SCHEDULE:
            self.schedule = ScheduleData.from_params(reply.payload)
        elif reply.kind == ACTIVITIES:
            self.activities = ActivityData.from_params(reply.payload)
        else:
            logger.debug("Projector ignores %s replies", reply.kind)
            return self.state
        self._applied[reply.kind] = reply.request_id
        return self._recompute()

    def apply_context(self, context: ContextPayload) -> AppState:
        """Adopt the handheld's pushed context.

        Sections missing from the context keep their current value.  The
        Disconnected rule still applies while the peer is unreachable.
        """
        if context.schedule is not None:
            self.schedule = context.schedule
        if context.activities is not None:
            self.activities = context.activities
        self.weekly_sessions = tuple(context.weekly_sessions)
        return self._recompute()

    def clear_active_session(self) -> AppState:
        """Drop the active-session flag after the session ended."""
        if self.activities is not None and self.activities.has_active_session:
            self.activities = self.activities.model_copy(
                update={
                    "has_active_session": False,
                    "active_session_type": None,
                    "active_session_name": None,
                    "active_session_workout_id": None,
                    "active_session_location": None,
                }
            )
        return self._recompute()

    def _recompute(self) -> AppState:
        state = derive(self.reachable, self.schedule, self.activities, self.weekly_sessions)
        if state != self.state:
            logger.info("App state -> %s", type(state).__name__)
            self.state = state
            for listener in list(self._listeners):
                listener(state)
        return self.state
