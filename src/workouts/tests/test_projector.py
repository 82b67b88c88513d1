"""Tests for the companion app state projection."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from src.workouts.base import ActivityKind, LocationType
from src.workouts.errors import SerializationError
from src.workouts.link.messages import Reply
from src.workouts.link.payloads import (
    ActivityData,
    ContextPayload,
    ScheduleData,
    ScheduleItem,
    SessionSummary,
    WorkoutSummary,
)
from src.workouts.projector import (
    ActiveSession,
    AppStateProjector,
    ChooseActivity,
    Disconnected,
    Loading,
    derive,
    describe,
)

SCHEDULE = ScheduleData(
    today_items=[ScheduleItem(id="easy", type="run", name="Easy Run")],
    day_name="Tuesday",
)
IDLE = ActivityData(workouts=[WorkoutSummary(id="core", name="Core", exercise_count=4)])
RUNNING = ActivityData(
    has_active_session=True,
    active_session_type=ActivityKind.RUN,
    active_session_name="Running",
    active_session_location=LocationType.OUTDOOR,
)


def _reply(kind: str, payload, request_id: int) -> Reply:
    return Reply(kind=kind, payload=payload.to_params(), request_id=request_id)


class TestDerive:
    def test_unreachable_is_disconnected(self) -> None:
        assert derive(False, SCHEDULE, RUNNING) == Disconnected()

    def test_active_session_wins_over_schedule(self) -> None:
        state = derive(True, SCHEDULE, RUNNING)
        assert state == ActiveSession(
            kind=ActivityKind.RUN, name="Running", location=LocationType.OUTDOOR
        )

    def test_active_session_without_schedule(self) -> None:
        assert isinstance(derive(True, None, RUNNING), ActiveSession)

    def test_choose_needs_both_replies(self) -> None:
        assert derive(True, SCHEDULE, None) == Loading()
        assert derive(True, None, IDLE) == Loading()
        assert derive(True, SCHEDULE, IDLE) == ChooseActivity(schedule=SCHEDULE, activities=IDLE)

    def test_active_flag_without_name_is_not_active(self) -> None:
        partial = ActivityData(has_active_session=True, active_session_type=ActivityKind.RUN)
        assert derive(True, SCHEDULE, partial) == ChooseActivity(schedule=SCHEDULE, activities=partial)


class TestDescribe:
    def test_choose_activity_flattens(self) -> None:
        data = describe(ChooseActivity(schedule=SCHEDULE, activities=IDLE))
        assert data["state"] == "choose_activity"
        assert data["day_name"] == "Tuesday"
        assert data["workouts"][0]["name"] == "Core"

    def test_unknown_state_rejected(self) -> None:
        with pytest.raises(TypeError):
            describe("bogus")  # type: ignore[arg-type]


class TestProjector:
    def test_starts_loading(self) -> None:
        assert AppStateProjector().state == Loading()

    def test_replies_then_reachable(self) -> None:
        projector = AppStateProjector()
        projector.set_reachable(True)
        projector.apply_reply(_reply("activities", IDLE, 1))
        assert projector.state == Loading()
        projector.apply_reply(_reply("schedule", SCHEDULE, 2))
        assert isinstance(projector.state, ChooseActivity)

    def test_stale_reply_ignored(self) -> None:
        projector = AppStateProjector()
        projector.set_reachable(True)
        projector.apply_reply(_reply("activities", RUNNING, 5))
        projector.apply_reply(_reply("activities", IDLE, 3))
        assert isinstance(projector.state, ActiveSession)

    def test_newer_reply_replaces(self) -> None:
        projector = AppStateProjector()
        projector.set_reachable(True)
        projector.apply_reply(_reply("schedule", SCHEDULE, 1))
        projector.apply_reply(_reply("activities", RUNNING, 2))
        projector.apply_reply(_reply("activities", IDLE, 4))
        assert isinstance(projector.state, ChooseActivity)

    def test_losing_link_disconnects(self) -> None:
        projector = AppStateProjector()
        projector.apply_reply(_reply("schedule", SCHEDULE, 1))
        projector.apply_reply(_reply("activities", IDLE, 2))
        projector.set_reachable(True)
        assert isinstance(projector.state, ChooseActivity)
        assert projector.set_reachable(False) == Disconnected()

    def test_clear_active_session(self) -> None:
        projector = AppStateProjector()
        projector.set_reachable(True)
        projector.apply_reply(_reply("schedule", SCHEDULE, 1))
        projector.apply_reply(_reply("activities", RUNNING, 2))
        assert isinstance(projector.clear_active_session(), ChooseActivity)

    def test_listener_called_on_change_only(self) -> None:
        projector = AppStateProjector()
        seen = []
        projector.add_listener(seen.append)
        projector.set_reachable(False)
        projector.set_reachable(False)
        assert seen == [Disconnected()]

    def test_malformed_reply_raises(self) -> None:
        projector = AppStateProjector()
        with pytest.raises(SerializationError):
            projector.apply_reply(Reply(kind="schedule", payload={"todayItems": "{oops"}, request_id=1))


class TestContext:
    def test_context_fills_choose_activity(self) -> None:
        projector = AppStateProjector()
        projector.set_reachable(True)
        week = [
            SessionSummary(
                id="s1", type=ActivityKind.RUN, name="Running",
                date=datetime(2026, 2, 24, 18, 0, tzinfo=timezone.utc), duration=1500,
            )
        ]
        state = projector.apply_context(ContextPayload(schedule=SCHEDULE, activities=IDLE, weekly_sessions=week))
        assert state == ChooseActivity(schedule=SCHEDULE, activities=IDLE, weekly_sessions=tuple(week))
        assert describe(state)["weekly_sessions"][0]["id"] == "s1"

    def test_context_keeps_disconnected_while_unreachable(self) -> None:
        projector = AppStateProjector()
        projector.set_reachable(False)
        assert projector.apply_context(ContextPayload(schedule=SCHEDULE, activities=RUNNING)) == Disconnected()
        assert projector.set_reachable(True) == ActiveSession(
            kind=ActivityKind.RUN, name="Running", location=LocationType.OUTDOOR
        )

    def test_partial_context_keeps_other_sections(self) -> None:
        projector = AppStateProjector()
        projector.set_reachable(True)
        projector.apply_reply(_reply("schedule", SCHEDULE, 1))
        state = projector.apply_context(ContextPayload(activities=IDLE))
        assert state == ChooseActivity(schedule=SCHEDULE, activities=IDLE)
