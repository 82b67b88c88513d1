"""Tests for the LinkChannel over paired loopback transports."""

from __future__ import annotations

import threading

import pytest

from src.workouts.dispatch import SerialContext
from src.workouts.errors import LinkUnavailable, RequestTimeout
from src.workouts.link.channel import ActivationState, LinkChannel
from src.workouts.link.messages import Event, Request
from src.workouts.link.loopback import LoopbackTransport
from src.workouts.tests.conftest import drain


def _linked(reachable: bool = True, timeout: float = 1.0):
    handheld_end, companion_end = LoopbackTransport.pair(reachable=reachable)
    handheld = LinkChannel(handheld_end, SerialContext(), request_timeout=timeout)
    companion = LinkChannel(companion_end, SerialContext(), request_timeout=timeout)
    return handheld_end, companion_end, handheld, companion


class _Recorder:
    def __init__(self) -> None:
        self.messages: list = []

    def __call__(self, message):
        self.messages.append(message)
        return None


# ---------------------------------------------------------------------------
# Activation
# ---------------------------------------------------------------------------


class TestActivation:
    @pytest.mark.asyncio
    async def test_activation_reaches_activated(self) -> None:
        _, _, handheld, _ = _linked()
        assert handheld.state.activation is ActivationState.NOT_ACTIVATED
        handheld.activate()
        assert handheld.state.activation is ActivationState.ACTIVATING
        await drain()
        assert handheld.state.activation is ActivationState.ACTIVATED
        assert handheld.state.reachable is True
        await handheld.close()

    @pytest.mark.asyncio
    async def test_activate_is_idempotent(self) -> None:
        handheld_end, _, handheld, _ = _linked()
        calls = []
        original = handheld_end.activate
        handheld_end.activate = lambda: (calls.append(1), original())  # type: ignore[method-assign]
        handheld.activate()
        handheld.activate()
        await drain()
        handheld.activate()
        assert len(calls) == 1
        await handheld.close()

    @pytest.mark.asyncio
    async def test_events_before_activation_flush_on_activation(self) -> None:
        handheld_end, _, handheld, companion = _linked()
        received = _Recorder()
        companion.on_inbound_message(received)
        companion.activate()

        handheld.send_event("metrics", {"heartRate": 100})
        handheld.send_event("metrics", {"heartRate": 101})
        assert len(handheld.pending) == 2
        assert handheld_end.sent == []

        handheld.activate()
        await drain()
        await companion.join_inbound()
        assert len(handheld.pending) == 0
        assert [m.params["heartRate"] for m in received.messages] == [100, 101]
        await handheld.close()
        await companion.close()

    @pytest.mark.asyncio
    async def test_reachability_toggles_independently(self) -> None:
        handheld_end, _, handheld, _ = _linked()
        handheld.activate()
        await drain()
        handheld_end.set_reachable(False)
        await drain()
        assert handheld.state.activation is ActivationState.ACTIVATED
        assert handheld.state.reachable is False
        await handheld.close()


# ---------------------------------------------------------------------------
# Pending queue
# ---------------------------------------------------------------------------


class TestPendingQueue:
    @pytest.mark.asyncio
    async def test_queue_length_matches_calls_in_order(self) -> None:
        handheld_end, _, handheld, _ = _linked(reachable=False)
        handheld.activate()
        await drain()
        for i in range(5):
            handheld.send_event("metrics", {"elapsedSeconds": i})
        assert [e.params["elapsedSeconds"] for e in handheld.pending] == [0, 1, 2, 3, 4]
        assert handheld_end.sent == []
        await handheld.close()

    @pytest.mark.asyncio
    async def test_three_metrics_flushed_in_order_once(self) -> None:
        handheld_end, _, handheld, companion = _linked(reachable=False)
        received = _Recorder()
        companion.on_inbound_message(received)
        companion.activate()
        handheld.activate()
        await drain()

        for hr in (120, 121, 122):
            handheld.send_event("metrics", {"heartRate": hr})
        assert len(handheld.pending) == 3

        handheld_end.set_reachable(True)
        await drain()
        await companion.join_inbound()

        assert [d["heartRate"] for d in handheld_end.sent] == [120, 121, 122]
        assert [m.params["heartRate"] for m in received.messages] == [120, 121, 122]
        assert len(handheld.pending) == 0

        # A second reachability flap has nothing left to send
        handheld_end.set_reachable(False)
        handheld_end.set_reachable(True)
        await drain()
        assert len(handheld_end.sent) == 3
        await handheld.close()
        await companion.close()

    @pytest.mark.asyncio
    async def test_failed_send_is_dropped_not_requeued(self) -> None:
        handheld_end, _, handheld, companion = _linked(reachable=False)
        received = _Recorder()
        companion.on_inbound_message(received)
        companion.activate()
        handheld.activate()
        await drain()
        for hr in (1, 2, 3):
            handheld.send_event("metrics", {"heartRate": hr})

        handheld_end.fail_next_sends = 1
        handheld_end.set_reachable(True)
        await drain()
        await companion.join_inbound()

        assert len(handheld.pending) == 0
        assert [m.params["heartRate"] for m in received.messages] == [2, 3]
        await handheld.close()
        await companion.close()

    @pytest.mark.asyncio
    async def test_send_while_reachable_bypasses_queue(self) -> None:
        handheld_end, _, handheld, companion = _linked()
        companion.activate()
        handheld.activate()
        await drain()
        handheld.send_event("ended", {})
        assert len(handheld.pending) == 0
        assert handheld_end.sent == [{"event": "ended"}]
        await handheld.close()
        await companion.close()


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------


class TestRequests:
    @pytest.mark.asyncio
    async def test_request_fails_fast_when_unreachable(self) -> None:
        handheld_end, _, handheld, _ = _linked(reachable=False)
        handheld.activate()
        await drain()
        with pytest.raises(LinkUnavailable):
            await handheld.send_request("schedule")
        assert len(handheld.pending) == 0
        assert handheld_end.sent == []
        await handheld.close()

    @pytest.mark.asyncio
    async def test_request_before_activation_fails_fast(self) -> None:
        _, _, handheld, _ = _linked()
        with pytest.raises(LinkUnavailable):
            await handheld.send_request("activities")
        assert len(handheld.pending) == 0

    @pytest.mark.asyncio
    async def test_request_reply_round_trip(self) -> None:
        _, _, handheld, companion = _linked()

        def answer(message):
            assert isinstance(message, Request)
            return {"dayName": "Monday"}

        handheld.on_inbound_message(answer)
        handheld.activate()
        companion.activate()
        await drain()

        reply = await companion.send_request("schedule")
        assert reply.kind == "schedule"
        assert reply.payload == {"dayName": "Monday"}
        await handheld.close()
        await companion.close()

    @pytest.mark.asyncio
    async def test_async_handler_reply(self) -> None:
        _, _, handheld, companion = _linked()

        async def answer(message):
            return {"status": "started"}

        handheld.on_inbound_message(answer)
        handheld.activate()
        companion.activate()
        await drain()
        reply = await companion.send_request("startActivity", {"activity": "run"})
        assert reply.payload["status"] == "started"
        await handheld.close()
        await companion.close()

    @pytest.mark.asyncio
    async def test_request_times_out(self) -> None:
        _, companion_end, handheld, companion = _linked(timeout=0.05)
        companion_end.answer_requests = False
        handheld.activate()
        companion.activate()
        await drain()
        with pytest.raises(RequestTimeout):
            await handheld.send_request("schedule")
        await handheld.close()
        await companion.close()

    @pytest.mark.asyncio
    async def test_request_ids_increase(self) -> None:
        _, _, handheld, companion = _linked()
        seen: list[int] = []

        def answer(message):
            seen.append(message.request_id)
            return {}

        companion.on_inbound_message(answer)
        handheld.activate()
        companion.activate()
        await drain()
        await handheld.send_request("activities")
        await handheld.send_request("schedule")
        assert seen == sorted(seen)
        assert seen[0] < seen[1]
        await handheld.close()
        await companion.close()


# ---------------------------------------------------------------------------
# Inbound dispatch
# ---------------------------------------------------------------------------


class TestInbound:
    @pytest.mark.asyncio
    async def test_malformed_message_dropped_and_consumer_continues(self) -> None:
        _, _, handheld, _ = _linked()
        received = _Recorder()
        handheld.on_inbound_message(received)
        handheld.activate()
        await drain()

        handheld.did_receive_message({"nonsense": True}, None)
        handheld.did_receive_message({"event": "metrics", "heartRate": 99}, None)
        await drain()
        await handheld.join_inbound()

        assert received.messages == [Event(kind="metrics", params={"heartRate": 99})]
        await handheld.close()

    @pytest.mark.asyncio
    async def test_handlers_never_overlap(self) -> None:
        import asyncio

        _, _, handheld, _ = _linked()
        active = 0
        peak = 0
        order: list[int] = []

        async def slow(message):
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            await asyncio.sleep(0.01)
            order.append(message.params["n"])
            active -= 1

        handheld.on_inbound_message(slow)
        handheld.activate()
        await drain()
        for n in range(4):
            handheld.did_receive_message({"event": "tick", "n": n}, None)
        await drain()
        await handheld.join_inbound()
        assert peak == 1
        assert order == [0, 1, 2, 3]
        await handheld.close()

    @pytest.mark.asyncio
    async def test_callbacks_from_worker_thread_are_marshalled(self) -> None:
        _, _, handheld, _ = _linked()
        received = _Recorder()
        handheld.on_inbound_message(received)
        handheld.activate()
        await drain()
        handheld.context.bind()

        worker = threading.Thread(
            target=handheld.did_receive_message,
            args=({"event": "ended"}, None),
        )
        worker.start()
        worker.join()
        await drain()
        await handheld.join_inbound()
        assert received.messages == [Event(kind="ended", params={})]
        await handheld.close()

    @pytest.mark.asyncio
    async def test_failing_request_handler_still_replies(self) -> None:
        _, _, handheld, companion = _linked(timeout=1.0)

        def broken(message):
            raise RuntimeError("catalog offline")

        companion.on_inbound_message(broken)
        handheld.activate()
        companion.activate()
        await drain()

        reply = await handheld.send_request("activities", timeout=0.5)
        assert reply.kind == "activities"
        assert reply.payload["error"] == "RuntimeError: catalog offline"
        await handheld.close()
        await companion.close()

    @pytest.mark.asyncio
    async def test_malformed_request_answered_with_error(self) -> None:
        _, _, handheld, _ = _linked()
        received = _Recorder()
        handheld.on_inbound_message(received)
        handheld.activate()
        await drain()

        replies: list[dict] = []
        handheld.did_receive_message({"request": "schedule", "requestId": 3, "items": [1, 2]}, replies.append)
        await drain()
        await handheld.join_inbound()

        assert received.messages == []
        assert len(replies) == 1
        assert replies[0]["reply"] == "schedule"
        assert replies[0]["requestId"] == 3
        assert "items" in replies[0]["error"]
