"""Tests for the HTTP link transport with a mocked httpx client."""

from __future__ import annotations

import asyncio
from unittest.mock import MagicMock

import httpx
import pytest

from src.workouts.dispatch import SerialContext
from src.workouts.errors import LinkUnavailable, RequestTimeout
from src.workouts.link.channel import LinkChannel
from src.workouts.link.http_transport import MESSAGES_PATH, PING_PATH, HttpLinkTransport
from src.workouts.tests.conftest import drain

PEER = "http://companion.local:8001"


class _Delegate:
    """Records transport callbacks; optionally answers requests."""

    def __init__(self, answer: dict | None = None) -> None:
        self.activations: list[tuple[bool, Exception | None]] = []
        self.reachability: list[bool] = []
        self.messages: list[dict] = []
        self.answer = answer

    def activation_did_complete(self, activated: bool, error: Exception | None) -> None:
        self.activations.append((activated, error))

    def reachability_did_change(self, reachable: bool) -> None:
        self.reachability.append(reachable)

    def did_receive_message(self, data, reply) -> None:
        self.messages.append(data)
        if reply is not None and self.answer is not None:
            reply(self.answer)


def _transport(client: MagicMock, **kwargs) -> tuple[HttpLinkTransport, _Delegate]:
    transport = HttpLinkTransport(PEER + "/", client=client, **kwargs)
    delegate = _Delegate()
    transport.set_delegate(delegate)
    return transport, delegate


# ---------------------------------------------------------------------------
# Reachability
# ---------------------------------------------------------------------------


class TestProbe:
    @pytest.mark.asyncio
    async def test_ping_success_marks_reachable(self, mock_httpx_client: MagicMock) -> None:
        transport, delegate = _transport(mock_httpx_client)
        assert await transport.probe_once() is True
        assert transport.is_reachable
        assert delegate.reachability == [True]
        mock_httpx_client.get.assert_called_once()
        assert mock_httpx_client.get.call_args.args[0] == f"{PEER}{PING_PATH}"

    @pytest.mark.asyncio
    async def test_ping_non_200_is_unreachable(self, mock_httpx_client: MagicMock) -> None:
        mock_httpx_client.get.return_value.status_code = 503
        transport, delegate = _transport(mock_httpx_client)
        assert await transport.probe_once() is False
        assert delegate.reachability == []

    @pytest.mark.asyncio
    async def test_ping_error_flips_reachability(self, mock_httpx_client: MagicMock) -> None:
        transport, delegate = _transport(mock_httpx_client)
        await transport.probe_once()
        mock_httpx_client.get.side_effect = httpx.ConnectError("refused")
        assert await transport.probe_once() is False
        assert delegate.reachability == [True, False]

    @pytest.mark.asyncio
    async def test_activate_reports_and_pings(self, mock_httpx_client: MagicMock) -> None:
        transport, delegate = _transport(mock_httpx_client, probe_interval=0.01)
        transport.activate()
        await drain()
        assert delegate.activations == [(True, None)]
        assert transport.is_reachable
        await transport.close()
        mock_httpx_client.aclose.assert_not_called()


# ---------------------------------------------------------------------------
# Outbound
# ---------------------------------------------------------------------------


class TestSend:
    @pytest.mark.asyncio
    async def test_request_reply_from_response_body(self, mock_httpx_client: MagicMock) -> None:
        answer = {"reply": "schedule", "requestId": 4, "dayName": "Monday"}
        mock_httpx_client.post.return_value.json.return_value = answer
        transport, _ = _transport(mock_httpx_client)
        replies: list[dict] = []

        transport.send_message({"request": "schedule", "requestId": 4}, reply_handler=replies.append)
        await drain()

        assert replies == [answer]
        url = mock_httpx_client.post.call_args.args[0]
        assert url == f"{PEER}{MESSAGES_PATH}"
        assert mock_httpx_client.post.call_args.kwargs["json"] == {"request": "schedule", "requestId": 4}

    @pytest.mark.asyncio
    async def test_connect_error_marks_unreachable(self, mock_httpx_client: MagicMock) -> None:
        transport, delegate = _transport(mock_httpx_client)
        await transport.probe_once()
        mock_httpx_client.post.side_effect = httpx.ConnectError("gone")
        errors: list[Exception] = []

        transport.send_message({"event": "ended"}, error_handler=errors.append)
        await drain()

        assert len(errors) == 1
        assert isinstance(errors[0], LinkUnavailable)
        assert not transport.is_reachable
        assert delegate.reachability == [True, False]

    @pytest.mark.asyncio
    async def test_http_status_error_keeps_reachability(self, mock_httpx_client: MagicMock) -> None:
        transport, _ = _transport(mock_httpx_client)
        await transport.probe_once()
        mock_httpx_client.post.return_value.raise_for_status.side_effect = httpx.HTTPStatusError(
            "409 Conflict", request=MagicMock(), response=MagicMock()
        )
        errors: list[Exception] = []

        transport.send_message({"event": "metrics"}, error_handler=errors.append)
        await drain()

        assert isinstance(errors[0], LinkUnavailable)
        assert transport.is_reachable


# ---------------------------------------------------------------------------
# Inbound
# ---------------------------------------------------------------------------


class TestReceive:
    @pytest.mark.asyncio
    async def test_event_has_no_reply(self, mock_httpx_client: MagicMock) -> None:
        transport, delegate = _transport(mock_httpx_client)
        assert await transport.receive({"event": "ended"}) is None
        assert delegate.messages == [{"event": "ended"}]
        assert transport.is_reachable

    @pytest.mark.asyncio
    async def test_request_returns_reply(self, mock_httpx_client: MagicMock) -> None:
        transport, delegate = _transport(mock_httpx_client)
        delegate.answer = {"reply": "activities", "requestId": 2}
        reply = await transport.receive({"request": "activities", "requestId": 2})
        assert reply == {"reply": "activities", "requestId": 2}

    @pytest.mark.asyncio
    async def test_unanswered_request_times_out(self, mock_httpx_client: MagicMock) -> None:
        transport, _ = _transport(mock_httpx_client, request_timeout=0.05)
        with pytest.raises(RequestTimeout):
            await transport.receive({"request": "schedule", "requestId": 1})

    @pytest.mark.asyncio
    async def test_receive_without_delegate(self, mock_httpx_client: MagicMock) -> None:
        transport = HttpLinkTransport(PEER, client=mock_httpx_client)
        with pytest.raises(LinkUnavailable):
            await transport.receive({"event": "metrics"})


class TestChannelOverHttp:
    @pytest.mark.asyncio
    async def test_send_request_through_channel(self, mock_httpx_client: MagicMock) -> None:
        mock_httpx_client.post.return_value.json.return_value = {
            "reply": "activities",
            "requestId": 1,
            "hasActiveSession": False,
        }
        transport = HttpLinkTransport(PEER, client=mock_httpx_client, probe_interval=60)
        channel = LinkChannel(transport, SerialContext(), request_timeout=1.0)
        channel.activate()
        await drain()

        reply = await channel.send_request("activities")
        assert reply.payload == {"hasActiveSession": False}
        await channel.close()

    @pytest.mark.asyncio
    async def test_malformed_inbound_request_fails_fast(self, mock_httpx_client: MagicMock) -> None:
        transport = HttpLinkTransport(PEER, client=mock_httpx_client, probe_interval=60, request_timeout=5.0)
        channel = LinkChannel(transport, SerialContext())
        channel.on_inbound_message(lambda message: {})
        channel.activate()
        await drain()

        reply = await asyncio.wait_for(
            transport.receive({"request": "schedule", "requestId": 9, "event": "metrics"}),
            timeout=1.0,
        )
        assert reply["requestId"] == 9
        assert "error" in reply
        await channel.close()
