"""Paired in-process transports.

``LoopbackTransport.pair()`` returns two transports wired to each other on the
same event loop.  Reachability is shared by the pair and toggled with
``set_reachable()``; every one-way send and request is recorded in ``sent``.
"""

from __future__ import annotations

import asyncio
import logging

from src.workouts.errors import LinkUnavailable
from src.workouts.link.transport import ErrorHandler, LinkTransport, ReplyHandler, WireMap

logger = logging.getLogger("pacelink.workouts.link.loopback")


class _SharedLink:
    def __init__(self, reachable: bool) -> None:
        self.reachable = reachable


class LoopbackTransport(LinkTransport):
    def __init__(self, name: str, shared: _SharedLink) -> None:
        self.name = name
        self._shared = shared
        self._peer: LoopbackTransport | None = None
        self.activated = False
        self.sent: list[WireMap] = []
        self.fail_next_sends = 0
        self.unanswered: list[WireMap] = []
        self.answer_requests = True

    @classmethod
    def pair(cls, reachable: bool = True) -> tuple["LoopbackTransport", "LoopbackTransport"]:
        shared = _SharedLink(reachable)
        handheld = cls("handheld", shared)
        companion = cls("companion", shared)
        handheld._peer = companion
        companion._peer = handheld
        return handheld, companion

    @property
    def is_reachable(self) -> bool:
        return self._shared.reachable

    def set_reachable(self, reachable: bool) -> None:
        """Toggle reachability for both ends and notify both delegates."""
        if self._shared.reachable == reachable:
            return
        self._shared.reachable = reachable
        for transport in (self, self._peer):
            if transport is not None and transport.delegate is not None:
                transport.delegate.reachability_did_change(reachable)

    def activate(self) -> None:
        loop = asyncio.get_running_loop()

        def _complete() -> None:
            self.activated = True
            if self.delegate is not None:
                self.delegate.activation_did_complete(True, None)

        loop.call_soon(_complete)

    def send_message(
        self,
        data: WireMap,
        reply_handler: ReplyHandler | None = None,
        error_handler: ErrorHandler | None = None,
    ) -> None:
        loop = asyncio.get_running_loop()
        self.sent.append(dict(data))
        if not self._shared.reachable:
            self._fail(loop, error_handler, LinkUnavailable(f"{self.name}: peer not reachable"))
            return
        if self.fail_next_sends > 0:
            self.fail_next_sends -= 1
            self._fail(loop, error_handler, ConnectionError(f"{self.name}: send interrupted"))
            return
        peer = self._peer
        if peer is None or peer.delegate is None:
            self._fail(loop, error_handler, LinkUnavailable(f"{self.name}: no peer attached"))
            return
        if reply_handler is not None and not peer.answer_requests:
            peer.unanswered.append(dict(data))
            return
        reply: ReplyHandler | None = None
        if reply_handler is not None:
            reply = lambda answer: loop.call_soon(reply_handler, dict(answer))  # noqa: E731
        loop.call_soon(peer.delegate.did_receive_message, dict(data), reply)

    @staticmethod
    def _fail(loop: asyncio.AbstractEventLoop, handler: ErrorHandler | None, error: Exception) -> None:
        if handler is not None:
            loop.call_soon(handler, error)
        else:
            logger.debug("Loopback send failed: %s", error)
