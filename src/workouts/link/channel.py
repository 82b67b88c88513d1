"""Link channel: the duplex, reachability-aware connection to the peer device.

State
-----
``ConnectionState.activation`` moves ``NOT_ACTIVATED -> ACTIVATING -> ACTIVATED``
and only goes back at ``close()``.  ``reachable`` is orthogonal and follows the
transport's proximity signal.

Outbound
--------
``send_event()`` is one-way.  While the channel is not activated or the peer
is unreachable the event is appended to the pending queue; ``flush()`` drains
that queue in insertion order whenever the peer becomes reachable or
activation completes.  Delivery is at most once: an event whose send fails
mid-flight is logged and dropped.

``send_request()`` never queues.  It fails with ``LinkUnavailable`` unless the
peer is reachable, and with ``RequestTimeout`` if the reply does not arrive in
time.

Inbound
-------
Transport callbacks are posted onto the serialized context and pushed onto a
single ``asyncio.Queue``.  One consumer task drains it, so the registered
handler sees messages one at a time, in arrival order.
"""

from __future__ import annotations

import asyncio
import inspect
import itertools
import logging
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Mapping, Union

from src.workouts.dispatch import SerialContext
from src.workouts.errors import LinkUnavailable, RequestTimeout, SerializationError, WorkoutError
from src.workouts.link.messages import REQUEST_ID_KEY, REQUEST_KEY, Event, Reply, Request, decode, encode
from src.workouts.link.transport import LinkTransport, ReplyHandler, WireMap

logger = logging.getLogger("pacelink.workouts.link")

ERROR_KEY = "error"

InboundMessage = Union[Request, Event]
InboundHandler = Callable[[InboundMessage], Union[Awaitable[Any], Any]]


class ActivationState(str, Enum):
    NOT_ACTIVATED = "not_activated"
    ACTIVATING = "activating"
    ACTIVATED = "activated"


@dataclass
class ConnectionState:
    activation: ActivationState = ActivationState.NOT_ACTIVATED
    reachable: bool = False


class LinkChannel:
    """Owns the connection to the peer device.

    Args:
        transport:       Platform transport handle, built by the composition root.
        context:         Serialized execution context of this device.
        request_timeout: Default ``send_request`` timeout in seconds.
    """

    def __init__(
        self,
        transport: LinkTransport,
        context: SerialContext,
        request_timeout: float = 5.0,
    ) -> None:
        self.transport = transport
        self.context = context
        self.request_timeout = request_timeout
        self.state = ConnectionState()
        self.pending: deque[Event] = deque()
        self._handler: InboundHandler | None = None
        self._inbound: asyncio.Queue[tuple[WireMap, ReplyHandler | None]] = asyncio.Queue()
        self._consumer: asyncio.Task | None = None
        self._request_ids = itertools.count(1)
        self._listeners: list[Callable[[ConnectionState], None]] = []
        transport.set_delegate(self)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def is_ready(self) -> bool:
        return self.state.activation is ActivationState.ACTIVATED and self.state.reachable

    def activate(self) -> None:
        """Start activation.  Calling it again while activating or activated is a no-op."""
        if self._consumer is None:
            self._consumer = asyncio.get_running_loop().create_task(self._consume())
        if self.state.activation is not ActivationState.NOT_ACTIVATED:
            return
        self.state.activation = ActivationState.ACTIVATING
        logger.info("Activating link")
        self.transport.activate()

    async def close(self) -> None:
        if self._consumer is not None:
            self._consumer.cancel()
            try:
                await self._consumer
            except asyncio.CancelledError:
                pass
            self._consumer = None
        if self.pending:
            logger.warning("Closing link with %d unsent event(s)", len(self.pending))
            self.pending.clear()
        self.state = ConnectionState()
        await self.transport.close()

    def add_listener(self, listener: Callable[[ConnectionState], None]) -> None:
        """Call ``listener`` on the serialized context after every state change."""
        self._listeners.append(listener)

    def on_inbound_message(self, handler: InboundHandler) -> None:
        """Register the single handler for inbound requests and events.

        A handler's return value for a ``Request`` is sent back as the reply
        payload.  Registering again replaces the previous handler.
        """
        self._handler = handler

    # ------------------------------------------------------------------
    # Transport delegate (any thread)
    # ------------------------------------------------------------------

    def activation_did_complete(self, activated: bool, error: Exception | None) -> None:
        self.context.post(self._on_activation, activated, error)

    def reachability_did_change(self, reachable: bool) -> None:
        self.context.post(self._on_reachability, reachable)

    def did_receive_message(self, data: WireMap, reply: ReplyHandler | None) -> None:
        self.context.post(self._inbound.put_nowait, (data, reply))

    # ------------------------------------------------------------------
    # State transitions (serialized context)
    # ------------------------------------------------------------------

    def _on_activation(self, activated: bool, error: Exception | None) -> None:
        if not activated or error is not None:
            logger.warning("Link activation failed: %s", error)
            self.state.activation = ActivationState.NOT_ACTIVATED
            self._notify()
            return
        self.state.activation = ActivationState.ACTIVATED
        self.state.reachable = self.transport.is_reachable
        logger.info("Link activated (reachable=%s)", self.state.reachable)
        self._notify()
        self.flush()

    def _on_reachability(self, reachable: bool) -> None:
        was_reachable = self.state.reachable
        self.state.reachable = reachable
        if was_reachable != reachable:
            logger.info("Peer %s", "reachable" if reachable else "unreachable")
        self._notify()
        if reachable and not was_reachable:
            self.flush()

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener(self.state)
            except Exception:  # noqa: BLE001
                logger.exception("Link state listener failed")

    # ------------------------------------------------------------------
    # Outbound
    # ------------------------------------------------------------------

    def send_event(self, kind: str, params: Mapping[str, Any] | None = None) -> None:
        """Send a one-way event, queueing it while the peer cannot receive.

        Raises:
            SerializationError: ``params`` cannot be carried on the wire.
        """
        event = Event(kind=kind, params=dict(params or {}))
        encode(event)
        if not self.is_ready or self.pending:
            self.pending.append(event)
            logger.debug("Queued %s event (%d pending)", kind, len(self.pending))
            # Events queued earlier go out first
            self.flush()
            return
        self._send_one_way(event)

    def flush(self) -> int:
        """Drain the pending queue in insertion order.  Returns the number sent."""
        if not self.is_ready or not self.pending:
            return 0
        sent = 0
        while self.pending and self.is_ready:
            self._send_one_way(self.pending.popleft())
            sent += 1
        logger.info("Flushed %d queued event(s)", sent)
        return sent

    def _send_one_way(self, event: Event) -> None:
        def _failed(exc: Exception) -> None:
            self.context.post(logger.warning, "Dropped %s event: %s", event.kind, exc)

        try:
            self.transport.send_message(encode(event), error_handler=_failed)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Dropped %s event: %s", event.kind, exc)

    async def send_request(
        self,
        kind: str,
        params: Mapping[str, Any] | None = None,
        timeout: float | None = None,
    ) -> Reply:
        """Send a request and wait for its reply.

        Raises:
            LinkUnavailable:    The peer is not reachable (nothing is queued).
            RequestTimeout:     No reply within ``timeout`` seconds.
            SerializationError: The reply was malformed.
        """
        if not self.is_ready:
            raise LinkUnavailable(f"Cannot send '{kind}' request: peer not reachable")
        timeout = self.request_timeout if timeout is None else timeout
        request = Request(kind=kind, params=dict(params or {}), request_id=next(self._request_ids))
        data = encode(request)
        future = self.context.loop.create_future()

        def _on_reply(answer: WireMap) -> None:
            try:
                reply = decode(answer)
                if not isinstance(reply, Reply):
                    raise SerializationError(f"Expected a reply to '{kind}', got {type(reply).__name__}")
            except SerializationError as exc:
                self.context.resolve(future, error=exc)
                return
            self.context.resolve(future, reply)

        def _on_error(exc: Exception) -> None:
            if not isinstance(exc, WorkoutError):
                exc = LinkUnavailable(f"'{kind}' request failed: {exc}")
            self.context.resolve(future, error=exc)

        self.transport.send_message(data, reply_handler=_on_reply, error_handler=_on_error)
        try:
            return await asyncio.wait_for(future, timeout)
        except asyncio.TimeoutError:
            logger.warning("Request %s #%d timed out after %.1fs", kind, request.request_id, timeout)
            raise RequestTimeout(kind, timeout) from None

    # ------------------------------------------------------------------
    # Inbound
    # ------------------------------------------------------------------

    async def join_inbound(self) -> None:
        """Wait until every queued inbound message has been handled."""
        await self._inbound.join()

    async def _consume(self) -> None:
        while True:
            data, reply = await self._inbound.get()
            try:
                await self._dispatch(data, reply)
            except Exception:  # noqa: BLE001
                logger.exception("Inbound handler failed")
            finally:
                self._inbound.task_done()

    async def _dispatch(self, data: WireMap, reply: ReplyHandler | None) -> None:
        try:
            message = decode(data)
        except SerializationError as exc:
            logger.warning("Dropping malformed inbound message: %s", exc)
            self._reject(data, reply, str(exc))
            return
        if isinstance(message, Reply):
            logger.warning("Dropping unsolicited %s reply", message.kind)
            return
        if self._handler is None:
            logger.warning("No inbound handler registered; dropping %s", message.kind)
            self._answer(message, reply, {ERROR_KEY: "no handler"})
            return

        try:
            result = self._handler(message)
            if inspect.isawaitable(result):
                result = await result
        except SerializationError as exc:
            logger.warning("Dropping malformed %s message: %s", message.kind, exc)
            self._answer(message, reply, {ERROR_KEY: str(exc)})
            return
        except WorkoutError as exc:
            logger.warning("Handling %s failed: %s", message.kind, exc)
            self._answer(message, reply, {ERROR_KEY: str(exc)})
            return
        except Exception as exc:  # noqa: BLE001
            logger.exception("Inbound %s handler failed", message.kind)
            self._answer(message, reply, {ERROR_KEY: f"{type(exc).__name__}: {exc}"})
            return
        self._answer(message, reply, result or {})

    @staticmethod
    def _reject(data: WireMap, reply: ReplyHandler | None, reason: str) -> None:
        """Answer an undecodable request so the sender does not wait out its timeout."""
        if reply is None or not isinstance(data, Mapping):
            return
        kind = data.get(REQUEST_KEY)
        request_id = data.get(REQUEST_ID_KEY)
        if not isinstance(request_id, int) or isinstance(request_id, bool):
            request_id = 0
        reply(
            encode(
                Reply(
                    kind=kind if isinstance(kind, str) and kind else "unknown",
                    payload={ERROR_KEY: reason},
                    request_id=request_id,
                )
            )
        )

    @staticmethod
    def _answer(message: InboundMessage, reply: ReplyHandler | None, payload: Mapping[str, Any]) -> None:
        if not isinstance(message, Request) or reply is None:
            return
        try:
            data = encode(Reply(kind=message.kind, payload=dict(payload), request_id=message.request_id))
        except SerializationError as exc:
            logger.error("Reply to %s is not wire-safe: %s", message.kind, exc)
            data = encode(Reply(kind=message.kind, payload={ERROR_KEY: str(exc)}, request_id=message.request_id))
        reply(data)
