"""Platform link transport interface.

A transport moves flat wire maps between the two devices.  It reports
activation, reachability and inbound messages to a ``TransportDelegate``;
those callbacks may arrive on any thread, so the ``LinkChannel`` marshals
them onto its serialized context before touching state.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Callable, Protocol

WireMap = dict[str, Any]
ReplyHandler = Callable[[WireMap], None]
ErrorHandler = Callable[[Exception], None]


class TransportDelegate(Protocol):
    def activation_did_complete(self, activated: bool, error: Exception | None) -> None:
        ...

    def reachability_did_change(self, reachable: bool) -> None:
        ...

    def did_receive_message(self, data: WireMap, reply: ReplyHandler | None) -> None:
        """``reply`` is set when the sender waits for an answer."""
        ...


class LinkTransport(ABC):
    """Abstract duplex transport to the paired device."""

    delegate: TransportDelegate | None = None

    def set_delegate(self, delegate: TransportDelegate) -> None:
        self.delegate = delegate

    @property
    @abstractmethod
    def is_reachable(self) -> bool:
        """Whether the peer is currently addressable."""

    @abstractmethod
    def activate(self) -> None:
        """Start activation; completion is reported via the delegate."""

    @abstractmethod
    def send_message(
        self,
        data: WireMap,
        reply_handler: ReplyHandler | None = None,
        error_handler: ErrorHandler | None = None,
    ) -> None:
        """Send ``data`` without blocking.

        With a ``reply_handler`` the peer is expected to answer; exactly one of
        ``reply_handler`` or ``error_handler`` is then called.  Without one the
        send is one-way and only failures are reported.
        """

    async def close(self) -> None:
        """Release transport resources."""
