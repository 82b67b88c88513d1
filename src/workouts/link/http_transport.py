"""Link transport over HTTP.

Outbound maps are POSTed as JSON to ``{peer_url}/link/messages``; a request's
reply comes back in the HTTP response body.  Reachability is driven by a probe
loop hitting ``{peer_url}/link/ping``.  Inbound maps arrive through the
``/link/messages`` router, which hands them to ``receive()``.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import httpx

from src.workouts.errors import LinkUnavailable, RequestTimeout
from src.workouts.link.messages import REQUEST_KEY
from src.workouts.link.transport import ErrorHandler, LinkTransport, ReplyHandler, WireMap

logger = logging.getLogger("pacelink.workouts.link.http")

MESSAGES_PATH = "/link/messages"
PING_PATH = "/link/ping"


class HttpLinkTransport(LinkTransport):
    """HTTP transport using a shared ``httpx.AsyncClient``.

    Args:
        peer_url:        Base URL of the peer device's API.
        probe_interval:  Seconds between reachability probes.
        probe_timeout:   Timeout for a single probe.
        request_timeout: Upper bound for one POST, and for answering an inbound request.
        client:          Optional pre-built client (tests inject a mock).
    """

    def __init__(
        self,
        peer_url: str,
        probe_interval: float = 2.0,
        probe_timeout: float = 1.0,
        request_timeout: float = 5.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.peer_url = peer_url.rstrip("/")
        self.probe_interval = probe_interval
        self.probe_timeout = probe_timeout
        self.request_timeout = request_timeout
        self._client = client
        self._owns_client = client is None
        self._reachable = False
        self._probe_task: asyncio.Task | None = None
        self._sends: set[asyncio.Task] = set()

    @property
    def is_reachable(self) -> bool:
        return self._reachable

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.request_timeout)
        return self._client

    # ------------------------------------------------------------------
    # Activation / reachability
    # ------------------------------------------------------------------

    def activate(self) -> None:
        loop = asyncio.get_running_loop()
        self.client  # built before the first probe
        if self._probe_task is None:
            self._probe_task = loop.create_task(self._probe_loop())
        if self.delegate is not None:
            loop.call_soon(self.delegate.activation_did_complete, True, None)

    async def probe_once(self) -> bool:
        """Ping the peer once and update reachability."""
        try:
            response = await self.client.get(f"{self.peer_url}{PING_PATH}", timeout=self.probe_timeout)
            reachable = response.status_code == 200
        except httpx.HTTPError as exc:
            logger.debug("Probe of %s failed: %s", self.peer_url, exc)
            reachable = False
        self._set_reachable(reachable)
        return reachable

    async def _probe_loop(self) -> None:
        while True:
            await self.probe_once()
            await asyncio.sleep(self.probe_interval)

    def _set_reachable(self, reachable: bool) -> None:
        if reachable == self._reachable:
            return
        self._reachable = reachable
        if self.delegate is not None:
            self.delegate.reachability_did_change(reachable)

    # ------------------------------------------------------------------
    # Outbound
    # ------------------------------------------------------------------

    def send_message(
        self,
        data: WireMap,
        reply_handler: ReplyHandler | None = None,
        error_handler: ErrorHandler | None = None,
    ) -> None:
        task = asyncio.get_running_loop().create_task(self._post(dict(data), reply_handler, error_handler))
        self._sends.add(task)
        task.add_done_callback(self._sends.discard)

    async def _post(
        self,
        data: WireMap,
        reply_handler: ReplyHandler | None,
        error_handler: ErrorHandler | None,
    ) -> None:
        try:
            response = await self.client.post(f"{self.peer_url}{MESSAGES_PATH}", json=data)
            response.raise_for_status()
            answer: Any = response.json() if reply_handler is not None else None
        except httpx.TransportError as exc:
            self._set_reachable(False)
            self._report(error_handler, LinkUnavailable(f"Peer unreachable: {exc}"))
            return
        except (httpx.HTTPError, ValueError) as exc:
            self._report(error_handler, LinkUnavailable(f"Peer rejected message: {exc}"))
            return
        if reply_handler is not None:
            reply_handler(answer if isinstance(answer, dict) else {})

    @staticmethod
    def _report(handler: ErrorHandler | None, error: Exception) -> None:
        if handler is not None:
            handler(error)
        else:
            logger.warning("One-way send failed: %s", error)

    # ------------------------------------------------------------------
    # Inbound
    # ------------------------------------------------------------------

    async def receive(self, data: WireMap) -> WireMap | None:
        """Hand an inbound map to the delegate; return the reply for requests.

        Raises:
            LinkUnavailable: No delegate is attached.
            RequestTimeout:  The local handler did not answer in time.
        """
        if self.delegate is None:
            raise LinkUnavailable("Link not attached")
        self._set_reachable(True)
        if REQUEST_KEY not in data:
            self.delegate.did_receive_message(data, None)
            return None

        loop = asyncio.get_running_loop()
        future: asyncio.Future = loop.create_future()

        def _reply(answer: WireMap) -> None:
            def _set() -> None:
                if not future.done():
                    future.set_result(answer)

            loop.call_soon_threadsafe(_set)

        self.delegate.did_receive_message(data, _reply)
        try:
            return await asyncio.wait_for(future, self.request_timeout)
        except asyncio.TimeoutError:
            raise RequestTimeout(str(data.get(REQUEST_KEY)), self.request_timeout) from None

    async def close(self) -> None:
        if self._probe_task is not None:
            self._probe_task.cancel()
            try:
                await self._probe_task
            except asyncio.CancelledError:
                pass
            self._probe_task = None
        for task in list(self._sends):
            task.cancel()
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
