"""Serialized execution context for one device.

All mutable state (connection state, live snapshot, session state) is touched
only from the device's asyncio event loop.  Platform callbacks may arrive on
arbitrary worker threads; they are re-marshalled onto the loop with
``post()`` before they run.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable

logger = logging.getLogger("pacelink.workouts.dispatch")


class SerialContext:
    """Marshal callbacks onto a single asyncio event loop.

    The loop is bound lazily from the first call made inside a running loop,
    or explicitly with ``bind()`` by the composition root.
    """

    def __init__(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        self._loop = loop

    def bind(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        self._loop = loop or asyncio.get_running_loop()

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop

    def is_current(self) -> bool:
        """True when called from the bound loop's thread while it is running."""
        try:
            return asyncio.get_running_loop() is self.loop
        except RuntimeError:
            return False

    def post(self, fn: Callable[..., Any], *args: Any) -> None:
        """Schedule ``fn(*args)`` on the serialized context.  Safe from any thread."""
        loop = self.loop
        if loop.is_closed():
            logger.debug("Dropping %s: event loop closed", getattr(fn, "__name__", fn))
            return
        loop.call_soon_threadsafe(fn, *args)

    def resolve(self, future: asyncio.Future, value: Any = None, error: BaseException | None = None) -> None:
        """Complete ``future`` from any thread, at most once."""

        def _complete() -> None:
            if future.cancelled():
                return
            if future.done():
                logger.warning("Ignoring duplicate completion for %r", future)
                return
            if error is not None:
                future.set_exception(error)
            else:
                future.set_result(value)

        self.post(_complete)
