"""Counted fan-in join.

A ``FanInJoin`` is created with the fixed set of keys it waits for.  Each key
must report exactly once; ``wait()`` returns the collected results only after
every key has reported.
"""

from __future__ import annotations

import asyncio
from typing import Any, Iterable


class FanInJoin:
    """Barrier keyed by a fixed set of sub-query names.

    Example::

        join = FanInJoin(["a", "b"])
        join.report("a", 1)
        join.report("b", 2)
        results = await join.wait()   # {"a": 1, "b": 2}
    """

    def __init__(self, keys: Iterable[str]) -> None:
        self._keys = frozenset(keys)
        if not self._keys:
            raise ValueError("FanInJoin needs at least one key")
        self._results: dict[str, Any] = {}
        self._complete = asyncio.Event()

    @property
    def keys(self) -> frozenset[str]:
        return self._keys

    @property
    def pending(self) -> frozenset[str]:
        return self._keys - self._results.keys()

    @property
    def is_complete(self) -> bool:
        return self._complete.is_set()

    def report(self, key: str, value: Any) -> None:
        """Record ``value`` for ``key``.

        Raises:
            KeyError:     ``key`` is not one of the join's keys.
            RuntimeError: ``key`` has already reported.
        """
        if key not in self._keys:
            raise KeyError(f"Unknown join key {key!r}")
        if key in self._results:
            raise RuntimeError(f"Join key {key!r} reported twice")
        self._results[key] = value
        if not self.pending:
            self._complete.set()

    async def wait(self) -> dict[str, Any]:
        await self._complete.wait()
        return dict(self._results)
