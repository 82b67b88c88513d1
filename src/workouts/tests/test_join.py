"""Tests for the fan-in join used by finalize."""

from __future__ import annotations

import asyncio

import pytest

from src.workouts.aggregation.join import FanInJoin


class TestFanInJoin:
    def test_requires_keys(self) -> None:
        with pytest.raises(ValueError):
            FanInJoin([])

    def test_pending_shrinks(self) -> None:
        join = FanInJoin(["a", "b"])
        join.report("a", 1)
        assert join.pending == frozenset({"b"})
        assert not join.is_complete

    def test_unknown_key_rejected(self) -> None:
        join = FanInJoin(["a"])
        with pytest.raises(KeyError):
            join.report("z", 1)

    def test_duplicate_report_rejected(self) -> None:
        join = FanInJoin(["a", "b"])
        join.report("a", 1)
        with pytest.raises(RuntimeError, match="twice"):
            join.report("a", 2)

    @pytest.mark.asyncio
    async def test_wait_blocks_until_every_key_reports(self) -> None:
        join = FanInJoin(["a", "b", "c"])
        waiter = asyncio.create_task(join.wait())

        join.report("b", 2)
        join.report("a", 1)
        await asyncio.sleep(0)
        assert not waiter.done()

        join.report("c", None)
        assert await asyncio.wait_for(waiter, 1.0) == {"a": 1, "b": 2, "c": None}

    @pytest.mark.asyncio
    async def test_reports_from_concurrent_tasks(self) -> None:
        join = FanInJoin([f"q{i}" for i in range(6)])

        async def worker(i: int) -> None:
            await asyncio.sleep(0.001 * (6 - i))
            join.report(f"q{i}", i)

        await asyncio.gather(*(worker(i) for i in range(6)))
        results = await join.wait()
        assert results == {f"q{i}": i for i in range(6)}
