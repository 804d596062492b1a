"""Tests for the per-item media load coordinator."""

import asyncio

import pytest
from hypothesis import given, settings, strategies as st

from adaptive_media.modules.playback.exceptions import LoadCancelled
from adaptive_media.modules.playback.loader import MediaLoadCoordinator


def gated(value, gate: asyncio.Event, started: asyncio.Event):
    async def loader():
        started.set()
        await gate.wait()
        return value

    return loader


class TestMediaLoadCoordinator:
    """Only the newest load for an item completes and stores its result."""

    @pytest.mark.asyncio
    async def test_new_load_cancels_previous(self) -> None:
        coordinator = MediaLoadCoordinator()
        gate, started = asyncio.Event(), asyncio.Event()

        first = asyncio.create_task(coordinator.load("item", gated("old", gate, started)))
        await started.wait()

        async def fresh():
            return "new"

        assert await coordinator.load("item", fresh) == "new"
        with pytest.raises(LoadCancelled):
            await first
        assert coordinator.result("item") == "new"
        assert not coordinator.is_loading("item")

    @pytest.mark.asyncio
    @given(count=st.integers(min_value=2, max_value=8))
    @settings(max_examples=100)
    async def test_only_latest_result_stored(self, count: int) -> None:
        coordinator = MediaLoadCoordinator()
        gate = asyncio.Event()
        tasks = []
        for i in range(count):
            started = asyncio.Event()
            tasks.append(asyncio.create_task(coordinator.load("item", gated(i, gate, started))))
            await started.wait()

        gate.set()
        results = await asyncio.gather(*tasks, return_exceptions=True)

        assert all(isinstance(r, LoadCancelled) for r in results[:-1])
        assert results[-1] == count - 1
        assert coordinator.result("item") == count - 1

    @pytest.mark.asyncio
    async def test_items_are_independent(self) -> None:
        coordinator = MediaLoadCoordinator()

        async def load(value):
            return value

        assert await coordinator.load("a", lambda: load(1)) == 1
        assert await coordinator.load("b", lambda: load(2)) == 2
        assert (coordinator.result("a"), coordinator.result("b")) == (1, 2)

        coordinator.forget("a")
        assert coordinator.result("a") is None

    @pytest.mark.asyncio
    async def test_cancel_and_close(self) -> None:
        coordinator = MediaLoadCoordinator()
        gate = asyncio.Event()
        started_a, started_b = asyncio.Event(), asyncio.Event()

        a = asyncio.create_task(coordinator.load("a", gated("a", gate, started_a)))
        b = asyncio.create_task(coordinator.load("b", gated("b", gate, started_b)))
        await started_a.wait()
        await started_b.wait()

        assert coordinator.cancel("a") is True
        assert coordinator.cancel("missing") is False
        with pytest.raises(LoadCancelled):
            await a
        assert coordinator.result("a") is None

        await coordinator.close()
        with pytest.raises(LoadCancelled):
            await b
        assert not coordinator.is_loading("b")

    @pytest.mark.asyncio
    async def test_loader_errors_propagate(self) -> None:
        coordinator = MediaLoadCoordinator()

        async def broken():
            raise ConnectionError("network down")

        with pytest.raises(ConnectionError):
            await coordinator.load("item", broken)
        assert coordinator.result("item") is None
        assert not coordinator.is_loading("item")
