from __future__ import annotations

import asyncio

import pytest

from pymarkers.exceptions import ConcurrencyConflictError
from pymarkers.state.locks import KeyedLock


@pytest.mark.asyncio
async def test_same_key_is_serialized() -> None:
    locks = KeyedLock(timeout=1.0)
    order: list[str] = []

    async def worker(name: str) -> None:
        async with locks.hold("m1"):
            order.append(f"{name}-in")
            await asyncio.sleep(0.01)
            order.append(f"{name}-out")

    await asyncio.gather(worker("a"), worker("b"))
    assert order == ["a-in", "a-out", "b-in", "b-out"]


@pytest.mark.asyncio
async def test_disjoint_keys_do_not_block() -> None:
    locks = KeyedLock(timeout=0.05)
    async with locks.hold("m1"):
        async with locks.hold("m2"):
            assert len(locks) == 2


@pytest.mark.asyncio
async def test_timeout_raises_concurrency_conflict() -> None:
    locks = KeyedLock(timeout=0.05)
    async with locks.hold("hot"):
        with pytest.raises(ConcurrencyConflictError) as exc_info:
            async with locks.hold("hot"):
                pass  # pragma: no cover
    assert exc_info.value.marker_id == "hot"


@pytest.mark.asyncio
async def test_idle_locks_are_dropped() -> None:
    locks = KeyedLock(timeout=1.0)
    async with locks.hold("m1"):
        assert len(locks) == 1
    assert len(locks) == 0

    async with locks.hold(None):
        assert len(locks) == 0
