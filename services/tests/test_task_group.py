"""
Tests for bounded, index-aligned fan-out.
"""

import asyncio

import pytest

from services.utils.task_group import gather_indexed


@pytest.mark.asyncio
async def test_results_aligned_with_input_order() -> None:
    async def value(n: int, delay: float) -> int:
        await asyncio.sleep(delay)
        return n

    results = await gather_indexed([
        lambda: value(1, 0.03),
        lambda: value(2, 0.0),
        lambda: value(3, 0.01),
    ])

    assert results == [1, 2, 3]


@pytest.mark.asyncio
async def test_failure_stays_in_its_slot() -> None:
    async def ok() -> str:
        await asyncio.sleep(0.01)
        return "ok"

    async def boom() -> str:
        raise ValueError("boom")

    results = await gather_indexed([ok, boom, ok])

    assert results[0] == "ok"
    assert isinstance(results[1], ValueError)
    assert results[2] == "ok"


@pytest.mark.asyncio
async def test_limit_bounds_concurrency() -> None:
    running = 0
    peak = 0

    async def work() -> None:
        nonlocal running, peak
        running += 1
        peak = max(peak, running)
        await asyncio.sleep(0.01)
        running -= 1

    await gather_indexed([work] * 6, limit=2)

    assert peak == 2


@pytest.mark.asyncio
async def test_empty_input() -> None:
    assert await gather_indexed([]) == []
