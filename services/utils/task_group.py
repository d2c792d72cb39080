"""
Bounded fan-out over coroutine factories with index-aligned results
"""
import asyncio
from typing import Any, Awaitable, Callable, List, Optional, Sequence


async def gather_indexed(
    factories: Sequence[Callable[[], Awaitable[Any]]],
    limit: Optional[int] = None,
) -> List[Any]:
    """
    Run one task per factory and wait for all of them.

    At most `limit` tasks are in flight at once (no bound when None). The
    returned list is aligned with `factories`: slot i holds the value of task i,
    or the exception it raised. A failing task never affects its siblings.
    """
    if not factories:
        return []

    semaphore = asyncio.Semaphore(limit) if limit else None

    async def run(factory: Callable[[], Awaitable[Any]]) -> Any:
        if semaphore is None:
            return await factory()
        async with semaphore:
            return await factory()

    tasks = [run(factory) for factory in factories]
    return await asyncio.gather(*tasks, return_exceptions=True)
