import asyncio
from typing import Any, Awaitable, Iterable, List


async def gather_or_cancel(aws: Iterable[Awaitable[Any]]) -> List[Any]:
    """
    Runs awaitables concurrently and returns their results in order.

    If one of them fails, the others are cancelled and awaited before the
    first error is re-raised, so no sibling keeps running (or holding a
    concurrency slot) after the caller has given up.
    """
    tasks = [asyncio.ensure_future(aw) for aw in aws]
    try:
        return list(await asyncio.gather(*tasks))
    except BaseException:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise
