"""Async helpers for calling the blocking Graph client and sync engine from MCP handlers."""

import asyncio
from typing import Any, Callable, TypeVar

T = TypeVar("T")


async def run_sync(
    func: Callable[..., T], *args: Any, **kwargs: Any
) -> T:
    """Run a blocking function in a worker thread.

    Whole sync runs go through here; the reconciler bounds its own Graph
    concurrency with ``max_parallel_requests``.

    Example:
        result = await run_sync(reconciler.run, dry_run=True)
    """
    return await asyncio.to_thread(func, *args, **kwargs)
