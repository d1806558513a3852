"""
Async helpers for calling blocking SDK and database code from route handlers.

run_sync() pushes the call onto a worker thread so the Stripe SDK and the
ledger's synchronous engine never stall the event loop.
"""

import asyncio
import logging
import time
from typing import Any, Callable, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def run_sync(func: Callable[..., T], *args: Any, timeout: float = 30) -> T:
    """
    Run ``func(*args)`` in the default thread pool and await the result.

    Raises:
        TimeoutError: If the call takes longer than ``timeout`` seconds.
        Exception: Anything ``func`` raises propagates unchanged.
    """
    name = getattr(func, "__qualname__", None) or getattr(func, "__name__", repr(func))
    start = time.perf_counter()
    try:
        result = await asyncio.wait_for(asyncio.to_thread(func, *args), timeout=timeout)
    except asyncio.TimeoutError:
        elapsed = (time.perf_counter() - start) * 1000
        raise TimeoutError(f"{name} timed out after {elapsed:.0f}ms (limit {timeout}s)")

    logger.debug("run_sync %s completed in %.2fms", name, (time.perf_counter() - start) * 1000)
    return result
