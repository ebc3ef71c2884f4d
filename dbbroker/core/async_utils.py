"""Bridge from async routes to the blocking store and engine drivers."""

import asyncio
import functools
import logging
import time
from typing import Any, Callable, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def run_sync(func: Callable[..., T], *args: Any, timeout: float = 30, **kwargs: Any) -> T:
    """Await ``func(*args, **kwargs)`` on the default executor.

    ``asyncio.to_thread`` copies the current context, so request and
    correlation ids stay bound inside the worker thread. The thread itself
    is not cancelled on timeout; the driver's own connect timeout ends it.

    Raises:
        TimeoutError: the call did not finish within *timeout* seconds.
    """
    label = getattr(func, "__qualname__", None) or repr(func)
    started = time.perf_counter()
    try:
        return await asyncio.wait_for(
            asyncio.to_thread(functools.partial(func, *args, **kwargs)),
            timeout=timeout,
        )
    except asyncio.TimeoutError:
        raise TimeoutError(f"{label} did not finish within {timeout}s") from None
    finally:
        logger.debug("run_sync %s took %.1fms", label, (time.perf_counter() - started) * 1000)
