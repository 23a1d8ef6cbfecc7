"""Retry wrapper for flaky async calls (embedding providers)."""

import asyncio
import logging
from typing import Awaitable, Callable, Sequence, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def retry_async(
    func: Callable[[], Awaitable[T]],
    delays: Sequence[float] = (1.0, 2.0, 4.0),
    retry_on: tuple[type[BaseException], ...] = (Exception,),
    operation: str = "operation",
) -> T:
    """Call ``func`` until it succeeds, sleeping ``delays[i]`` before retry i+1.

    Total attempts are ``len(delays) + 1``. The last error is re-raised.

    Args:
        func: Zero-argument coroutine factory.
        delays: Seconds to wait before each retry.
        retry_on: Exception types worth retrying; anything else propagates.
        operation: Label used in log messages.
    """
    attempts = len(delays) + 1
    for attempt in range(attempts):
        if attempt > 0:
            await asyncio.sleep(delays[attempt - 1])
        try:
            return await func()
        except retry_on as e:
            if attempt == attempts - 1:
                logger.error("%s failed after %d attempts: %s", operation, attempts, e)
                raise
            logger.warning("%s attempt %d/%d failed: %s", operation, attempt + 1, attempts, e)

    raise RuntimeError("unreachable")
