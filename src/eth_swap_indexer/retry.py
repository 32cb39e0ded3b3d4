"""Best-effort retry helper for optional lookups."""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import ParamSpec, TypeVar

logger = logging.getLogger(__name__)

P = ParamSpec("P")
T = TypeVar("T")


async def retry_once(
    func: Callable[P, Awaitable[T]],
    *args: P.args,
    **kwargs: P.kwargs,
) -> T | None:
    """Await ``func(*args, **kwargs)``, retrying a single time on failure.

    Every failed attempt is logged. Returns ``None`` when both attempts
    raise, so callers treat the result as an option instead of nesting
    try blocks. ``asyncio.CancelledError`` is never swallowed.
    """
    return await retry_async(func, *args, attempts=2, **kwargs)


async def retry_async(
    func: Callable[..., Awaitable[T]],
    *args: object,
    attempts: int = 2,
    delay: float = 0.0,
    retry_on: tuple[type[Exception], ...] = (Exception,),
    **kwargs: object,
) -> T | None:
    """Await ``func`` up to ``attempts`` times; ``None`` if every attempt fails.

    Args:
        func: Coroutine function to call.
        attempts: Total number of attempts (at least 1).
        delay: Base delay between attempts, doubled each time.
        retry_on: Exception types treated as retryable failures.
    """
    if attempts < 1:
        raise ValueError("attempts must be >= 1")

    name = getattr(func, "__qualname__", repr(func))
    for attempt in range(attempts):
        try:
            return await func(*args, **kwargs)
        except retry_on as e:
            logger.warning(
                "Attempt %d/%d of %s failed: %s",
                attempt + 1,
                attempts,
                name,
                e,
            )
            if attempt < attempts - 1 and delay > 0:
                await asyncio.sleep(delay * (2**attempt))

    return None
