"""Retry with exponential backoff for async operations."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, TypeVar

from store.errors import is_transient as default_is_transient

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def retry_with_backoff(
    operation: Callable[[], Awaitable[T]],
    retries: int = 3,
    base_delay: float = 1.0,
    is_transient: Callable[[BaseException], bool] = default_is_transient,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """
    Run `operation` until it succeeds, retrying transient failures.

    Args:
        operation: Zero-argument coroutine factory; called once per attempt.
        retries: Additional attempts after the first one.
        base_delay: Seconds to wait before the first retry; doubles each time.
        is_transient: Classifies an error as retryable.
        sleep: Awaitable used to wait between attempts.

    Returns:
        The result of the first successful attempt.

    Raises:
        The first non-transient error, or the last transient one once the
        retries are exhausted.
    """
    attempt = 0
    while True:
        try:
            return await operation()
        except Exception as e:
            if not is_transient(e) or attempt >= retries:
                raise
            delay = base_delay * (2 ** attempt)
            attempt += 1
            logger.warning(f"Attempt {attempt} failed ({e}); retrying in {delay:g}s")
            await sleep(delay)
