"""Exponential backoff for transient storage failures."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import TypeVar

import structlog

from catmap.errors import StorageUnavailableError

logger = structlog.get_logger()

T = TypeVar("T")


async def retry_async(
    fn: Callable[[], Awaitable[T]],
    *,
    op: str,
    attempts: int = 5,
    base_delay: float = 0.05,
    max_delay: float = 2.0,
    event: str = "storage_retry",
) -> T:
    """Call ``fn`` until it succeeds, retrying only StorageUnavailableError.

    Only idempotent operations (or single remaining steps of a multi-step
    sequence) may be passed here. Raises the last error once attempts run out.
    """
    for attempt in range(attempts):
        try:
            return await fn()
        except StorageUnavailableError:
            if attempt == attempts - 1:
                logger.error("storage_retry_exhausted", op=op, attempts=attempts)
                raise
            delay = min(max_delay, base_delay * (2 ** attempt))
            logger.warning(event, op=op, attempt=attempt + 1, delay=delay)
            await asyncio.sleep(delay)
    msg = f"{op}: no attempts made"
    raise StorageUnavailableError(msg)
