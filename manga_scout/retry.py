"""Bounded linear-backoff retry around one extraction attempt."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional, TypeVar

from .cancellation import CancellationToken
from .errors import ExtractionCancelledError, ExtractionError

logger = logging.getLogger("manga_scout.retry")

T = TypeVar("T")


class RetryManager:
    """Re-invokes an attempt after ``attempt * base_delay`` seconds, up to ``max_attempts``.

    Only errors flagged ``retryable`` are retried; the last error is raised
    unchanged once attempts run out.
    """

    def __init__(self, max_attempts: int = 3, base_delay: float = 2.0) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.attempts = 0

    def delay_for(self, attempt: int) -> float:
        return attempt * self.base_delay

    async def run(
        self,
        operation: Callable[[int], Awaitable[T]],
        token: Optional[CancellationToken] = None,
    ) -> T:
        attempt = 0
        while True:
            attempt += 1
            self.attempts = attempt
            logger.info("Attempt %d of %d", attempt, self.max_attempts)
            try:
                return await operation(attempt)
            except ExtractionError as exc:
                if not exc.retryable or attempt >= self.max_attempts:
                    logger.warning("Attempt %d failed, giving up: %s", attempt, exc)
                    raise
                delay = self.delay_for(attempt)
                logger.info("Attempt %d failed (%s), retrying in %.1fs", attempt, exc.tag, delay)

            if token is not None and token.cancelled:
                raise ExtractionCancelledError("Cancelled before retry")
            await asyncio.sleep(delay)
            if token is not None and token.cancelled:
                raise ExtractionCancelledError("Cancelled during retry backoff")
