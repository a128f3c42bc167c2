"""Retry policy with exponential backoff.

The collector itself never retries. Callers that want retries (the
dashboard's single-node refresh, for instance) wrap a call explicitly.
"""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _default_jitter() -> float:
    return random.uniform(0.0, 1.0)


@dataclass(frozen=True)
class RetryPolicy:
    """How many times to try, and how long to wait in between (seconds)."""

    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 10.0
    jitter: Callable[[], float] = field(default=_default_jitter, compare=False)
    retry_on: tuple[type[BaseException], ...] = (Exception,)

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {self.max_attempts}")
        if self.base_delay < 0 or self.max_delay < 0:
            raise ValueError("delays must be non-negative")

    def delay(self, attempt: int) -> float:
        """Wait before retry number ``attempt + 1`` (``attempt`` is 0-based)."""
        return min(self.base_delay * 2 ** attempt, self.max_delay) + self.jitter()

    async def run(self, fn: Callable[[], Awaitable[T]]) -> T:
        """Call ``fn`` until it succeeds or attempts run out; re-raises the last error."""
        for attempt in range(self.max_attempts):
            try:
                return await fn()
            except self.retry_on as exc:
                if attempt == self.max_attempts - 1:
                    raise
                wait = self.delay(attempt)
                logger.debug("Attempt %d failed (%s), retrying in %.2fs", attempt + 1, exc, wait)
                await asyncio.sleep(wait)
        raise AssertionError("unreachable")


NO_RETRY = RetryPolicy(max_attempts=1)
