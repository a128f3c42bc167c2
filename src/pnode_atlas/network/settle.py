"""Settle-all fan-out helpers.

Every operation is awaited to completion and its outcome captured on its
own; one failure never cancels or hides the others.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from typing import Generic, TypeVar

T = TypeVar("T")
R = TypeVar("R")


@dataclass
class Settled(Generic[T, R]):
    """Outcome of one operation: exactly one of ``result``/``error`` is meaningful."""

    item: T
    result: R | None = None
    error: BaseException | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


async def settle_all(
    items: Sequence[T],
    worker: Callable[[T], Awaitable[R]],
) -> list[Settled[T, R]]:
    """Run ``worker`` on every item at once and capture each outcome."""
    outcomes = await asyncio.gather(
        *(worker(item) for item in items),
        return_exceptions=True,
    )
    return [_settled(item, outcome) for item, outcome in zip(items, outcomes)]


async def settle_in_batches(
    items: Sequence[T],
    worker: Callable[[T], Awaitable[R]],
    batch_size: int,
) -> list[Settled[T, R]]:
    """Like :func:`settle_all`, but at most ``batch_size`` operations in flight.

    Batches run strictly one after another: batch *k+1* starts only once
    every operation of batch *k* has settled.
    """
    if batch_size < 1:
        raise ValueError(f"batch_size must be >= 1, got {batch_size}")
    settled: list[Settled[T, R]] = []
    for start in range(0, len(items), batch_size):
        settled.extend(await settle_all(items[start:start + batch_size], worker))
    return settled


def _settled(item: T, outcome: object) -> Settled:
    if isinstance(outcome, BaseException):
        return Settled(item=item, error=outcome)
    return Settled(item=item, result=outcome)
