"""Bounded-concurrency fan-out with order-preserving fan-in.

`fan_out(items, concurrency_limit, fn)` maps `fn` over `items` with at
most `concurrency_limit` invocations in flight and returns results in
input order, whatever order they finish in.

`run_map(name, items, fn)` does the same inside a flow, with every
invocation memoized as a step keyed (name, i). On replay, recorded items
return their cached result immediately and only the missing ones run.

Failure policy for both: once an invocation fails no new invocations are
started, invocations already running are allowed to finish, their
results are discarded, and the failure with the lowest index is raised.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from typing import Any, TypeVar

from pyresume.core.context import get_current_context
from pyresume.executor.memoizer import execute_step, in_step

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")

DEFAULT_CONCURRENCY = 8

_UNSET = object()


async def _bounded_map(
    count: int,
    concurrency_limit: int,
    invoke: Callable[[int], Awaitable[R]],
) -> list[R]:
    """Run invoke(0..count-1) with a fixed pool of workers.

    Workers pull the next index from a shared counter, so indices are
    started in input order and at most `concurrency_limit` run at once.
    """
    if concurrency_limit < 1:
        raise ValueError(f"concurrency_limit must be at least 1, got {concurrency_limit}")

    results: list[Any] = [_UNSET] * count
    failures: dict[int, BaseException] = {}
    next_index = 0

    async def worker() -> None:
        nonlocal next_index
        while not failures and next_index < count:
            index = next_index
            next_index += 1
            try:
                results[index] = await invoke(index)
            except Exception as e:
                failures[index] = e

    # Cancelling the gather (the run suspended) cancels every worker
    await asyncio.gather(*(worker() for _ in range(min(concurrency_limit, count))))

    if failures:
        first = min(failures)
        logger.debug(f"Fan-out stopped after item {first} failed ({len(failures)} failure(s))")
        raise failures[first]
    return results


async def fan_out(
    items: Sequence[T],
    concurrency_limit: int,
    fn: Callable[[T], Awaitable[R]],
) -> list[R]:
    """Map `fn` over `items` with bounded concurrency, preserving order.

    Args:
        items: Inputs
        concurrency_limit: Maximum invocations in flight (>= 1)
        fn: Async function applied to each item

    Returns:
        results where results[i] == await fn(items[i])

    Raises:
        ValueError: If concurrency_limit < 1
        Exception: The error of the lowest-index failed invocation

    Example:
        ```python
        doubled = await fan_out([3, 1, 2], 3, double)   # [6, 2, 4]
        ```
    """
    items = list(items)
    return await _bounded_map(len(items), concurrency_limit, lambda i: fn(items[i]))


async def run_map(
    name: str,
    items: Sequence[T],
    fn: Callable[[T], Awaitable[R]],
    concurrency_limit: int = DEFAULT_CONCURRENCY,
) -> list[R]:
    """Fan out over `items` inside a flow, memoizing each item as a step.

    Occurrence indices for `name` are allocated for all items before any
    item starts, so item i is always recorded under the i-th occurrence
    of `name` from this call. Outside a running flow, or inside a step's
    function, this is fan_out.

    Raises:
        StepFailure: For the lowest-index item that failed
    """
    items = list(items)
    ctx = get_current_context()
    if ctx is None or in_step():
        return await fan_out(items, concurrency_limit, fn)

    occurrences = [ctx.next_occurrence(name) for _ in items]

    def invoke(index: int) -> Awaitable[R]:
        item = items[index]
        return execute_step(ctx, name, occurrences[index], lambda: fn(item))

    return await _bounded_map(len(items), concurrency_limit, invoke)
