"""
Decorators for defining flows and steps.

- @flow turns an async function of one argument into a FlowDefinition
  that an engine can start, resume and stream.
- @step turns an async function into a memoized step: each call goes
  through run_step under the function's name, with a fingerprint of the
  arguments so a replay that passes different arguments is detected.

Example:
    ```python
    @step
    async def fetch_order(order_id: str) -> dict:
        return await orders.get(order_id)

    @flow(name="ship-order", input_schema={"type": "string"})
    async def ship_order(order_id):
        order = await fetch_order(order_id)
        await sleep("cool-off", 60_000)
        return order["status"]
    ```
"""

import functools
import pickle
from collections.abc import Callable
from typing import Any, TypeVar

import xxhash

from pyresume.executor.memoizer import run_step
from pyresume.executor.registry import FlowDefinition

F = TypeVar("F", bound=Callable[..., Any])


def _fingerprint(args: tuple, kwargs: dict) -> int | None:
    """Hash step arguments, or None when they cannot be pickled."""
    try:
        payload = pickle.dumps((args, sorted(kwargs.items())))
    except Exception:
        return None
    # Masked to 63 bits so it fits a signed SQLite/JSON integer
    return xxhash.xxh64(payload).intdigest() & 0x7FFFFFFFFFFFFFFF


def step(func: F | None = None, *, name: str | None = None) -> F:
    """
    Mark an async function as a durable step.

    Each call is memoized as `run_step(name, ...)`, where `name` defaults
    to the function's `__qualname__`. Repeated calls are separate
    occurrences. Outside a running flow the function just runs.

    Args:
        func: The function to decorate
        name: Step name override

    Example:
        ```python
        @step(name="charge-card")
        async def charge(amount: int) -> str:
            return await payments.charge(amount)
        ```
    """

    def decorator(f: F) -> F:
        step_name = name or f.__qualname__

        @functools.wraps(f)
        async def async_wrapper(*args, **kwargs):
            fingerprint = _fingerprint(args, kwargs)
            return await run_step(step_name, lambda: f(*args, **kwargs), fingerprint=fingerprint)

        async_wrapper.step_name = step_name  # type: ignore[attr-defined]
        return async_wrapper  # type: ignore[return-value]

    if func is not None:
        return decorator(func)
    return decorator  # type: ignore[return-value]


def flow(
    func: Callable[[Any], Any] | None = None,
    *,
    name: str | None = None,
    input_schema: dict[str, Any] | None = None,
    output_schema: dict[str, Any] | None = None,
):
    """
    Define a resumable flow.

    The body receives the flow input as its only argument. The returned
    FlowDefinition is not registered anywhere; pass it to FlowEngine or
    Runtime explicitly.

    Args:
        func: The async function to wrap
        name: Flow name (defaults to the function name)
        input_schema: JSON Schema for the input, checked at start
        output_schema: JSON Schema for the result, checked on completion

    Returns:
        FlowDefinition

    Example:
        ```python
        @flow(name="greet")
        async def greet(person):
            return await run_step("hello", lambda: say_hello(person))
        ```
    """

    def decorator(f: Callable[[Any], Any]) -> FlowDefinition:
        return FlowDefinition(
            name=name or f.__name__,
            fn=f,
            input_schema=input_schema,
            output_schema=output_schema,
        )

    if func is not None:
        return decorator(func)
    return decorator
