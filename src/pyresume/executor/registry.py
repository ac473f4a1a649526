"""Flow definitions and the registry that resolves them by name.

A resume only carries the operation id; the engine looks up the flow
body to replay through the operation's `flow_name`, so every flow that
may be resumed has to be registered with the engine that resumes it.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Iterable, Iterator
from dataclasses import dataclass
from typing import Any

from pyresume.core.errors import UnknownFlowError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FlowDefinition:
    """A named, resumable flow body.

    Attributes:
        name: Stable identifier stored on every operation of this flow
        fn: Async callable taking the flow input
        input_schema: Optional JSON Schema checked at start
        output_schema: Optional JSON Schema checked on completion
    """

    name: str
    fn: Callable[[Any], Awaitable[Any]]
    input_schema: dict[str, Any] | None = None
    output_schema: dict[str, Any] | None = None

    def __post_init__(self):
        if not self.name:
            raise ValueError("flow name must not be empty")

    async def __call__(self, input: Any) -> Any:
        """Call the body directly, without an engine (no durability)."""
        return await self.fn(input)

    def __str__(self) -> str:
        return f"Flow({self.name})"


class Registry:
    """Registry mapping flow names to their definitions.

    Example:
        ```python
        registry = Registry()
        registry.register(order_flow)
        definition = registry.get("order")
        ```
    """

    def __init__(self, flows: Iterable[FlowDefinition] = ()):
        """Create a registry, optionally pre-populated."""
        self._flows: dict[str, FlowDefinition] = {}
        for definition in flows:
            self.register(definition)

    def register(self, definition: FlowDefinition) -> None:
        """Register a flow definition.

        Registering the same definition twice is a no-op; registering a
        different definition under a taken name is an error.

        Raises:
            ValueError: If another flow already uses the name
        """
        existing = self._flows.get(definition.name)
        if existing is not None and existing is not definition:
            raise ValueError(f"flow '{definition.name}' is already registered")
        self._flows[definition.name] = definition
        logger.debug(f"Registered flow: {definition.name}")

    def get(self, name: str) -> FlowDefinition:
        """Return the definition for `name`.

        Raises:
            UnknownFlowError: If no flow with that name is registered
        """
        definition = self._flows.get(name)
        if definition is None:
            raise UnknownFlowError(f"flow '{name}' is not registered")
        return definition

    def __contains__(self, name: object) -> bool:
        return name in self._flows

    def __iter__(self) -> Iterator[FlowDefinition]:
        return iter(self._flows.values())

    def __len__(self) -> int:
        """Returns the number of registered flows."""
        return len(self._flows)
