"""Single-producer, single-consumer async channel with typed termination.

A Channel carries an ordered sequence of items and ends in exactly one of
two terminal states:

- closed with a final value (`close(final)`), or
- closed with an error (`fail(error)`).

The consumer drains every item sent before the terminal state, then sees
the terminal state: iteration stops normally after `close`, and the
error is raised after `fail`. Unbounded, so the producer never waits for
the consumer.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

T = TypeVar("T")

_NO_FINAL = object()


class ChannelClosed(Exception):
    """Sending to a terminated channel, or receiving past its end."""


@dataclass(frozen=True)
class _Item:
    value: Any


@dataclass(frozen=True)
class _End:
    final: Any


@dataclass(frozen=True)
class _Error:
    error: BaseException


class Channel(Generic[T]):
    """Ordered chunk channel.

    Usage:
        channel = Channel()
        channel.send("a")
        channel.close("a!")

        async for item in channel:
            print(item)          # "a"
        print(channel.final)     # "a!"
    """

    def __init__(self):
        self._queue: asyncio.Queue[_Item | _End | _Error] = asyncio.Queue()
        self._terminated = False
        self._terminal: _End | _Error | None = None
        self.sent = 0

    def __repr__(self) -> str:
        return f"Channel(sent={self.sent}, terminated={self._terminated})"

    @property
    def terminated(self) -> bool:
        """True once close() or fail() has been called."""
        return self._terminated

    def send(self, item: T) -> None:
        """Append an item.

        Raises:
            ChannelClosed: If the channel already terminated
        """
        if self._terminated:
            raise ChannelClosed("cannot send on a terminated channel")
        self.sent += 1
        self._queue.put_nowait(_Item(item))

    def close(self, final: Any = None) -> None:
        """Terminate successfully with `final`."""
        if self._terminated:
            raise ChannelClosed("channel already terminated")
        self._terminated = True
        self._queue.put_nowait(_End(final))

    def fail(self, error: BaseException) -> None:
        """Terminate with `error`."""
        if self._terminated:
            raise ChannelClosed("channel already terminated")
        self._terminated = True
        self._queue.put_nowait(_Error(error))

    async def receive(self) -> T:
        """Return the next item.

        Raises:
            ChannelClosed: Once the channel closed successfully and is drained
            BaseException: The failure, once the channel failed and is drained
        """
        if self._terminal is None:
            entry = await self._queue.get()
            if isinstance(entry, _Item):
                return entry.value
            self._terminal = entry

        if isinstance(self._terminal, _Error):
            raise self._terminal.error
        raise ChannelClosed("channel closed")

    @property
    def drained(self) -> bool:
        """True once the consumer has reached the terminal state."""
        return self._terminal is not None

    @property
    def final(self) -> Any:
        """Final value of a drained, successfully closed channel.

        Raises:
            ChannelClosed: If the channel is not drained or ended with an error
        """
        if not self.drained:
            raise ChannelClosed("no final value: channel not drained")
        if not isinstance(self._terminal, _End):
            raise ChannelClosed("no final value: channel failed")
        return self._terminal.final

    @property
    def error(self) -> BaseException | None:
        """Failure of a drained channel, or None."""
        if isinstance(self._terminal, _Error):
            return self._terminal.error
        return None

    def __aiter__(self) -> AsyncIterator[T]:
        return self

    async def __anext__(self) -> T:
        try:
            return await self.receive()
        except ChannelClosed:
            raise StopAsyncIteration from None
