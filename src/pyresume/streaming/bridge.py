"""Push-to-pull streaming bridge.

Adapts a producer shaped as `invoke(on_chunk) -> final` (the callback
may be called any number of times before the final value is known) into:

- `response.stream`: an ordered, single-pass async iterator of chunks
- `response.response`: the awaitable final value
- `response.records()`: chunks followed by exactly one terminal record

Error surfacing: if the producer fails before emitting any chunk,
`await stream_call(...)` raises StreamFailure directly. If it fails
after at least one chunk, the chunks already emitted are delivered and
the failure arrives at the end of the sequence (StreamFailure from the
iterator, an ErrorRecord from records()), so partial output is not lost.

A reader that stops early does not stop the producer.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar

from pyresume.core.context import get_current_context
from pyresume.core.errors import StreamFailure
from pyresume.streaming.channel import Channel, ChannelClosed

logger = logging.getLogger(__name__)

C = TypeVar("C")
R = TypeVar("R")

ChunkCallback = Callable[[Any], None]


def _message(error: BaseException) -> str:
    return str(error) or type(error).__name__


def _as_stream_failure(error: BaseException) -> StreamFailure:
    if isinstance(error, StreamFailure):
        return error
    failure = StreamFailure(_message(error))
    failure.__cause__ = error
    return failure


# =============================================================================
# Terminal records
# =============================================================================


@dataclass(frozen=True)
class ChunkRecord:
    """One emitted chunk."""

    chunk: Any


@dataclass(frozen=True)
class FinalRecord:
    """Successful end of the stream with the aggregated value."""

    value: Any


@dataclass(frozen=True)
class ErrorRecord:
    """End of the stream after a producer failure."""

    message: str
    error: BaseException | None = field(default=None, compare=False, repr=False)


StreamRecord = ChunkRecord | FinalRecord | ErrorRecord


# =============================================================================
# StreamingResponse
# =============================================================================


class StreamingResponse(Generic[C, R]):
    """Reader side of a streaming call.

    Consume either `stream` or `records()`, not both: they drain the same
    channel. `response` can be awaited at any time, independently.
    """

    def __init__(self, channel: Channel[C], producer: asyncio.Task):
        self._channel = channel
        self._producer = producer
        self._stream: AsyncIterator[C] | None = None

    def __repr__(self) -> str:
        state = "done" if self._producer.done() else "running"
        return f"StreamingResponse({state}, chunks={self._channel.sent})"

    @property
    def stream(self) -> AsyncIterator[C]:
        """Ordered single-pass iterator over the chunks.

        Raises StreamFailure after the last chunk if the producer failed.
        """
        if self._stream is None:
            self._stream = self._iterate()
        return self._stream

    async def _iterate(self) -> AsyncIterator[C]:
        try:
            async for chunk in self._channel:
                yield chunk
        except StreamFailure:
            raise
        except Exception as e:
            raise _as_stream_failure(e) from e

    async def records(self) -> AsyncIterator[StreamRecord]:
        """Yield ChunkRecords, then one FinalRecord or ErrorRecord."""
        while True:
            try:
                chunk = await self._channel.receive()
            except ChannelClosed:
                yield FinalRecord(self._channel.final)
                return
            except Exception as e:
                yield ErrorRecord(_message(e), e)
                return
            yield ChunkRecord(chunk)

    @property
    def response(self) -> Awaitable[R]:
        """Awaitable final value.

        Raises:
            StreamFailure: If the producer failed
        """
        return self._final()

    async def _final(self) -> R:
        try:
            return await asyncio.shield(self._producer)
        except asyncio.CancelledError:
            if self._producer.cancelled():
                raise StreamFailure("producer was cancelled") from None
            raise
        except Exception as e:
            raise _as_stream_failure(e) from e

    @property
    def done(self) -> bool:
        """True once the producer has finished (either way)."""
        return self._producer.done()


# =============================================================================
# Entry points
# =============================================================================


def _observe(task: asyncio.Task) -> None:
    # Failures reach the reader through the channel; mark them retrieved
    if not task.cancelled() and task.exception() is not None:
        logger.debug(f"Streaming producer failed: {task.exception()!r}")


async def stream_call(
    invoke: Callable[[ChunkCallback], Awaitable[R]],
) -> StreamingResponse[Any, R]:
    """Run `invoke(on_chunk)` as a streaming producer.

    Returns once the first chunk has been emitted or the producer has
    finished, whichever happens first.

    Args:
        invoke: Async callable receiving the chunk callback

    Raises:
        StreamFailure: If the producer failed before emitting any chunk

    Example:
        ```python
        response = await stream_call(lambda on_chunk: model(request, on_chunk))
        async for chunk in response.stream:
            print(chunk)
        final = await response.response
        ```
    """
    channel: Channel[Any] = Channel()
    ready = asyncio.Event()

    def on_chunk(chunk: Any) -> None:
        channel.send(chunk)
        ready.set()

    async def produce() -> R:
        try:
            final = await invoke(on_chunk)
        except asyncio.CancelledError:
            channel.fail(StreamFailure("producer was cancelled"))
            ready.set()
            raise
        except Exception as e:
            channel.fail(e)
            ready.set()
            raise
        channel.close(final)
        ready.set()
        return final

    producer = asyncio.create_task(produce())
    producer.add_done_callback(_observe)

    await ready.wait()

    if channel.sent == 0 and producer.done() and not producer.cancelled():
        error = producer.exception()
        if error is not None:
            raise _as_stream_failure(error) from error

    return StreamingResponse(channel, producer)


async def generate_stream(
    model: Callable[[Any, ChunkCallback], Awaitable[R]],
    request: Any,
) -> StreamingResponse[Any, R]:
    """Streaming model call.

    `model(request, on_chunk)` is the provider adapter: it calls
    `on_chunk` for every partial output and returns the full response.
    """
    return await stream_call(lambda on_chunk: model(request, on_chunk))


async def send_chunk(chunk: Any) -> None:
    """Emit a chunk from inside a streaming flow.

    No-op when the current run is not being streamed (for example when it
    is replayed by a resume).
    """
    ctx = get_current_context()
    if ctx is None or ctx.on_chunk is None or ctx.closed:
        return
    result = ctx.on_chunk(chunk)
    if inspect.isawaitable(result):
        await result
