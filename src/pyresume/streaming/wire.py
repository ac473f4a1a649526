"""JSON-lines encoding of a streaming response.

Each record is one self-delimited line:

    {"chunk": ...}\\n        for every chunk, in order
    {"result": ...}\\n       final record on success
    {"error": {"message": ...}}\\n   final record on failure

Values with a `to_dict()` method (FlowState, Operation) are encoded
through it.
"""

from __future__ import annotations

import json
from collections.abc import AsyncIterator, Iterable
from typing import Any

from pyresume.streaming.bridge import (
    ChunkRecord,
    ErrorRecord,
    FinalRecord,
    StreamingResponse,
    StreamRecord,
)


def _default(value: Any) -> Any:
    to_dict = getattr(value, "to_dict", None)
    if callable(to_dict):
        return to_dict()
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def encode_record(record: StreamRecord) -> str:
    """Encode one record as a newline-terminated JSON line."""
    if isinstance(record, ChunkRecord):
        payload = {"chunk": record.chunk}
    elif isinstance(record, FinalRecord):
        payload = {"result": record.value}
    else:
        payload = {"error": {"message": record.message}}
    return json.dumps(payload, default=_default) + "\n"


async def encode_records(response: StreamingResponse) -> AsyncIterator[str]:
    """Drain `response` and yield its records as JSON lines."""
    async for record in response.records():
        yield encode_record(record)


def decode_record(line: str) -> StreamRecord:
    """Parse one JSON line back into a record.

    Raises:
        ValueError: If the line is not a known record
    """
    payload = json.loads(line)
    if not isinstance(payload, dict) or len(payload) != 1:
        raise ValueError(f"not a stream record: {line!r}")
    if "chunk" in payload:
        return ChunkRecord(payload["chunk"])
    if "result" in payload:
        return FinalRecord(payload["result"])
    if "error" in payload:
        error = payload["error"]
        if not isinstance(error, dict) or not isinstance(error.get("message", ""), str):
            raise ValueError(f"malformed error record: {line!r}")
        return ErrorRecord(error.get("message", ""))
    raise ValueError(f"not a stream record: {line!r}")


def decode_records(lines: Iterable[str]) -> list[StreamRecord]:
    """Parse a JSON-lines stream, skipping blank lines.

    Raises:
        ValueError: If a record follows the terminal record, or none is present
    """
    records: list[StreamRecord] = []
    for line in lines:
        if not line.strip():
            continue
        if records and not isinstance(records[-1], ChunkRecord):
            raise ValueError("record after the terminal record")
        records.append(decode_record(line))
    if not records or isinstance(records[-1], ChunkRecord):
        raise ValueError("stream has no terminal record")
    return records
