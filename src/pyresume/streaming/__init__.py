"""Push-to-pull streaming: channel, bridge and JSON-lines wire format."""

from pyresume.streaming.bridge import (
    ChunkRecord,
    ErrorRecord,
    FinalRecord,
    StreamingResponse,
    StreamRecord,
    generate_stream,
    send_chunk,
    stream_call,
)
from pyresume.streaming.channel import Channel, ChannelClosed
from pyresume.streaming.wire import decode_record, decode_records, encode_record, encode_records

__all__ = [
    "Channel",
    "ChannelClosed",
    "StreamingResponse",
    "ChunkRecord",
    "FinalRecord",
    "ErrorRecord",
    "StreamRecord",
    "stream_call",
    "generate_stream",
    "send_chunk",
    "encode_record",
    "encode_records",
    "decode_record",
    "decode_records",
]
