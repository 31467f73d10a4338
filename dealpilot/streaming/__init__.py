"""
dealpilot - Streaming Module

Incremental SSE decoding for copilot responses:
- Frame decoding with carry-over buffering across network chunks
- Delta extraction from OpenAI-style chunk payloads
- Ordered stream events with exactly one terminal event
"""

from .decoder import (
    DATA_PREFIX,
    DONE_SENTINEL,
    FrameDecoder,
    StreamFrame,
    decode_all,
    extract_delta,
)
from .consumer import (
    DeltaEvent,
    DoneEvent,
    ErrorEvent,
    StreamConsumer,
    StreamEvent,
    StreamEventType,
    StreamSession,
)

__all__ = [
    # Decoder
    "DATA_PREFIX",
    "DONE_SENTINEL",
    "FrameDecoder",
    "StreamFrame",
    "decode_all",
    "extract_delta",
    # Consumer
    "DeltaEvent",
    "DoneEvent",
    "ErrorEvent",
    "StreamConsumer",
    "StreamEvent",
    "StreamEventType",
    "StreamSession",
]
