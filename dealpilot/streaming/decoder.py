"""
dealpilot - SSE Frame Decoder

Turns a chunked byte/text stream into ordered frames of the copilot wire
format:

    : keep-alive comment            -> ignored
    (blank line)                    -> ignored
    event: something                -> ignored (no "data: " prefix)
    data: {"choices":[...]}         -> frame with parsed JSON
    data: [DONE]                    -> terminal frame, nothing after it counts

Records are separated by "\\n" and may carry a trailing "\\r". A record split
across two network reads is reassembled from the carry-over buffer, so the
frames produced never depend on where the chunk boundaries fell.
"""

import codecs
import json
from dataclasses import dataclass
from typing import Any, List, Optional, Union

from ..logging import get_logger

logger = get_logger(__name__)

DATA_PREFIX = "data: "
DONE_SENTINEL = "[DONE]"

_SKIP = object()
_TRUNCATED = object()


@dataclass(frozen=True)
class StreamFrame:
    """One parsed record of the wire protocol."""
    raw_payload: str
    is_terminal: bool = False
    data: Optional[Any] = None


def _looks_truncated(payload: str, error: json.JSONDecodeError) -> bool:
    """A parse that ran off the end of the text is an unfinished structure."""
    if payload[:1] not in ("{", "["):
        return False
    if error.msg.startswith("Unterminated string"):
        return True
    return error.pos >= len(payload)


class FrameDecoder:
    """
    Incremental decoder for ``data:``-prefixed event records.

    Not safe for concurrent use: one decoder per stream.

    Usage:
        decoder = FrameDecoder()
        async for chunk in response.aiter_bytes():
            for frame in decoder.feed(chunk):
                ...
        for frame in decoder.finish():
            ...
    """

    def __init__(self, encoding: str = "utf-8"):
        self._text_decoder = codecs.getincrementaldecoder(encoding)(errors="replace")
        self._buffer = ""
        self._pending: Optional[str] = None
        self._done = False

    @property
    def done(self) -> bool:
        """True once the [DONE] sentinel has been seen."""
        return self._done

    @property
    def buffered(self) -> str:
        """Unconsumed text carried over to the next chunk."""
        return self._buffer

    def feed(self, chunk: Union[bytes, str]) -> List[StreamFrame]:
        """Append a chunk and return every frame it completes."""
        if self._done:
            return []

        if isinstance(chunk, (bytes, bytearray)):
            text = self._text_decoder.decode(bytes(chunk))
        else:
            text = chunk
        self._buffer += text

        frames: List[StreamFrame] = []
        while not self._done:
            newline_index = self._buffer.find("\n")
            if newline_index == -1:
                break
            line = self._buffer[:newline_index]
            self._buffer = self._buffer[newline_index + 1:]
            self._process_line(line, frames)

        if self._done:
            self._buffer = ""
        return frames

    def finish(self) -> List[StreamFrame]:
        """Flush whatever is left once the body has ended."""
        frames: List[StreamFrame] = []
        if not self._done:
            self._buffer += self._text_decoder.decode(b"", final=True)
            remaining, self._buffer = self._buffer, ""
            if remaining:
                for line in remaining.split("\n"):
                    if self._done:
                        break
                    self._process_line(line, frames)

        if self._pending is not None:
            logger.debug("Dropping incomplete payload at end of stream", chars=len(self._pending))
            self._pending = None
        self._buffer = ""
        return frames

    # ============================================================
    # Per-line classification
    # ============================================================

    def _process_line(self, line: str, frames: List[StreamFrame]) -> None:
        if line.endswith("\r"):
            line = line[:-1]

        if self._pending is not None:
            if self._is_continuation(line):
                candidate = self._pending + line
                self._pending = None
                self._emit_payload(candidate, frames)
                return
            logger.debug("Skipping truncated payload", chars=len(self._pending))
            self._pending = None

        if line.startswith(":") or not line.strip():
            return
        if not line.startswith(DATA_PREFIX):
            return

        payload = line[len(DATA_PREFIX):].strip()
        if payload == DONE_SENTINEL:
            frames.append(StreamFrame(raw_payload=payload, is_terminal=True))
            self._done = True
            return

        self._emit_payload(payload, frames)

    def _emit_payload(self, payload: str, frames: List[StreamFrame]) -> None:
        data = self._parse(payload)
        if data is _SKIP:
            return
        if data is _TRUNCATED:
            # Held back until the next line shows whether it continues.
            self._pending = payload
            return
        frames.append(StreamFrame(raw_payload=payload, data=data))

    @staticmethod
    def _parse(payload: str) -> Any:
        try:
            return json.loads(payload)
        except json.JSONDecodeError as exc:
            if _looks_truncated(payload, exc):
                return _TRUNCATED
            logger.debug("Skipping malformed payload", error=exc.msg, position=exc.pos)
            return _SKIP

    @staticmethod
    def _is_continuation(line: str) -> bool:
        return bool(line.strip()) and not line.startswith(":") and not line.startswith("data:")


def extract_delta(frame: Union[StreamFrame, str, dict, None]) -> Optional[str]:
    """
    Pull the generated text out of a frame.

    Follows ``choices[0].delta.content``. Anything that does not match that
    shape yields None; absence of content is not an error.
    """
    if frame is None:
        return None

    if isinstance(frame, StreamFrame):
        if frame.is_terminal:
            return None
        data = frame.data if frame.data is not None else frame.raw_payload
    else:
        data = frame

    if isinstance(data, str):
        try:
            data = json.loads(data)
        except json.JSONDecodeError:
            return None

    if not isinstance(data, dict):
        return None

    choices = data.get("choices")
    if not isinstance(choices, list) or not choices:
        return None

    choice = choices[0]
    if not isinstance(choice, dict):
        return None

    delta = choice.get("delta")
    if not isinstance(delta, dict):
        return None

    content = delta.get("content")
    if isinstance(content, str) and content:
        return content
    return None


def decode_all(text: Union[bytes, str]) -> List[StreamFrame]:
    """Decode a complete body in one go."""
    decoder = FrameDecoder()
    frames = decoder.feed(text)
    frames.extend(decoder.finish())
    return frames
