"""
dealpilot - Stream Consumer

Drives the frame decoder against a live response body.

Two interfaces over the same loop:
- ``events()`` yields typed events (DeltaEvent ... then exactly one
  DoneEvent or ErrorEvent)
- ``consume()`` dispatches the same events to on_delta / on_done / on_error
  callbacks

Cancellation is not an event: asyncio.CancelledError propagates out of the
read and no terminal event is produced.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import AsyncIterable, AsyncIterator, Callable, Optional, Union

import httpx

from ..errors import DealPilotError, ProtocolError, StreamError
from ..logging import get_logger
from .decoder import FrameDecoder, extract_delta

logger = get_logger(__name__)

_NO_BODY_STATUSES = {204, 304}


class StreamEventType(str, Enum):
    """Types of streaming events."""
    DELTA = "delta"   # Text fragment
    DONE = "done"     # Stream complete
    ERROR = "error"   # Read failed mid-stream


@dataclass(frozen=True)
class DeltaEvent:
    text: str
    type: StreamEventType = field(default=StreamEventType.DELTA, init=False)


@dataclass(frozen=True)
class DoneEvent:
    """
    Terminal success.

    ``completed`` is False when the body closed without the [DONE] sentinel
    (soft completion): the accumulated text is still treated as the answer.
    """
    completed: bool = True
    type: StreamEventType = field(default=StreamEventType.DONE, init=False)


@dataclass(frozen=True)
class ErrorEvent:
    error: DealPilotError
    type: StreamEventType = field(default=StreamEventType.ERROR, init=False)


StreamEvent = Union[DeltaEvent, DoneEvent, ErrorEvent]


@dataclass
class StreamSession:
    """Mutable state of one active consumption."""
    accumulated: str = ""
    deltas: int = 0
    done: bool = False

    def append(self, text: str) -> None:
        self.accumulated += text
        self.deltas += 1


class StreamConsumer:
    """
    Turns a body of SSE bytes into ordered stream events.

    Usage:
        consumer = StreamConsumer()
        async for event in consumer.events(response.aiter_bytes()):
            if isinstance(event, DeltaEvent):
                print(event.text, end="", flush=True)
    """

    def __init__(self, decoder_factory: Callable[[], FrameDecoder] = FrameDecoder):
        self._decoder_factory = decoder_factory

    async def events(
        self,
        chunks: AsyncIterable[Union[bytes, str]],
        session: Optional[StreamSession] = None,
    ) -> AsyncIterator[StreamEvent]:
        """
        Yield DeltaEvents in byte order followed by one terminal event.

        Frames are decoded and extracted synchronously between reads, so no
        other coroutine can observe a half-processed chunk.
        """
        session = session if session is not None else StreamSession()
        decoder = self._decoder_factory()

        try:
            async for chunk in chunks:
                for frame in decoder.feed(chunk):
                    if frame.is_terminal:
                        session.done = True
                        break
                    text = extract_delta(frame)
                    if text:
                        session.append(text)
                        yield DeltaEvent(text)
                if session.done:
                    break
        except (httpx.HTTPError, OSError) as exc:
            logger.error(
                "Stream read failed",
                error=str(exc),
                deltas=session.deltas,
            )
            session.done = True
            yield ErrorEvent(
                StreamError(
                    f"Stream interrupted: {exc}",
                    partial_content=session.accumulated,
                )
            )
            return

        if not session.done:
            for frame in decoder.finish():
                if frame.is_terminal:
                    session.done = True
                    break
                text = extract_delta(frame)
                if text:
                    session.append(text)
                    yield DeltaEvent(text)

        if session.done:
            yield DoneEvent(completed=True)
            return

        logger.warning(
            "Stream closed without [DONE]; treating as complete",
            deltas=session.deltas,
        )
        session.done = True
        yield DoneEvent(completed=False)

    async def consume(
        self,
        response: httpx.Response,
        on_delta: Callable[[str], None],
        on_done: Callable[[], None],
        on_error: Optional[Callable[[Exception], None]] = None,
    ) -> None:
        """
        Callback adapter over ``events()``.

        Exactly one of on_done / on_error fires, after every on_delta. A
        failed response (non-success status or no body) reports on_error
        without reading anything.
        """
        failure = _response_failure(response)
        if failure is not None:
            logger.warning("Stream failed before reading", status=response.status_code)
            if on_error:
                on_error(failure)
            return

        events = self.events(response.aiter_bytes())
        try:
            async for event in events:
                if isinstance(event, DeltaEvent):
                    try:
                        on_delta(event.text)
                    except Exception as exc:
                        if on_error:
                            on_error(exc)
                        raise
                elif isinstance(event, DoneEvent):
                    on_done()
                elif isinstance(event, ErrorEvent):
                    if on_error:
                        on_error(event.error)
        finally:
            await events.aclose()


def _response_failure(response: httpx.Response) -> Optional[DealPilotError]:
    if not response.is_success:
        return DealPilotError.from_response(response.status_code)
    if response.status_code in _NO_BODY_STATUSES:
        return ProtocolError(f"Stream failed: {response.status_code} has no body",
                             status_code=response.status_code)
    return None

