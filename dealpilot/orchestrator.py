"""
dealpilot - Streaming Orchestrator

Owns the lifecycle of "ask the copilot" calls for one conversation slot:

- Single-flight: starting a request cancels the one in flight
- Progressive state: every delta is published to observers as it arrives
- Terminal outcomes: success returns the text, failures raise typed errors
  with the partial text kept in state, cancellation settles quietly
- Optional result cache consulted before opening a stream

Each call is represented by a RequestHandle carrying a generation number.
Only the current handle may write to the observable state, so output from a
superseded request can never interleave with its replacement.
"""

from __future__ import annotations

import asyncio
import uuid
from dataclasses import replace
from typing import Any, Callable, Dict, List, Optional

from .cache import ResultCache
from .client import AsyncCopilotClient
from .errors import DealPilotError
from .logging import bind_context, get_logger
from .models import HistoryLike, RequestStatus, StreamingState, normalize_history
from .streaming import DeltaEvent, DoneEvent, ErrorEvent, StreamConsumer

logger = get_logger(__name__)

DEFAULT_OPERATION = "deal_chat_query"

StateObserver = Callable[[StreamingState], None]


class RequestHandle:
    """
    One orchestrated call and its cancellation token.

    Attributes:
        generation: Position in the owning orchestrator's sequence of calls
        request_id: Correlation id used in logs
        status: Current RequestStatus
        accumulated: Text received so far (kept on failure and cancellation)
        completed: True when the stream ended with [DONE], False on a soft
            completion, None until the stream ends
        error: The error that failed the call, if any
    """

    def __init__(self, generation: int, subject_id: str, operation: str):
        self.generation = generation
        self.subject_id = subject_id
        self.operation = operation
        self.request_id = f"req_{uuid.uuid4().hex[:12]}"
        self.status = RequestStatus.PENDING
        self.accumulated = ""
        self.completed: Optional[bool] = None
        self.error: Optional[Exception] = None
        self._task: Optional[asyncio.Task] = None

    def __repr__(self) -> str:
        return (
            f"RequestHandle(generation={self.generation}, "
            f"request_id={self.request_id!r}, status={self.status.value!r})"
        )

    @property
    def cancelled(self) -> bool:
        return self.status is RequestStatus.CANCELLED

    def done(self) -> bool:
        return self.status.is_terminal

    def cancel(self) -> bool:
        """Cancel the call. Returns False if it had already settled."""
        if self.status.is_terminal:
            return False
        self.status = RequestStatus.CANCELLED
        if self._task is not None:
            self._task.cancel()
        return True

    async def wait(self) -> str:
        """
        Wait for the call to settle.

        Returns the full text on success and the partial text when the handle
        was cancelled. Raises the typed error on failure. If the waiter itself
        is cancelled, the call is cancelled with it.
        """
        task = self._task
        if task is None:
            raise RuntimeError("RequestHandle was never started")
        try:
            await asyncio.wait({task})
        except asyncio.CancelledError:
            self.cancel()
            raise
        if task.cancelled():
            return self.accumulated
        return task.result()

    def _mark_cancelled(self) -> None:
        if not self.status.is_terminal:
            self.status = RequestStatus.CANCELLED


class StreamingOrchestrator:
    """
    Single-flight streaming requests with observable progress.

    Args:
        client: Outbound HTTP collaborator
        operation: Operation name sent to the copilot function
        cache: Optional ResultCache; a hit skips the network entirely
        consumer: StreamConsumer to drive (one is created by default)
        on_stream_start: Called when a request starts
        on_stream_end: Called with the full text on success
        on_error: Called with the typed error on failure

    Example:
        >>> chat = StreamingOrchestrator(client)
        >>> chat.subscribe(lambda state: render(state.streamed_content))
        >>> answer = await chat.run("deal-1", "What is outstanding?")
    """

    def __init__(
        self,
        client: AsyncCopilotClient,
        operation: str = DEFAULT_OPERATION,
        cache: Optional[ResultCache] = None,
        consumer: Optional[StreamConsumer] = None,
        on_stream_start: Optional[Callable[[], None]] = None,
        on_stream_end: Optional[Callable[[str], None]] = None,
        on_error: Optional[Callable[[Exception], None]] = None,
    ):
        self._client = client
        self.operation = operation
        self._cache = cache
        self._consumer = consumer or StreamConsumer()
        self._on_stream_start = on_stream_start
        self._on_stream_end = on_stream_end
        self._on_error = on_error

        self._state = StreamingState()
        self._observers: List[StateObserver] = []
        self._current: Optional[RequestHandle] = None
        self._generation = 0

    # ============================================================
    # Observable state
    # ============================================================

    @property
    def state(self) -> StreamingState:
        return self._state

    @property
    def is_streaming(self) -> bool:
        return self._state.is_streaming

    @property
    def streamed_content(self) -> str:
        return self._state.streamed_content

    @property
    def error(self) -> Optional[str]:
        return self._state.error

    @property
    def current(self) -> Optional[RequestHandle]:
        return self._current

    def subscribe(self, observer: StateObserver) -> Callable[[], None]:
        """Register an observer; returns a callable that unsubscribes it."""
        self._observers.append(observer)

        def unsubscribe() -> None:
            if observer in self._observers:
                self._observers.remove(observer)

        return unsubscribe

    def _publish(self, state: StreamingState) -> None:
        if state == self._state:
            return
        self._state = state
        for observer in list(self._observers):
            observer(state)

    def _update(self, handle: RequestHandle, **changes: Any) -> None:
        """Apply a state change if the handle still owns the slot."""
        if handle is not self._current:
            return
        self._publish(replace(self._state, **changes))

    # ============================================================
    # Public operations
    # ============================================================

    def start(
        self,
        subject_id: str,
        content: str,
        history: Optional[HistoryLike] = None,
    ) -> RequestHandle:
        """
        Start a request and return its handle without waiting.

        Any request still in flight is cancelled first. Must be called from a
        running event loop.
        """
        loop = asyncio.get_running_loop()

        previous = self._current
        if previous is not None and previous.cancel():
            logger.info(
                "Superseding in-flight request",
                superseded=previous.request_id,
                generation=previous.generation,
            )

        self._generation += 1
        handle = RequestHandle(self._generation, subject_id, self.operation)
        self._current = handle
        self._publish(StreamingState(is_streaming=True))
        handle._task = loop.create_task(
            self._execute(handle, subject_id, content, normalize_history(history))
        )

        if self._on_stream_start:
            try:
                self._on_stream_start()
            except Exception:
                handle.cancel()
                self._update(handle, is_streaming=False)
                raise
        return handle

    async def run(
        self,
        subject_id: str,
        content: str,
        history: Optional[HistoryLike] = None,
    ) -> str:
        """
        Ask the copilot and wait for the full answer.

        Returns the accumulated text on success, or the partial text if the
        request is cancelled (by cancel() or by a newer run()). Raises a
        DealPilotError on transport, protocol or stream failures.
        """
        handle = self.start(subject_id, content, history)
        return await handle.wait()

    def cancel(self) -> None:
        """Cancel the in-flight request, if any. Safe to call repeatedly."""
        handle = self._current
        if handle is not None and handle.cancel():
            logger.info("Request cancelled", request_id=handle.request_id)
        if self._state.is_streaming:
            self._publish(replace(self._state, is_streaming=False))

    def reset(self) -> None:
        """Clear the displayed text and error."""
        self._publish(replace(self._state, streamed_content="", error=None))

    # ============================================================
    # Request lifecycle
    # ============================================================

    def _cache_params(self, content: str, history) -> Dict[str, Any]:
        return {"content": content, "history": [m.to_dict() for m in history]}

    async def _execute(self, handle: RequestHandle, subject_id: str, content: str, history) -> str:
        with bind_context(
            request_id=handle.request_id,
            subject_id=subject_id,
            operation=self.operation,
        ):
            try:
                cached = self._cached_answer(subject_id, content, history)
                if cached is not None:
                    return self._settle_cached(handle, cached)

                request = await self._client.build_request(self.operation, subject_id, content, history)
                handle.status = RequestStatus.STREAMING
                async with self._client.open_stream(request) as response:
                    await self._drain(handle, response)

            except asyncio.CancelledError:
                handle._mark_cancelled()
                self._update(handle, is_streaming=False)
                logger.info("Stream cancelled", chars=len(handle.accumulated))
                raise

            except Exception as exc:
                message = exc.message if isinstance(exc, DealPilotError) else str(exc)
                handle.status = RequestStatus.FAILED
                handle.error = exc
                self._update(
                    handle,
                    is_streaming=False,
                    streamed_content=handle.accumulated,
                    error=message,
                )
                logger.error(
                    "Stream failed",
                    error=message,
                    code=getattr(exc, "code", type(exc).__name__),
                    chars=len(handle.accumulated),
                )
                if self._on_error:
                    self._on_error(exc)
                raise

            handle.status = RequestStatus.SUCCEEDED
            self._update(handle, is_streaming=False)
            if handle.completed and self._cache is not None:
                self._cache.set(
                    subject_id,
                    self.operation,
                    handle.accumulated,
                    params=self._cache_params(content, history),
                )
            logger.info("Stream completed", chars=len(handle.accumulated), completed=handle.completed)
            if self._on_stream_end:
                self._on_stream_end(handle.accumulated)
            return handle.accumulated

    async def _drain(self, handle: RequestHandle, response) -> None:
        events = self._consumer.events(response.aiter_bytes())
        try:
            async for event in events:
                if isinstance(event, DeltaEvent):
                    handle.accumulated += event.text
                    self._update(handle, streamed_content=handle.accumulated)
                elif isinstance(event, DoneEvent):
                    handle.completed = event.completed
                elif isinstance(event, ErrorEvent):
                    raise event.error
        finally:
            await events.aclose()

    def _cached_answer(self, subject_id: str, content: str, history) -> Optional[str]:
        if self._cache is None:
            return None
        return self._cache.get(subject_id, self.operation, self._cache_params(content, history))

    def _settle_cached(self, handle: RequestHandle, cached: str) -> str:
        handle.accumulated = cached
        handle.completed = True
        handle.status = RequestStatus.CACHED
        self._update(handle, is_streaming=False, streamed_content=cached, error=None)
        logger.info("Served from cache", chars=len(cached))
        if self._on_stream_end:
            self._on_stream_end(cached)
        return cached
