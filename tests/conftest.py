"""
dealpilot - Pytest Configuration

Shared fixtures:
- A controllable clock for cache expiry
- SSE body builders
- Copilot clients wired to httpx.MockTransport
"""

import asyncio
import json
from typing import AsyncIterator, Callable, Iterable, List, Optional, Union

import httpx
import pytest

from dealpilot.client import AsyncCopilotClient
from dealpilot.config import ClientSettings
from dealpilot.models import Session


BASE_URL = "https://api.test"
SESSION = Session(access_token="test-token", user_id="user-1")


# ============================================================
# Clock
# ============================================================

class FakeClock:
    """Monotonic clock that only moves when told to."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


# ============================================================
# SSE Builders
# ============================================================

def delta_payload(text: str) -> str:
    return json.dumps({"choices": [{"delta": {"content": text}}]})


def sse_delta(text: str) -> str:
    return f"data: {delta_payload(text)}\n\n"


SSE_DONE = "data: [DONE]\n\n"


def sse_body(*texts: str, done: bool = True) -> str:
    body = "".join(sse_delta(t) for t in texts)
    return body + SSE_DONE if done else body


async def aiter_chunks(
    chunks: Iterable[Union[bytes, str]],
    gate: Optional[asyncio.Event] = None,
    gate_after: int = 0,
    fail_with: Optional[BaseException] = None,
) -> AsyncIterator[bytes]:
    """
    Async byte stream for a response body.

    If ``gate`` is given, the stream blocks on it after ``gate_after`` chunks.
    If ``fail_with`` is given, it is raised once the chunks run out.
    """
    for index, chunk in enumerate(chunks):
        if gate is not None and index == gate_after:
            await gate.wait()
        yield chunk.encode("utf-8") if isinstance(chunk, str) else chunk
    if fail_with is not None:
        raise fail_with


def streaming_response(*chunks: Union[bytes, str], **kwargs) -> httpx.Response:
    return httpx.Response(200, content=aiter_chunks(chunks, **kwargs))


# ============================================================
# Clients
# ============================================================

class RecordingHandler:
    """MockTransport handler that records requests and answers from a callable."""

    def __init__(self, respond: Callable[[httpx.Request], httpx.Response]):
        self.respond = respond
        self.requests: List[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.respond(request)

    @property
    def calls(self) -> int:
        return len(self.requests)

    def body(self, index: int = -1) -> dict:
        return json.loads(self.requests[index].content)


def make_client(
    handler: Callable[[httpx.Request], httpx.Response],
    session_provider=SESSION,
    **settings,
) -> AsyncCopilotClient:
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return AsyncCopilotClient(
        base_url=BASE_URL,
        session_provider=session_provider,
        settings=ClientSettings(**settings),
        http_client=http_client,
    )
