"""
dealpilot - Copilot Client Tests

Verifies:
- Request URL, headers and body
- Session resolution and authentication errors
- Error mapping for statuses and network failures
- Non-streaming invocation
"""

import httpx
import pytest

from dealpilot.client import AsyncCopilotClient
from dealpilot.config import ClientSettings
from dealpilot.errors import (
    AuthenticationError,
    ConnectionError,
    InvalidConfigError,
    ProtocolError,
    RateLimitError,
    TimeoutError,
    TransportError,
)
from dealpilot.models import Session

from conftest import (
    BASE_URL,
    SESSION,
    RecordingHandler,
    aiter_chunks,
    make_client,
    sse_body,
    streaming_response,
)


def ok_stream():
    return RecordingHandler(lambda request: streaming_response(sse_body("hi")))


# ============================================================
# Construction
# ============================================================

class TestClientInit:
    """Test client configuration."""

    def test_requires_base_url(self, monkeypatch):
        monkeypatch.delenv("DEALPILOT_BASE_URL", raising=False)

        with pytest.raises(InvalidConfigError) as exc_info:
            AsyncCopilotClient(session_provider=SESSION)

        assert "DEALPILOT_BASE_URL" in exc_info.value.message

    def test_base_url_from_env(self, monkeypatch):
        monkeypatch.setenv("DEALPILOT_BASE_URL", "https://env.test/")
        client = AsyncCopilotClient(session_provider=SESSION)
        assert client.base_url == "https://env.test"

    def test_keyword_overrides_settings(self):
        settings = ClientSettings(base_url="https://a.test", function_name="copilot")
        client = AsyncCopilotClient(base_url="https://b.test", function_name="deal-copilot", settings=settings)

        assert client.base_url == "https://b.test"
        assert client.function_name == "deal-copilot"

    def test_shared_settings_not_mutated(self):
        shared = ClientSettings(base_url="https://a.test", timeout=30.0)
        first = AsyncCopilotClient(function_name="copilot-a", timeout=5.0, settings=shared)
        second = AsyncCopilotClient(function_name="copilot-b", settings=shared)

        assert first.function_name == "copilot-a"
        assert first.settings.timeout == 5.0
        assert second.function_name == "copilot-b"
        assert second.settings.timeout == 30.0
        assert shared.function_name == "copilot"


# ============================================================
# Sessions
# ============================================================

class TestSessions:
    """Test the auth collaborator boundary."""

    @pytest.mark.asyncio
    async def test_static_session(self):
        client = make_client(ok_stream())
        assert await client.get_session() == SESSION

    @pytest.mark.asyncio
    async def test_async_provider(self):
        async def provider():
            return Session(access_token="async-token", user_id="user-9")

        client = make_client(ok_stream(), session_provider=provider)
        request = await client.build_request("deal_chat_query", "deal-1", "Hi")

        assert request.user_id == "user-9"

    @pytest.mark.asyncio
    async def test_no_session(self):
        client = make_client(ok_stream(), session_provider=None)

        with pytest.raises(AuthenticationError) as exc_info:
            await client.get_session()
        assert exc_info.value.message == "You must be logged in to use AI features"

    @pytest.mark.asyncio
    async def test_session_without_token(self):
        client = make_client(ok_stream(), session_provider=lambda: Session(access_token="", user_id="u"))

        with pytest.raises(AuthenticationError) as exc_info:
            await client.get_session()
        assert exc_info.value.message == "No valid session"


# ============================================================
# Streaming Requests
# ============================================================

class TestOpenStream:
    """Test open_stream()."""

    @pytest.mark.asyncio
    async def test_url_headers_and_body(self):
        handler = ok_stream()
        client = make_client(handler)
        request = await client.build_request("deal_chat_query", "deal-1", "Hi")

        async with client.open_stream(request) as response:
            assert response.status_code == 200

        sent = handler.requests[0]
        assert sent.method == "POST"
        assert str(sent.url) == f"{BASE_URL}/functions/v1/copilot"
        assert sent.headers["Authorization"] == "Bearer test-token"
        assert sent.headers["Content-Type"] == "application/json"
        assert sent.headers["User-Agent"].startswith("dealpilot-python/")
        assert handler.body() == {
            "operation": "deal_chat_query",
            "subjectId": "deal-1",
            "userId": "user-1",
            "content": "Hi",
            "history": [],
            "stream": True,
        }

    @pytest.mark.asyncio
    async def test_custom_function_name(self):
        handler = ok_stream()
        client = make_client(handler, function_name="deal-copilot")
        request = await client.build_request("op", "deal-1")

        async with client.open_stream(request):
            pass

        assert handler.requests[0].url.path == "/functions/v1/deal-copilot"

    @pytest.mark.asyncio
    async def test_error_status_raises_with_body(self):
        handler = RecordingHandler(lambda request: httpx.Response(502, text="upstream down"))
        client = make_client(handler)
        request = await client.build_request("op", "deal-1")

        with pytest.raises(TransportError) as exc_info:
            async with client.open_stream(request):
                pytest.fail("body should not be reached")

        assert exc_info.value.message == "Request failed: 502 upstream down"
        assert exc_info.value.retryable is True

    @pytest.mark.asyncio
    async def test_unreadable_error_body(self):
        handler = RecordingHandler(
            lambda request: httpx.Response(500, content=aiter_chunks([], fail_with=httpx.ReadError("reset")))
        )
        client = make_client(handler)
        request = await client.build_request("op", "deal-1")

        with pytest.raises(TransportError) as exc_info:
            async with client.open_stream(request):
                pytest.fail("body should not be reached")

        assert exc_info.value.message == "Request failed: 500"
        assert exc_info.value.status_code == 500

    @pytest.mark.asyncio
    async def test_unauthorized(self):
        handler = RecordingHandler(lambda request: httpx.Response(401, text="JWT expired"))
        client = make_client(handler)
        request = await client.build_request("op", "deal-1")

        with pytest.raises(AuthenticationError):
            async with client.open_stream(request):
                pass

    @pytest.mark.asyncio
    async def test_rate_limited(self):
        handler = RecordingHandler(
            lambda request: httpx.Response(429, text="slow down", headers={"Retry-After": "7"})
        )
        client = make_client(handler)
        request = await client.build_request("op", "deal-1")

        with pytest.raises(RateLimitError) as exc_info:
            async with client.open_stream(request):
                pass

        assert exc_info.value.retry_after == 7

    @pytest.mark.asyncio
    async def test_no_body_status(self):
        handler = RecordingHandler(lambda request: httpx.Response(204))
        client = make_client(handler)
        request = await client.build_request("op", "deal-1")

        with pytest.raises(ProtocolError):
            async with client.open_stream(request):
                pass

    @pytest.mark.asyncio
    @pytest.mark.parametrize("raised, expected", [
        (httpx.ConnectError("refused"), ConnectionError),
        (httpx.ConnectTimeout("slow"), TimeoutError),
        (httpx.RemoteProtocolError("garbled"), TransportError),
    ])
    async def test_network_failures_mapped(self, raised, expected):
        def fail(request):
            raise raised

        client = make_client(RecordingHandler(fail))
        request = await client.build_request("op", "deal-1")

        with pytest.raises(expected):
            async with client.open_stream(request):
                pass


class TestStreamHelper:
    """Test the one-shot stream() helper."""

    @pytest.mark.asyncio
    async def test_callbacks(self):
        client = make_client(RecordingHandler(lambda request: streaming_response(sse_body("Hel", "lo"))))
        request = await client.build_request("op", "deal-1")
        deltas, done = [], []

        await client.stream(request, deltas.append, lambda: done.append(True))

        assert deltas == ["Hel", "lo"]
        assert done == [True]

    @pytest.mark.asyncio
    async def test_open_failure_reported_and_raised(self):
        client = make_client(RecordingHandler(lambda request: httpx.Response(500, text="boom")))
        request = await client.build_request("op", "deal-1")
        errors = []

        with pytest.raises(TransportError):
            await client.stream(request, lambda text: None, lambda: None, errors.append)

        assert errors[0].message == "Request failed: 500 boom"

    @pytest.mark.asyncio
    async def test_callback_failure_reported_once(self):
        client = make_client(RecordingHandler(lambda request: streaming_response(sse_body("Hel", "lo"))))
        request = await client.build_request("op", "deal-1")
        failure = ProtocolError("render failed")
        errors = []

        def on_delta(text):
            raise failure

        with pytest.raises(ProtocolError):
            await client.stream(request, on_delta, lambda: None, errors.append)

        assert errors == [failure]


# ============================================================
# Non-streaming
# ============================================================

class TestInvoke:
    """Test invoke()."""

    @pytest.mark.asyncio
    async def test_returns_json(self):
        handler = RecordingHandler(lambda request: httpx.Response(200, json={"explanation": "Because."}))
        client = make_client(handler)

        data = await client.invoke("document-ai-assistant", {"operation": "explain_clause"})

        assert data == {"explanation": "Because."}
        assert handler.requests[0].url.path == "/functions/v1/document-ai-assistant"
        assert handler.body() == {"operation": "explain_clause"}

    @pytest.mark.asyncio
    async def test_invalid_json(self):
        client = make_client(RecordingHandler(lambda request: httpx.Response(200, text="<html>")))

        with pytest.raises(ProtocolError):
            await client.invoke("fn", {})

    @pytest.mark.asyncio
    async def test_non_object_json(self):
        client = make_client(RecordingHandler(lambda request: httpx.Response(200, json=[1, 2])))

        with pytest.raises(ProtocolError):
            await client.invoke("fn", {})

    @pytest.mark.asyncio
    async def test_error_status(self):
        client = make_client(RecordingHandler(lambda request: httpx.Response(500, text="broken")))

        with pytest.raises(TransportError) as exc_info:
            await client.invoke("fn", {})
        assert exc_info.value.status_code == 500


class TestClientLifecycle:
    """Test close()."""

    @pytest.mark.asyncio
    async def test_injected_client_left_open(self):
        http_client = httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(200)))
        client = AsyncCopilotClient(base_url=BASE_URL, session_provider=SESSION, http_client=http_client)

        async with client:
            pass

        assert not http_client.is_closed
        await http_client.aclose()
