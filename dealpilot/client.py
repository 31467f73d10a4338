"""
dealpilot - Async Copilot Client

Outbound HTTP for the copilot runtime: builds authenticated requests, opens
streaming responses and performs plain JSON invocations.
"""

from __future__ import annotations

import inspect
import json
from contextlib import asynccontextmanager
from dataclasses import replace
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, Optional, Union

import httpx

from .config import ClientSettings
from .errors import (
    AuthenticationError,
    ConnectionError,
    DealPilotError,
    ProtocolError,
    TimeoutError,
    TransportError,
)
from .logging import get_logger
from .models import CopilotRequest, HistoryLike, Session, normalize_history
from .streaming import StreamConsumer

__version__ = "1.0.0"

logger = get_logger(__name__)

SessionProvider = Union[
    Session,
    Callable[[], Optional[Session]],
    Callable[[], Awaitable[Optional[Session]]],
]


class AsyncCopilotClient:
    """
    Async client for the copilot edge functions.

    Args:
        base_url: Functions host. Falls back to DEALPILOT_BASE_URL.
        session_provider: A Session, or a (sync or async) callable returning
            the current Session or None when nobody is logged in.
        function_name: Streaming function name. Defaults to "copilot".
        timeout: Timeout for opening connections and for non-streaming calls.
        settings: Pre-built ClientSettings; keyword arguments override it.
        http_client: Bring-your-own httpx.AsyncClient (not closed by us).

    Example:
        >>> async with AsyncCopilotClient(base_url=url, session_provider=session) as client:
        ...     request = await client.build_request("deal_chat_query", "deal-1", "Hi")
        ...     async with client.open_stream(request) as response:
        ...         async for chunk in response.aiter_bytes():
        ...             ...
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        session_provider: Optional[SessionProvider] = None,
        function_name: Optional[str] = None,
        timeout: Optional[float] = None,
        settings: Optional[ClientSettings] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        if settings is None:
            settings = ClientSettings.from_env()
        else:
            # Overrides below must not leak into the caller's object.
            settings = replace(settings, extra_headers=dict(settings.extra_headers))
        if base_url is not None:
            settings.base_url = base_url
        if function_name is not None:
            settings.function_name = function_name
        if timeout is not None:
            settings.timeout = timeout
        settings.validate()

        self.settings = settings
        self.base_url = settings.base_url.rstrip("/")
        self._session_provider = session_provider
        self._client = http_client
        self._owns_client = http_client is None

    @property
    def function_name(self) -> str:
        return self.settings.function_name

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the async HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers=self._default_headers(),
                # Long-lived generative streams: no read timeout on bodies.
                timeout=httpx.Timeout(self.settings.timeout, read=None),
            )
            self._owns_client = True
        return self._client

    def _default_headers(self) -> Dict[str, str]:
        return {
            "Content-Type": "application/json",
            "User-Agent": f"dealpilot-python/{__version__}",
            **self.settings.extra_headers,
        }

    # ============================================================
    # Credentials
    # ============================================================

    async def get_session(self) -> Session:
        """Resolve the current session from the auth collaborator."""
        provider = self._session_provider
        session = provider() if callable(provider) else provider
        if inspect.isawaitable(session):
            session = await session

        if session is None:
            raise AuthenticationError("You must be logged in to use AI features")
        if not session.access_token:
            raise AuthenticationError("No valid session")
        return session

    async def _request_headers(self) -> Dict[str, str]:
        session = await self.get_session()
        return {**self._default_headers(), "Authorization": f"Bearer {session.access_token}"}

    async def build_request(
        self,
        operation: str,
        subject_id: str,
        content: str = "",
        history: Optional[HistoryLike] = None,
    ) -> CopilotRequest:
        """Build the outbound body, filling in the user id from the session."""
        session = await self.get_session()
        return CopilotRequest(
            operation=operation,
            subject_id=subject_id,
            user_id=session.user_id,
            content=content,
            history=normalize_history(history),
        )

    def _function_url(self, function_name: Optional[str] = None) -> str:
        return f"{self.base_url}/functions/v1/{function_name or self.function_name}"

    # ============================================================
    # Streaming
    # ============================================================

    @asynccontextmanager
    async def open_stream(self, request: CopilotRequest) -> AsyncIterator[httpx.Response]:
        """
        POST the request and yield the streaming response.

        Non-success statuses are read as text and raised as typed errors
        before anything is yielded. Leaving the block closes the response and
        releases the connection, including when the block is cancelled.
        """
        client = await self._get_client()
        headers = await self._request_headers()
        http_request = client.build_request(
            "POST",
            self._function_url(),
            json={**request.to_dict(), "stream": True},
            headers=headers,
        )

        logger.info(
            "Opening stream",
            operation=request.operation,
            subject_id=request.subject_id,
            history_messages=len(request.history),
        )
        response = await self._send(client, http_request, stream=True)
        try:
            if not response.is_success:
                try:
                    body = (await response.aread()).decode("utf-8", errors="replace")
                except httpx.HTTPError as e:
                    logger.warning("Could not read error body", status=response.status_code, error=str(e))
                    body = ""
                logger.warning("Stream request rejected", status=response.status_code)
                raise DealPilotError.from_response(response.status_code, body, response.headers)
            if response.status_code in (204, 304):
                raise ProtocolError(
                    f"Stream failed: {response.status_code} has no body",
                    status_code=response.status_code,
                )
            yield response
        finally:
            await response.aclose()

    async def stream(
        self,
        request: CopilotRequest,
        on_delta: Callable[[str], None],
        on_done: Callable[[], None],
        on_error: Optional[Callable[[Exception], None]] = None,
        consumer: Optional[StreamConsumer] = None,
    ) -> None:
        """
        One-shot helper: open the stream and dispatch it to callbacks.

        Errors raised while opening are reported to on_error and re-raised.
        Once the stream is open, the consumer owns the terminal callback.
        """
        consumer = consumer or StreamConsumer()
        opened = False
        try:
            async with self.open_stream(request) as response:
                opened = True
                await consumer.consume(response, on_delta, on_done, on_error)
        except DealPilotError as exc:
            if on_error and not opened:
                on_error(exc)
            raise

    # ============================================================
    # Non-streaming
    # ============================================================

    async def invoke(self, function_name: str, body: Dict[str, Any]) -> Dict[str, Any]:
        """POST a JSON body to a function and return its JSON answer."""
        client = await self._get_client()
        headers = await self._request_headers()
        http_request = client.build_request(
            "POST",
            self._function_url(function_name),
            json=body,
            headers=headers,
        )
        response = await self._send(client, http_request, stream=False)

        if not response.is_success:
            raise DealPilotError.from_response(response.status_code, response.text, response.headers)

        try:
            data = response.json()
        except json.JSONDecodeError:
            raise ProtocolError(f"Invalid JSON from {function_name}", status_code=response.status_code)
        if not isinstance(data, dict):
            raise ProtocolError(f"Unexpected payload from {function_name}", status_code=response.status_code)
        return data

    async def _send(
        self,
        client: httpx.AsyncClient,
        http_request: httpx.Request,
        stream: bool,
    ) -> httpx.Response:
        try:
            return await client.send(http_request, stream=stream)
        except httpx.TimeoutException:
            raise TimeoutError("Request timed out")
        except httpx.ConnectError:
            raise ConnectionError("Failed to connect to API")
        except httpx.RequestError as e:
            raise TransportError(f"Request failed: {e}")

    async def close(self):
        """Close the async HTTP client if we created it."""
        if self._owns_client and self._client and not self._client.is_closed:
            await self._client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, *args):
        await self.close()
