"""
dealpilot Python runtime

Streams copilot answers to a UI as they are generated and caches finished
analysis results.

Quick Start:
    from dealpilot import AsyncCopilotClient, Session, StreamingOrchestrator

    client = AsyncCopilotClient(
        base_url="https://project.example.co",
        session_provider=Session(access_token="jwt", user_id="user-1"),
    )
    chat = StreamingOrchestrator(client)

    # Progressive display
    chat.subscribe(lambda state: print(state.streamed_content))
    answer = await chat.run("deal-1", "Which conditions are still open?")

    # Cached document Q&A
    service = CachedAnalysisService(client)
    result = await service.ask_question("doc-7", "Who pays escrow?", text)
"""

from .client import AsyncCopilotClient
from .orchestrator import RequestHandle, StreamingOrchestrator
from .analysis import AnalysisResult, CachedAnalysisService, QuestionAnswer
from .cache import CacheEntry, CacheInfo, CacheStats, ResultCache, make_cache_key
from .config import ClientSettings, load_settings
from .models import (
    CopilotRequest,
    HistoryItem,
    HistoryKind,
    Message,
    RequestStatus,
    Session,
    StreamingState,
)
from .errors import (
    DealPilotError,
    TransportError,
    AuthenticationError,
    RateLimitError,
    TimeoutError,
    ConnectionError,
    ProtocolError,
    StreamError,
    InvalidConfigError,
    is_retryable_error,
)
from .streaming import (
    DeltaEvent,
    DoneEvent,
    ErrorEvent,
    FrameDecoder,
    StreamConsumer,
    StreamFrame,
    extract_delta,
)
from .retry import RetryHandler
from .logging import setup_logging, get_logger

__version__ = "1.0.0"
__all__ = [
    # Clients
    "AsyncCopilotClient",
    "StreamingOrchestrator",
    "RequestHandle",
    "CachedAnalysisService",
    "QuestionAnswer",
    "AnalysisResult",
    # Cache
    "ResultCache",
    "CacheEntry",
    "CacheInfo",
    "CacheStats",
    "make_cache_key",
    # Configuration
    "ClientSettings",
    "load_settings",
    # Models
    "CopilotRequest",
    "HistoryItem",
    "HistoryKind",
    "Message",
    "RequestStatus",
    "Session",
    "StreamingState",
    # Errors
    "DealPilotError",
    "TransportError",
    "AuthenticationError",
    "RateLimitError",
    "TimeoutError",
    "ConnectionError",
    "ProtocolError",
    "StreamError",
    "InvalidConfigError",
    "is_retryable_error",
    # Streaming
    "DeltaEvent",
    "DoneEvent",
    "ErrorEvent",
    "FrameDecoder",
    "StreamConsumer",
    "StreamFrame",
    "extract_delta",
    # Helpers
    "RetryHandler",
    "setup_logging",
    "get_logger",
]
