"""
dealpilot - Cached Analysis Service

Question answering and whole-document analysis over the non-streaming
``document-ai-assistant`` function, with results kept in a ResultCache so a
repeated question or analysis for the same document skips the network.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from .cache import ResultCache
from .client import AsyncCopilotClient
from .logging import TimedOperation, get_logger
from .models import HistoryItem, HistoryKind
from .retry import RetryHandler

logger = get_logger(__name__)

ASSISTANT_FUNCTION = "document-ai-assistant"
DEFAULT_ANALYSIS_TTL = 600.0

QUESTION_KEY = "question"
NO_RESPONSE = "No response received"


@dataclass(frozen=True)
class QuestionAnswer:
    question: str
    answer: str


@dataclass(frozen=True)
class AnalysisResult:
    analysis_type: str
    analysis: str


class CachedAnalysisService:
    """
    Cached Q&A and analysis for one client session.

    Args:
        client: Client used for the function call
        cache: Shared ResultCache. When omitted the service creates its own
            with a 10 minute TTL.
        retry: Optional RetryHandler. Defaults to one built from the client's
            ``max_retries`` setting (no retries unless configured).

    Example:
        >>> service = CachedAnalysisService(client)
        >>> result = await service.ask_question("doc-7", "Who pays escrow?", text)
        >>> result.answer
    """

    def __init__(
        self,
        client: AsyncCopilotClient,
        cache: Optional[ResultCache] = None,
        retry: Optional[RetryHandler] = None,
    ):
        self._client = client
        if cache is None:
            cache = ResultCache(
                ttl=DEFAULT_ANALYSIS_TTL,
                max_entries=client.settings.cache_max_entries,
            )
        self.cache = cache
        self._retry = retry or RetryHandler(max_retries=client.settings.max_retries)
        self._history: List[HistoryItem] = []
        self._in_flight = 0

    @property
    def history(self) -> List[HistoryItem]:
        return list(self._history)

    @property
    def is_processing(self) -> bool:
        return self._in_flight > 0

    def clear_history(self) -> None:
        self._history.clear()

    def invalidate(self, document_id: str) -> int:
        """Forget every cached result for a document."""
        return self.cache.invalidate(document_id)

    async def ask_question(
        self,
        document_id: str,
        question: str,
        document_content: str = "",
    ) -> QuestionAnswer:
        """Answer a question about a document, from cache when possible."""
        params = {"question": question}
        cached = self.cache.get(document_id, QUESTION_KEY, params)
        if cached is not None:
            self._record(question, cached.answer, HistoryKind.QUESTION)
            return cached

        data = await self._call(
            document_id,
            {
                "operation": "explain_clause",
                "content": question,
                "documentId": document_id,
                "context": {"contractContent": document_content},
            },
        )
        answer = data.get("explanation") or NO_RESPONSE
        result = QuestionAnswer(question=question, answer=answer)

        self.cache.set(document_id, QUESTION_KEY, result, params=params)
        self._record(question, answer, HistoryKind.QUESTION)
        return result

    async def analyze(
        self,
        document_id: str,
        analysis_type: str,
        document_content: str = "",
    ) -> AnalysisResult:
        """Run (or recall) one kind of analysis over a whole document."""
        label = f"Analyze document: {analysis_type}"
        cached = self.cache.get(document_id, analysis_type)
        if cached is not None:
            self._record(label, cached.analysis, HistoryKind.ANALYSIS, analysis_type)
            return cached

        data = await self._call(
            document_id,
            {
                "operation": "analyze_document",
                "documentId": document_id,
                "content": document_content,
                "context": {"analysisType": analysis_type},
            },
        )
        analysis = _analysis_content(data) or f"Analysis of type {analysis_type} completed"
        result = AnalysisResult(analysis_type=analysis_type, analysis=analysis)

        self.cache.set(document_id, analysis_type, result)
        self._record(label, analysis, HistoryKind.ANALYSIS, analysis_type)
        return result

    async def _call(self, document_id: str, body: Dict[str, Any]) -> Dict[str, Any]:
        self._in_flight += 1
        try:
            async with TimedOperation(
                f"{ASSISTANT_FUNCTION} {body['operation']}",
                logger,
                extra={"subject_id": document_id},
            ):
                return await self._retry.execute_async(
                    lambda: self._client.invoke(ASSISTANT_FUNCTION, body)
                )
        finally:
            self._in_flight -= 1

    def _record(
        self,
        question: str,
        answer: str,
        kind: HistoryKind,
        analysis_type: Optional[str] = None,
    ) -> None:
        self._history.append(
            HistoryItem(question=question, answer=answer, kind=kind, analysis_type=analysis_type)
        )


def _analysis_content(data: Dict[str, Any]) -> Optional[str]:
    analysis = data.get("analysis")
    if isinstance(analysis, dict):
        content = analysis.get("content")
        if isinstance(content, str) and content:
            return content
    return None
