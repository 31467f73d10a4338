"""
dealpilot - Data Models

Plain dataclasses shared by the client, the orchestrator and the analysis
service.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Union


# ============================================================
# Message Models
# ============================================================

@dataclass
class Message:
    """A chat history message."""
    role: str
    content: str = ""

    @classmethod
    def user(cls, content: str) -> Message:
        """Create a user message."""
        return cls(role="user", content=content)

    @classmethod
    def assistant(cls, content: str) -> Message:
        """Create an assistant message."""
        return cls(role="assistant", content=content)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> Message:
        """Create from dictionary."""
        return cls(role=data.get("role", "user"), content=data.get("content") or "")

    def to_dict(self) -> Dict[str, str]:
        """Convert to dictionary format."""
        return {"role": self.role, "content": self.content}


HistoryLike = Sequence[Union[Message, Dict[str, Any]]]


def normalize_history(history: Optional[HistoryLike]) -> List[Message]:
    """Normalize dicts and Message objects to a list of Message."""
    messages: List[Message] = []
    for item in history or []:
        if isinstance(item, Message):
            messages.append(item)
        elif isinstance(item, dict):
            messages.append(Message.from_dict(item))
    return messages


# ============================================================
# Session / Request Models
# ============================================================

@dataclass(frozen=True)
class Session:
    """Credential handed over by the auth collaborator."""
    access_token: str
    user_id: str


@dataclass
class CopilotRequest:
    """Outbound body for the streaming copilot function."""
    operation: str
    subject_id: str
    user_id: str
    content: str = ""
    history: List[Message] = field(default_factory=list)
    stream: bool = True

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the JSON wire format."""
        return {
            "operation": self.operation,
            "subjectId": self.subject_id,
            "userId": self.user_id,
            "content": self.content,
            "history": [m.to_dict() for m in self.history],
            "stream": self.stream,
        }


# ============================================================
# Orchestration State
# ============================================================

class RequestStatus(str, Enum):
    """Lifecycle of one orchestrated request."""
    PENDING = "pending"
    STREAMING = "streaming"
    SUCCEEDED = "succeeded"
    CACHED = "cached"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self not in (RequestStatus.PENDING, RequestStatus.STREAMING)


@dataclass(frozen=True)
class StreamingState:
    """Observable snapshot for progressive UI display."""
    is_streaming: bool = False
    streamed_content: str = ""
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "is_streaming": self.is_streaming,
            "streamed_content": self.streamed_content,
            "error": self.error,
        }


# ============================================================
# Analysis History
# ============================================================

class HistoryKind(str, Enum):
    QUESTION = "question"
    ANALYSIS = "analysis"


@dataclass
class HistoryItem:
    """One answered question or analysis, cached or fresh."""
    question: str
    answer: str
    kind: HistoryKind
    analysis_type: Optional[str] = None
    timestamp: float = field(default_factory=time.time)
