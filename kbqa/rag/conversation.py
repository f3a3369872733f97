"""Conversation persistence.

The generation core only writes here at well-defined points: the user turn
before retrieval, the assistant turn after output screening. Rolling
summaries are read before generation and written by the summary task.
"""

from __future__ import annotations

import threading
import time
from abc import ABC, abstractmethod
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Dict, List, Sequence

from kbqa.domain.results import RankedResult


@dataclass(frozen=True)
class Citation:
    """Retrieval provenance stored with an assistant turn."""

    source_path: str
    chunk_index: int
    score: float

    @classmethod
    def from_result(cls, result: RankedResult) -> "Citation":
        return cls(
            source_path=result.source_path,
            chunk_index=result.chunk_index,
            score=round(result.final_score, 4),
        )

    def to_dict(self) -> dict:
        return {
            "source_path": self.source_path,
            "chunk_index": self.chunk_index,
            "score": self.score,
        }


@dataclass
class StoredMessage:
    """One persisted conversation turn."""

    session_id: str
    role: str
    content: str
    citations: List[Citation] = field(default_factory=list)
    created_at: float = field(default_factory=time.time)


class ConversationStore(ABC):
    """Abstract persistence collaborator for conversation turns and summaries."""

    @abstractmethod
    async def save_message(
        self,
        session_id: str,
        role: str,
        content: str,
        citations: Sequence[Citation] = (),
    ) -> StoredMessage:
        """Append a turn to a session."""

    @abstractmethod
    async def count_messages(self, session_id: str) -> int:
        """Number of stored turns in a session."""

    @abstractmethod
    async def get_recent_messages(self, session_id: str, limit: int) -> List[StoredMessage]:
        """Most recent turns of a session, oldest first."""

    @abstractmethod
    async def get_summary(self, session_id: str) -> str:
        """Rolling summary of a session, or an empty string."""

    @abstractmethod
    async def update_summary(self, session_id: str, summary: str) -> None:
        """Replace the rolling summary of a session."""


class InMemoryConversationStore(ConversationStore):
    """Process-local conversation store."""

    def __init__(self):
        self._lock = threading.Lock()
        self._messages: Dict[str, List[StoredMessage]] = defaultdict(list)
        self._summaries: Dict[str, str] = {}

    async def save_message(self, session_id, role, content, citations=()):
        message = StoredMessage(
            session_id=session_id, role=role, content=content, citations=list(citations)
        )
        with self._lock:
            self._messages[session_id].append(message)
        return message

    async def count_messages(self, session_id):
        with self._lock:
            return len(self._messages.get(session_id, []))

    async def get_recent_messages(self, session_id, limit):
        with self._lock:
            messages = list(self._messages.get(session_id, []))
        return messages[-limit:] if limit > 0 else []

    async def get_summary(self, session_id):
        with self._lock:
            return self._summaries.get(session_id, "")

    async def update_summary(self, session_id, summary):
        with self._lock:
            self._summaries[session_id] = summary
