"""Retrieval-augmented answer generation."""

from kbqa.rag.context_builder import ContextBuilder
from kbqa.rag.conversation import (
    Citation,
    ConversationStore,
    InMemoryConversationStore,
    StoredMessage,
)
from kbqa.rag.orchestrator import (
    ConversationState,
    FinishEvent,
    GenerationAttempt,
    GenerationOrchestrator,
    GenerationResult,
    GenerationState,
    RateLimitCooldown,
    TokenEvent,
)
from kbqa.rag.service import ChatService, RetrievalEvent
from kbqa.rag.summary import RollingSummarizer

__all__ = [
    "ChatService",
    "Citation",
    "ContextBuilder",
    "ConversationState",
    "ConversationStore",
    "FinishEvent",
    "GenerationAttempt",
    "GenerationOrchestrator",
    "GenerationResult",
    "GenerationState",
    "InMemoryConversationStore",
    "RateLimitCooldown",
    "RetrievalEvent",
    "RollingSummarizer",
    "StoredMessage",
    "TokenEvent",
]
