"""Language-model providers."""

from kbqa.llm.base import (
    BaseProvider,
    ChatMessage,
    LLMResponse,
    StreamDelta,
    StreamEvent,
    StreamFinish,
)
from kbqa.llm.chat_model import ChatModelProvider
from kbqa.llm.factory import create_provider
from kbqa.llm.gemini import GeminiProvider
from kbqa.llm.openai import OpenAIProvider

__all__ = [
    "BaseProvider",
    "ChatMessage",
    "ChatModelProvider",
    "GeminiProvider",
    "LLMResponse",
    "OpenAIProvider",
    "StreamDelta",
    "StreamEvent",
    "StreamFinish",
    "create_provider",
]
