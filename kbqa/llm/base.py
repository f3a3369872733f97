"""Base LLM provider interface."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import AsyncIterator, List, Optional, Sequence, Union

from kbqa.errors import ProviderError, RateLimitError


@dataclass
class ChatMessage:
    """One conversation turn sent to a provider.

    Attributes:
        role: "user" or "assistant"
        content: Message text
    """

    role: str
    content: str


@dataclass
class StreamDelta:
    """An incremental piece of generated text."""

    text: str


@dataclass
class StreamFinish:
    """Terminal stream event carrying the accumulated text.

    Attributes:
        full_text: Concatenation of every delta
        finish_reason: Provider finish reason (e.g., "stop", "length")
        model: Model name used for generation
    """

    full_text: str
    finish_reason: Optional[str] = None
    model: str = ""


StreamEvent = Union[StreamDelta, StreamFinish]


@dataclass
class LLMResponse:
    """Response from a non-streaming generation.

    Attributes:
        content: Generated text content
        model: Model name used for generation
        finish_reason: Reason generation finished
    """

    content: str
    model: str
    finish_reason: Optional[str] = None


class BaseProvider(ABC):
    """Abstract base class for language-model providers.

    Primary and fallback providers share this interface.
    """

    def __init__(
        self,
        model: str,
        temperature: float = 0.3,
        max_tokens: int = 1024,
        label: str = "",
    ):
        """Initialize provider.

        Args:
            model: Model name (e.g., "gemini-2.5-flash")
            temperature: Sampling temperature (0.0 - 1.0)
            max_tokens: Maximum tokens to generate
            label: Name used in logs and attempt records
        """
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.label = label or type(self).__name__

    @abstractmethod
    def stream_generate(
        self, system_prompt: str, messages: Sequence[ChatMessage]
    ) -> AsyncIterator[StreamEvent]:
        """Stream a completion.

        Implementations are async generators yielding StreamDelta items and
        ending with exactly one StreamFinish.

        Args:
            system_prompt: System instructions
            messages: Conversation turns, last one from the user

        Raises:
            RateLimitError: If the provider reports rate limiting or quota exhaustion
            ProviderError: On any other provider failure
        """

    async def generate(
        self, system_prompt: str, messages: Sequence[ChatMessage]
    ) -> LLMResponse:
        """Generate a full completion by draining the stream."""
        parts: List[str] = []
        finish_reason = None
        async for event in self.stream_generate(system_prompt, messages):
            if isinstance(event, StreamDelta):
                parts.append(event.text)
            else:
                finish_reason = event.finish_reason
        return LLMResponse(content="".join(parts), model=self.model, finish_reason=finish_reason)

    async def aclose(self) -> None:
        """Release provider resources."""

    def __repr__(self) -> str:
        return f"{type(self).__name__}(label={self.label!r}, model={self.model!r})"


def provider_error(provider: str, status_code: int, body: str) -> ProviderError:
    """Map an HTTP error status to the matching provider error."""
    message = f"{provider} API error: {status_code} - {body[:500]}"
    if status_code == 429:
        return RateLimitError(message, provider=provider, status_code=status_code)
    return ProviderError(message, provider=provider, status_code=status_code)


def parse_sse_data(line: str) -> Optional[str]:
    """Payload of an SSE "data:" line, or None for any other line."""
    if not line.startswith("data:"):
        return None
    return line[len("data:"):].strip()
